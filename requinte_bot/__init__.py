"""
Colchões Requinte WhatsApp intake bot.

Walks WhatsApp contacts through a short mattress questionnaire and reports
the collected answers over HTTP.
"""

__version__ = "1.0.0"
