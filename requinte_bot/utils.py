"""
Utility functions for the transport webhook.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def verify_webhook_secret(provided: Optional[str], secret: str) -> bool:
    """
    Check the shared secret sent in the X-Webhook-Secret header.

    Args:
        provided: Header value, None when the header is absent
        secret: WEBHOOK_SECRET; an empty secret disables the check

    Returns:
        True if the request may be processed, False otherwise
    """
    if not secret:
        return True
    if not provided:
        logger.info("Webhook secret verification: missing header")
        return False

    is_valid = hmac.compare_digest(provided.strip().encode("utf-8"), secret.encode("utf-8"))
    logger.info(f"Webhook secret verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
