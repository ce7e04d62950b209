"""
Entry point:

    python -m requinte_bot

Loads settings (exits with status 1 when DATABASE_URL is missing) and serves
the app with uvicorn on HOST:PORT.
"""

import logging
import sys

from requinte_bot.config import get_settings
from requinte_bot.errors import ConfigError
from requinte_bot.logging_utils import setup_logging

logger = logging.getLogger("requinte_bot")


def main() -> int:
    try:
        settings = get_settings()
    except ConfigError as e:
        setup_logging("INFO")
        logger.error(f"❌ Erro: {e}")
        return 1

    setup_logging(settings.LOG_LEVEL)

    import uvicorn

    logger.info(f"🚀 Servidor rodando na porta {settings.PORT}")
    uvicorn.run(
        "requinte_bot.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
