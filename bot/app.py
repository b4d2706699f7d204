from __future__ import annotations

import uvicorn

from bot.server import create_app
from config.config import settings
from utils.logger import get_logger

LOGGER = get_logger(__name__)


def run_server() -> None:
    LOGGER.info(f"▶️  Starting webhook server on {settings.HTTP_HOST}:{settings.HTTP_PORT}…")

    app = create_app()
    uvicorn.run(
        app,
        host=settings.HTTP_HOST,
        port=settings.HTTP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )
    LOGGER.info("Webhook server stopped.")


if __name__ == "__main__":
    run_server()
