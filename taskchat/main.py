"""Application entrypoint."""

from __future__ import annotations

import logging

import uvicorn

from taskchat.api import create_app
from taskchat.config import load_settings

LOGGER = logging.getLogger(__name__)


def main() -> None:
    """Load settings and serve the chat API."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = create_app(settings)
    LOGGER.info("Serving taskchat on %s:%d (model %s)", settings.host, settings.port, settings.gateway_model)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
