"""Entrypoint: python -m messaging_service"""
from __future__ import annotations

import uvicorn

from messaging_service.api.middleware.correlation_id import configure_logging
from messaging_service.config import settings


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        "messaging_service.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
