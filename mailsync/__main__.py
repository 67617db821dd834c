"""Entry point for the ingestion service.

Usage::

    python -m mailsync
"""

from __future__ import annotations

import asyncio
import sys

from .config import ServiceConfig
from .logging import setup_logging


def main() -> None:
    config = ServiceConfig()
    setup_logging(json=config.log_json, level=config.log_level)

    from .service import IngestionService

    service = IngestionService(config)
    try:
        asyncio.run(service.run())
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    main()
