#!/usr/bin/env python3
"""TransitMesh entry point."""

from __future__ import annotations

import logging

from transitmesh.bot import create_application
from transitmesh.config import get_settings, setup_logging
from transitmesh.services.factory import build_coordinator
from transitmesh.utils.cache import configure_cache


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    logger = logging.getLogger("transitmesh")
    logger.info("Starting TransitMesh…")

    configure_cache(settings.cache_ttl_seconds)
    coordinator = build_coordinator(settings)

    app = create_application(settings, coordinator)
    app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
