#!/usr/bin/env python3
"""Create the signal and trade ledger tables."""

from loguru import logger

from autopilot.database import init_db
from autopilot.monitoring.logger import setup_logging


def main():
    """Initialize the database."""
    setup_logging()
    logger.info("Initializing ledger tables...")

    try:
        init_db()
        logger.info("Ledger tables ready")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


if __name__ == "__main__":
    main()
