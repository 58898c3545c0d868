"""Logging configuration using loguru."""

import sys
from pathlib import Path

from loguru import logger

from autopilot.config.settings import get_settings

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

# Modules whose run summaries and per-item decisions make up the engine audit trail
ENGINE_MODULES = (
    "autopilot.scoring.drain",
    "autopilot.reconcile",
    "autopilot.execution.entry",
)
TRADE_MODULES = ("autopilot.execution", "autopilot.reconcile")


def _from_modules(record, prefixes: tuple[str, ...]) -> bool:
    name = record["name"] or ""
    return any(name == p or name.startswith(p + ".") for p in prefixes)


def engine_filter(record) -> bool:
    """Keep records emitted by the drain, reconciliation and entry engines."""
    return _from_modules(record, ENGINE_MODULES)


def trade_filter(record) -> bool:
    """Keep order and trade lifecycle records from execution and reconciliation."""
    if not _from_modules(record, TRADE_MODULES):
        return False
    message = record["message"].lower()
    return "trade" in message or "order" in message


def setup_logging() -> None:
    """Configure logging for the autopilot."""
    settings = get_settings()

    logger.remove()

    if settings.log_format == "json":
        console_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    else:
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=console_format,
        level=settings.log_level,
        colorize=settings.log_format != "json",
    )

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    logger.add(
        log_dir / "error.log",
        format=FILE_FORMAT,
        level="ERROR",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
    )

    # Scheduled engine runs, one file so a single run can be followed end to end
    logger.add(
        log_dir / "engines.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="50 MB",
        retention="14 days",
        compression="gz",
        filter=engine_filter,
    )

    # Order submissions and trade closes, kept longer for audit
    logger.add(
        log_dir / "trades.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}",
        level="INFO",
        rotation="50 MB",
        retention="90 days",
        filter=trade_filter,
    )

    logger.add(
        log_dir / "autopilot.log",
        format=FILE_FORMAT,
        level=settings.log_level,
        rotation="50 MB",
        retention="7 days",
        compression="gz",
    )

    logger.info(f"Logging configured - level: {settings.log_level}, format: {settings.log_format}")
