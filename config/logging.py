# coding: utf-8
"""
Logging configuration with loguru for the License API
"""
import logging
import sys
from pathlib import Path
from loguru import logger
import sentry_sdk

from config.config import LOG_LEVEL, ENVIRONMENT, SENTRY_DSN


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(log_prefix: str = "api") -> None:
    """
    Setup loguru sinks: console, daily rotating files and Sentry

    Args:
        log_prefix: File name prefix ("api" for the server, "billing" for the sweep)
    """
    logger.remove()

    logs_dir = Path(__file__).parent.parent / 'logs'
    logs_dir.mkdir(exist_ok=True)

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=LOG_LEVEL,
        colorize=True,
    )

    logger.add(
        logs_dir / f"{log_prefix}_{{time:YYYY-MM-DD}}.log",
        format=LOG_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="14 days",
        compression="zip",
        encoding="utf-8",
    )

    # Billing decisions are audited from the error log, keep it longer
    logger.add(
        logs_dir / "error_{time:YYYY-MM-DD}.log",
        format=LOG_FORMAT,
        level="ERROR",
        rotation="00:00",
        retention="90 days",
        compression="zip",
        encoding="utf-8",
    )

    if SENTRY_DSN:
        logger.add(
            sentry_sink,
            level="ERROR",
            format="{message}",
        )

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.ERROR)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    logger.info(f"License API logging ready | Environment: {ENVIRONMENT} | Log level: {LOG_LEVEL}")


def sentry_sink(message):
    """
    Forward ERROR and CRITICAL records to Sentry

    CRITICAL is reserved for security verification failures
    (substituted recipient or asset in a provider quote).
    """
    record = message.record
    level = "fatal" if record["level"].name == "CRITICAL" else "error"

    extras = {
        "function": record["function"],
        "file": record["file"].path,
        "line": record["line"],
    }
    extras.update(record["extra"])

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
    else:
        sentry_sdk.capture_message(record["message"], level=level, extras=extras)
