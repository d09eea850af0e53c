"""Loguru setup shared by the API server and the CLI."""

import inspect
import logging
import sys

from loguru import logger

from dicom_fetcher.settings import Settings, settings

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "httpx")


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level: str | int
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the frame that called the stdlib logger, not logging itself
        frame, depth = inspect.currentframe(), 0
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(config: Settings) -> None:
    """Install loguru sinks for ``config`` and route stdlib logging through them.

    Always logs to stderr. With ``log_to_file`` set, also writes a rotated
    ``dicom_fetcher.log`` under ``config.get_log_dir()``.
    """
    fmt = config.log_format or DEFAULT_FORMAT

    logger.remove()
    logger.add(
        sys.stderr,
        level=config.log_level,
        format=fmt,
        colorize=True,
        backtrace=True,
        diagnose=config.debug,
    )

    if config.log_to_file:
        log_dir = config.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / "dicom_fetcher.log"),
            level=config.log_level,
            format=fmt,
            rotation=config.log_rotation,
            retention=config.log_retention,
            compression="zip",
            backtrace=True,
            diagnose=config.debug,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging(settings)

__all__ = ["InterceptHandler", "configure_logging", "logger"]
