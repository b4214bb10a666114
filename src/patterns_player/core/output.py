"""
Unified output system using Loguru.
Routes log records to a rotating file and user-facing notices to the UI layer.
"""

import sys
import threading
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .config import LoggingConfig, get_log_file_path

# Notice callback registered by the presentation layer (toasts, banners)
_notice_callback: Optional[Callable[[str, str], None]] = None
_notice_lock = threading.Lock()


def setup_loguru(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    rotation: str = "10 MB",
    retention: int = 5,
    console_output: bool = False,
) -> None:
    """
    Configure loguru for file logging with optional stderr output.

    Args:
        log_file: Path to log file (default: data dir / patterns-player.log)
        level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        rotation: Size at which the log file is rotated
        retention: Number of rotated files to keep
        console_output: Also log to stderr
    """
    log_file = log_file or get_log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    logger.add(
        log_file,
        rotation=rotation,
        retention=retention,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}",
        enqueue=False,
    )

    if console_output:
        logger.add(sys.stderr, level=level, format="{level}: {message}")

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def setup_from_config(config: LoggingConfig) -> None:
    """Configure loguru from the [logging] config section."""
    setup_loguru(
        log_file=Path(config.log_file) if config.log_file else None,
        level=config.level,
        rotation=config.rotation,
        retention=config.retention,
        console_output=config.console_output,
    )


def set_notice_callback(callback: Callable[[str, str], None]) -> None:
    """
    Route user-facing notices to the UI.

    Args:
        callback: Called with (message, level) for every notice
    """
    global _notice_callback
    with _notice_lock:
        _notice_callback = callback
        logger.debug("Notice callback registered")


def clear_notice_callback() -> None:
    """Stop routing notices to the UI."""
    global _notice_callback
    with _notice_lock:
        _notice_callback = None


def log(message: str, level: str = "info") -> None:
    """
    Unified logging: writes to the log file AND notifies the UI.

    Use this instead of logger directly for messages the listener should see,
    such as a track that could not be played.

    Args:
        message: User-facing message
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level)
    log_func(message)

    with _notice_lock:
        callback = _notice_callback

    if callback is not None:
        try:
            callback(message, level)
        except Exception:
            logger.exception("Notice callback failed")
