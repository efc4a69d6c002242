"""
Logging setup for retryctl.

Everything logs under the ``retryctl`` logger. ``setup_logging`` attaches a
single console handler to it: rich's ``RichHandler`` by default, a plain
``StreamHandler`` otherwise.
"""

import logging
import sys
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "retryctl"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return LEVEL_MAP.get(str(level).strip().upper(), logging.INFO)


def setup_logging(
    level: Union[str, int] = logging.INFO,
    use_rich: bool = True,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the ``retryctl`` logger.

    Args:
        level: Level name (DEBUG, INFO, ...) or logging constant
        use_rich: Render through RichHandler (default) or a plain stderr handler
        console: Optional Rich Console for RichHandler output

    Returns:
        The configured ``retryctl`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    # avoid duplicate output when called more than once (CLI + worker processes)
    logger.handlers.clear()
    level_int = parse_level(level)
    logger.setLevel(level_int)

    if use_rich:
        handler: logging.Handler = RichHandler(
            level=level_int,
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
            log_time_format="[%X]",
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level_int)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    logger.addHandler(handler)
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger under the ``retryctl`` hierarchy."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
