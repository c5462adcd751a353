"""
Logging helpers.

Every module owns a ``logger = logging.getLogger(__name__)``; this module only
installs the root handler and formats the one-line "service initialised"
record each component writes from its constructor.
"""

import logging
from typing import Any, Dict, Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install a stream handler on the root logger (idempotent)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)


def log_service_init(
    service_name: str,
    settings: Dict[str, Any],
    log_level: int = logging.DEBUG,
) -> None:
    """
    Log service initialization with standardized format.

    Args:
        service_name: Name of the service being initialized
        settings: Dictionary containing service settings
        log_level: Logging level (default: logging.DEBUG)
    """
    logging.getLogger(f"netcoach.{service_name}").log(
        log_level, "%s initialized with settings: %s", service_name, settings
    )
