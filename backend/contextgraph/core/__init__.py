from .config import Settings, settings
from .logging_config import LoggerMixin, StructuredFormatter, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "LoggerMixin",
    "StructuredFormatter",
    "get_logger",
    "setup_logging",
]
