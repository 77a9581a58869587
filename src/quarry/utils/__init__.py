"""
Utility helpers shared across Quarry packages.
"""

from .logging import configure_logging, get_logger, time_call
from .naming import camel_to_snake

__all__ = ["camel_to_snake", "configure_logging", "get_logger", "time_call"]
