"""
Infrastructure module - settings and logging.
"""

from .config import SchedulerSettings, load_settings
from .logging_config import setup_logging

__all__ = ["SchedulerSettings", "load_settings", "setup_logging"]
