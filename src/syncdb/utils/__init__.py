"""Utility modules for syncdb."""

from syncdb.utils.display import ProgressDisplay
from syncdb.utils.logger import setup_logging

__all__ = ["setup_logging", "ProgressDisplay"]
