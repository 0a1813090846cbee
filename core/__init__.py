"""
Shared configuration and logging setup for the syndicate ledger service.
"""

from .config import Settings, get_settings
from .logging_config import setup_logging

__all__ = ["Settings", "get_settings", "setup_logging"]
