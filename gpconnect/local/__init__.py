"""
Local package for the GPConnect application.

This package holds the connection supervisor, the persisted config store and
the effective application settings through the `effective_settings` object.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
