"""Configuration package for the Folio service."""

from .settings import FolioSettings, get_settings

__all__ = ["FolioSettings", "get_settings"]
