"""Configuration module -- exports Settings and load_config."""

from docmem.config.loader import load_config
from docmem.config.settings import Settings

__all__ = ["Settings", "load_config"]
