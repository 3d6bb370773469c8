"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import Settings

__all__ = ["ConfigLocator", "ConfigRepository", "Settings"]
