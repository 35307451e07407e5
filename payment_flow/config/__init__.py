"""Configuration package for the payment flow client."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
