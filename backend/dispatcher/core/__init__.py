"""
Core application modules.
Contains configuration, logging, metrics, tracing and request plumbing.
"""
from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
