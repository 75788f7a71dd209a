"""Configuration module for the license manager."""
from .log_setup import configure_logging
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "configure_logging", "load_settings"]
