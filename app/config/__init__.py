"""Configuration module for the identity provisioning service."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
