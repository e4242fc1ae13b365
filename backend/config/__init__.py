"""
Configuration module for the trade journal backend.

Provides settings management using pydantic-settings.
Supports loading from environment variables and .env files.
"""

from .settings import Settings, get_settings, has_notion_credentials
from .paths import (
    DATA_DIR_NAME,
    resolve_app_data_dir,
    default_database_url,
    default_log_directory,
)

__all__ = [
    "Settings",
    "get_settings",
    "has_notion_credentials",
    "DATA_DIR_NAME",
    "resolve_app_data_dir",
    "default_database_url",
    "default_log_directory",
]
