"""Configuration module for loading and validating reconciler settings"""
from .lib.load_settings_conf import (
    DEFAULTS,
    Settings,
    SettingsError,
    load_settings_conf,
    validate_settings,
)

__all__ = ['DEFAULTS', 'Settings', 'SettingsError', 'load_settings', 'load_settings_conf', 'validate_settings']

def load_settings(settings_path: str = ".") -> Settings:
    """Load settings.conf from a directory.

    Settings are loaded explicitly and passed to the components that need them,
    so nothing is read from disk at import time.

    Raises:
        SettingsError: With a formatted report of what is missing or invalid
    """
    try:
        return load_settings_conf(settings_path)
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf is properly configured.\n"
            "Run `python -m config` to write an example file."
        )
