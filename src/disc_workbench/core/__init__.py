"""
Core application services for Disc Workbench.

Provides persisted, validated configuration shared by the command line
and any embedding application.
"""

from .settings import (
    DetectionSettings,
    ReaderSettings,
    LoggingSettings,
    Settings,
    get_settings,
    get_settings_dir,
    get_settings_file,
)

__all__ = [
    # Categories
    'DetectionSettings',
    'ReaderSettings',
    'LoggingSettings',
    # Main class
    'Settings',
    # Convenience functions
    'get_settings',
    'get_settings_dir',
    'get_settings_file',
]
