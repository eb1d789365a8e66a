"""
Settings management module for Disc Workbench.

This module provides settings management with JSON-based persistence,
a singleton accessor and pydantic validation of every category.

Features:
    - Singleton pattern for global settings access
    - JSON-based configuration file persistence
    - Platform-specific settings paths
    - Migration support between versions
    - Edge case handling (file locked, disk full, invalid JSON)
    - Category-based settings organization

Settings Categories:
    - Detection: Filesystem probe order, descriptor scan bound
    - Reader: Container reader options
    - Logging: Log file and level

Settings hold configuration only. The disc being browsed is always an
explicit DiscSession handle, never part of the settings.
"""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from disc_workbench.filesystems.detector import DEFAULT_PRIORITY
from disc_workbench.imaging.image_formats import FilesystemType

# Module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Settings File Paths
# =============================================================================

def get_settings_dir() -> Path:
    """
    Get the platform-specific settings directory.

    Returns:
        Path to settings directory

    Platform paths:
        - Linux: ~/.config/disc-workbench/
        - Windows: %APPDATA%/DiscWorkbench/
        - macOS: ~/Library/Application Support/DiscWorkbench/
    """
    if sys.platform == 'win32':
        base = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
        return base / 'DiscWorkbench'
    elif sys.platform == 'darwin':
        return Path.home() / 'Library' / 'Application Support' / 'DiscWorkbench'
    else:
        # Linux and other Unix-like
        xdg_config = os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config')
        return Path(xdg_config) / 'disc-workbench'


def get_settings_file() -> Path:
    """Get the settings file path."""
    return get_settings_dir() / 'settings.json'


# =============================================================================
# Settings Categories
# =============================================================================

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class DetectionSettings(BaseModel):
    """Volume detection preferences."""
    model_config = ConfigDict(validate_assignment=True)

    filesystem_priority: List[str] = Field(
        default_factory=lambda: [fs_type.value for fs_type in DEFAULT_PRIORITY])
    max_volume_descriptors: int = Field(default=64, ge=1, le=1024)

    @field_validator('filesystem_priority')
    @classmethod
    def _check_priority(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("filesystem_priority must not be empty")
        normalized = [name.lower() for name in value]
        known = {fs_type.value for fs_type in DEFAULT_PRIORITY}
        unknown = [name for name in normalized if name not in known]
        if unknown:
            raise ValueError(f"Unknown filesystem types: {', '.join(unknown)}")
        if len(set(normalized)) != len(normalized):
            raise ValueError("filesystem_priority contains duplicates")
        return normalized

    def priority_types(self) -> List[FilesystemType]:
        """Priority as FilesystemType values."""
        return [FilesystemType(name) for name in self.filesystem_priority]


class ReaderSettings(BaseModel):
    """Container reader options."""
    model_config = ConfigDict(validate_assignment=True)

    verify_chd_map_crc: bool = True


class LoggingSettings(BaseModel):
    """Log output preferences."""
    model_config = ConfigDict(validate_assignment=True)

    log_file: Optional[str] = None
    level: str = "INFO"

    @field_validator('level')
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return value


CATEGORIES = {
    'detection': DetectionSettings,
    'reader': ReaderSettings,
    'logging': LoggingSettings,
}


# =============================================================================
# Settings Manager
# =============================================================================

class Settings:
    """
    Singleton settings manager for Disc Workbench.

    Usage:
        settings = Settings.instance()
        settings.detection.max_volume_descriptors = 32
        settings.save()

        # Or with context manager for auto-save:
        with settings.modify():
            settings.reader.verify_chd_map_crc = False
    """

    _instance: Optional["Settings"] = None
    _initialized: bool = False

    # Settings version for migration
    SETTINGS_VERSION = 2

    def __new__(cls) -> "Settings":
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize settings (only runs once due to singleton)."""
        if self._initialized:
            return

        self._initialized = True

        # Initialize settings categories
        self.detection = DetectionSettings()
        self.reader = ReaderSettings()
        self.logging = LoggingSettings()

        # Track if settings have been modified
        self._dirty = False

        # Load settings from file
        self.load()

        logger.debug("Settings initialized")

    @classmethod
    def instance(cls) -> "Settings":
        """Get the singleton settings instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None
        cls._initialized = False

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> bool:
        """
        Load settings from file.

        Invalid categories keep their defaults; the rest are applied.

        Returns:
            True if settings were loaded successfully
        """
        settings_file = get_settings_file()

        if not settings_file.exists():
            logger.debug(f"Settings file not found: {settings_file}")
            return False

        try:
            with open(settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in settings file: {e}")
            # Backup corrupted file
            self._backup_corrupted_file(settings_file)
            return False
        except PermissionError as e:
            logger.error(f"Permission denied reading settings: {e}")
            return False
        except OSError as e:
            logger.error(f"Error reading settings: {e}")
            return False

        if not isinstance(data, dict):
            logger.error("Settings file does not hold an object")
            self._backup_corrupted_file(settings_file)
            return False

        # Check version for migration
        version = data.get('version', 0)
        if version < self.SETTINGS_VERSION:
            data = self._migrate_settings(data, version)

        for name, model in CATEGORIES.items():
            if name not in data:
                continue
            try:
                setattr(self, name, model.model_validate(data[name]))
            except ValidationError as e:
                logger.warning(f"Ignoring invalid '{name}' settings: {e.error_count()} error(s)")

        logger.info(f"Settings loaded from {settings_file}")
        return True

    def save(self) -> bool:
        """
        Save settings to file.

        Returns:
            True if settings were saved successfully
        """
        settings_dir = get_settings_dir()
        settings_file = get_settings_file()

        data: Dict[str, Any] = {
            'version': self.SETTINGS_VERSION,
            'saved_at': datetime.now().isoformat(),
        }
        for name in CATEGORIES:
            data[name] = getattr(self, name).model_dump()

        try:
            # Ensure directory exists
            settings_dir.mkdir(parents=True, exist_ok=True)

            # Write to temp file first, then rename (atomic)
            temp_file = settings_file.with_suffix('.tmp')
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)

            temp_file.replace(settings_file)

            self._dirty = False
            logger.info(f"Settings saved to {settings_file}")
            return True

        except PermissionError as e:
            logger.error(f"Permission denied saving settings: {e}")
            return False
        except OSError as e:
            if e.errno == 28:
                logger.error("Disk full - cannot save settings")
            else:
                logger.error(f"OS error saving settings: {e}")
            return False

    def _migrate_settings(self, data: Dict[str, Any], from_version: int) -> Dict[str, Any]:
        """
        Migrate settings from older versions.

        Args:
            data: Settings data dictionary
            from_version: Version of the loaded settings

        Returns:
            Migrated settings data
        """
        logger.info(f"Migrating settings from version {from_version} to {self.SETTINGS_VERSION}")

        # Version 1 stored the probe order under "filesystems"
        if from_version < 2 and 'filesystems' in data:
            detection = data.setdefault('detection', {})
            detection.setdefault('filesystem_priority', data.pop('filesystems'))

        data['version'] = self.SETTINGS_VERSION
        return data

    def _backup_corrupted_file(self, file_path: Path) -> None:
        """Backup a corrupted settings file."""
        try:
            backup_path = file_path.with_suffix('.backup')
            file_path.replace(backup_path)
            logger.info(f"Corrupted settings backed up to {backup_path}")
        except OSError as e:
            logger.error(f"Could not backup corrupted file: {e}")

    # =========================================================================
    # Context Manager
    # =========================================================================

    class _ModifyContext:
        """Context manager for modifying settings with auto-save."""

        def __init__(self, settings: "Settings"):
            self.settings = settings

        def __enter__(self) -> "Settings":
            return self.settings

        def __exit__(self, exc_type, exc_val, exc_tb) -> None:
            if exc_type is None:
                self.settings.save()

    def modify(self) -> "_ModifyContext":
        """
        Context manager for modifying settings with auto-save.

        Usage:
            with settings.modify():
                settings.detection.max_volume_descriptors = 32
            # Settings automatically saved on exit
        """
        self._dirty = True
        return self._ModifyContext(self)

    # =========================================================================
    # Reset
    # =========================================================================

    def reset_to_defaults(self, category: Optional[str] = None) -> None:
        """
        Reset settings to defaults.

        Args:
            category: Specific category to reset, or None for all
        """
        for name, model in CATEGORIES.items():
            if category is None or category == name:
                setattr(self, name, model())

        self._dirty = True
        logger.info(f"Settings reset to defaults: {category or 'all'}")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_dirty(self) -> bool:
        """Check if settings have been modified since last save."""
        return self._dirty

    @property
    def settings_file(self) -> Path:
        """Get the settings file path."""
        return get_settings_file()

    def reader_options(self) -> Dict[str, Any]:
        """Keyword options for open_image()."""
        return {'verify_chd_map_crc': self.reader.verify_chd_map_crc}


# =============================================================================
# Module-Level Convenience Functions
# =============================================================================

def get_settings() -> Settings:
    """
    Get the global settings instance.

    This is a convenience function equivalent to Settings.instance().

    Returns:
        The singleton Settings instance
    """
    return Settings.instance()
