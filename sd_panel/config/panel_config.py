#!/usr/bin/env python3
"""
Panel Configuration Utility

Settings file discovery, loading and saving for the SD panel.
Provides a single source of truth for the backend endpoint and timeout bounds.
"""

import os
import json
import logging
import math
from pathlib import Path
from typing import Dict, Any, Optional, List

from pydantic import BaseModel

from ..stable_diffusion.timeout import TimeoutOptions

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"
SETTINGS_PATH_ENV = "SD_PANEL_SETTINGS"
ENDPOINT_ENV = "SD_BASE_URL"


class PanelSettings(BaseModel):
    sd_endpoint: str = "http://127.0.0.1:7860"
    offline_mode: bool = True
    output_directory: str = ""
    brand_color: str = "#b794f6"
    timeout_multiplier: float = 1.0
    timeout_min_seconds: float = 20
    timeout_max_seconds: float = 120

    def sanitized(self) -> "PanelSettings":
        """Clamp the timeout fields into their valid ranges"""
        defaults = PanelSettings()
        max_seconds = self.timeout_max_seconds if math.isfinite(self.timeout_max_seconds) else defaults.timeout_max_seconds
        if math.isfinite(self.timeout_min_seconds):
            min_seconds = max(5, min(self.timeout_min_seconds, max_seconds))
        else:
            min_seconds = defaults.timeout_min_seconds
        max_seconds = max(min_seconds, max_seconds)
        if math.isfinite(self.timeout_multiplier):
            multiplier = max(0.25, self.timeout_multiplier)
        else:
            multiplier = defaults.timeout_multiplier
        return self.model_copy(update={
            "timeout_min_seconds": min_seconds,
            "timeout_max_seconds": max_seconds,
            "timeout_multiplier": multiplier,
        })

    def timeout_options(self) -> TimeoutOptions:
        return TimeoutOptions.from_seconds(self.timeout_multiplier, self.timeout_min_seconds, self.timeout_max_seconds)


class PanelConfig:
    """
    Settings file manager

    Handles auto-detection of the settings file, sanitised loading and
    saving, and the endpoint environment override.
    """

    def __init__(self, custom_path: Optional[str] = None):
        """
        Initialize panel configuration manager

        Args:
            custom_path: Optional custom path to settings.json
        """
        self._settings_path: Optional[Path] = None
        self._settings = PanelSettings()
        self._loaded = False

        if custom_path:
            self.set_settings_path(custom_path)
        else:
            self.auto_detect_settings_path()

    @property
    def settings_path(self) -> Optional[Path]:
        return self._settings_path

    @property
    def settings(self) -> PanelSettings:
        return self._settings

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def data_folder(self) -> Path:
        """Folder holding settings.json and the presets folder"""
        if self._settings_path:
            return self._settings_path.parent
        return self.get_common_settings_paths()[0].parent

    def set_settings_path(self, path: str) -> bool:
        """
        Set custom settings path

        The file does not need to exist yet; it is created on first save.
        """
        settings_path = Path(path).expanduser()
        if settings_path.is_dir():
            settings_path = settings_path / SETTINGS_FILE
        self._settings_path = settings_path
        self._loaded = False
        logger.info(f"Settings path set to: {settings_path}")
        return settings_path.exists()

    def get_common_settings_paths(self) -> List[Path]:
        home = Path.home()
        return [
            home / ".config" / "sd-panel" / SETTINGS_FILE,
            home / "AppData" / "Roaming" / "sd-panel" / SETTINGS_FILE,  # Windows
            home / "Library" / "Application Support" / "sd-panel" / SETTINGS_FILE,  # macOS
            Path.cwd() / SETTINGS_FILE,
        ]

    def auto_detect_settings_path(self) -> bool:
        """
        Auto-detect settings.json location

        Returns:
            bool: True if an existing settings file was found
        """
        env_path = os.getenv(SETTINGS_PATH_ENV)
        if env_path:
            logger.info(f"Using {SETTINGS_PATH_ENV} environment variable: {env_path}")
            return self.set_settings_path(env_path)

        for path in self.get_common_settings_paths():
            if path.exists() and path.is_file():
                logger.info(f"Found settings at: {path}")
                self._settings_path = path
                return True

        self._settings_path = self.get_common_settings_paths()[0]
        logger.info(f"No settings file found, defaults will be saved to {self._settings_path}")
        return False

    def load_settings(self) -> PanelSettings:
        """
        Load settings from disk merged over defaults

        Missing or unreadable files fall back to defaults. The endpoint
        environment variable wins over the file.
        """
        data: Dict[str, Any] = {}
        if self._settings_path and self._settings_path.exists():
            try:
                with open(self._settings_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._loaded = True
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON in settings file: {e}")
            except OSError as e:
                logger.error(f"Error reading settings file: {e}")

        merged = {**PanelSettings().model_dump(), **(data if isinstance(data, dict) else {})}
        env_endpoint = os.getenv(ENDPOINT_ENV)
        if env_endpoint:
            merged["sd_endpoint"] = env_endpoint

        try:
            settings = PanelSettings(**merged)
        except ValueError as e:
            logger.error(f"Invalid settings values, using defaults: {e}")
            settings = PanelSettings()
        self._settings = settings.sanitized()
        return self._settings

    def save_settings(self, settings: PanelSettings) -> PanelSettings:
        if not self._settings_path:
            raise ValueError("No settings path configured")
        sanitized = settings.sanitized()
        self._settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._settings_path, "w", encoding="utf-8") as f:
            json.dump(sanitized.model_dump(), f, indent=2)
        self._settings = sanitized
        logger.info(f"Settings saved to {self._settings_path}")
        return sanitized

    def update_settings(self, **changes: Any) -> PanelSettings:
        return self.save_settings(self._settings.model_copy(update=changes))

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            "settings_path": str(self._settings_path) if self._settings_path else None,
            "settings_exists": self._settings_path.exists() if self._settings_path else False,
            "loaded": self._loaded,
            "sd_endpoint": self._settings.sd_endpoint,
            "offline_mode": self._settings.offline_mode,
            "timeout": {
                "multiplier": self._settings.timeout_multiplier,
                "min_seconds": self._settings.timeout_min_seconds,
                "max_seconds": self._settings.timeout_max_seconds,
            },
        }


# Global instance for easy access
_global_panel_config: Optional[PanelConfig] = None


def get_panel_config(custom_path: Optional[str] = None) -> PanelConfig:
    """
    Get global panel configuration instance

    Args:
        custom_path: Optional custom path to settings.json

    Returns:
        PanelConfig: Global configuration instance
    """
    global _global_panel_config

    if _global_panel_config is None or custom_path:
        _global_panel_config = PanelConfig(custom_path)

    return _global_panel_config


def load_panel_settings(custom_path: Optional[str] = None) -> PanelSettings:
    """Convenience function returning the sanitised settings"""
    return get_panel_config(custom_path).load_settings()
