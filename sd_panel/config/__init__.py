"""
Configuration module for SD Panel

Provides settings file discovery, sanitised loading and saving.
"""

from .panel_config import PanelConfig, PanelSettings, get_panel_config, load_panel_settings

__all__ = ['PanelConfig', 'PanelSettings', 'get_panel_config', 'load_panel_settings']
