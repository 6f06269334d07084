"""
Configuration management for multicloud-ecs.
"""

from .settings import (
    AppSettings,
    AwsProviderSettings,
    EcsSettings,
    MonitoringSettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "AppSettings",
    "AwsProviderSettings",
    "EcsSettings",
    "MonitoringSettings",
    "get_settings",
    "reload_settings",
]
