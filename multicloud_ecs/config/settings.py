"""
Central configuration management for multicloud-ecs.

Type-safe settings loaded from the environment with pydantic-settings. Each
provider reads its own section and reports availability from it.
"""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EcsSettings(BaseSettings):
    """Dispatch layer configuration."""

    enabled: bool = True
    scheduler_type: str = "fixed"
    default_provider: Optional[str] = None

    # Caller-facing hints; the dispatch layer itself never polls or retries
    operation_timeout: int = Field(default=300, gt=0)  # seconds
    polling_interval: int = Field(default=5000, gt=0)  # milliseconds
    max_retries: int = Field(default=3, ge=0)

    post_provision_timeout: float = Field(default=30.0, gt=0)  # seconds
    audit_enabled: bool = True

    @field_validator("scheduler_type")
    @classmethod
    def normalize_scheduler_type(cls, v):
        return v.strip().lower()

    model_config = SettingsConfigDict(
        env_prefix="MULTICLOUD_ECS_", case_sensitive=False
    )


class AwsProviderSettings(BaseSettings):
    """AWS EC2 provider configuration."""

    enabled: bool = False
    provider_code: str = "AWS"
    provider_name: str = "Amazon Web Services"
    priority: int = 100

    # Credentials; falls back to the named profile when keys are not set
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    profile_name: Optional[str] = None
    endpoint_url: Optional[str] = None

    region: str = "us-west-2"
    default_zone: Optional[str] = None

    default_instance_type: str = "t3.micro"
    default_image_id: Optional[str] = None
    image_mapping: Dict[str, str] = Field(default_factory=dict)
    gpu_mapping: Dict[str, str] = Field(
        default_factory=lambda: {
            "A100": "p4d.24xlarge",
            "V100": "p3.2xlarge",
            "T4": "g4dn.xlarge",
        }
    )
    default_system_disk_type: str = "gp3"
    default_system_disk_size: int = Field(default=40, gt=0)  # GB
    default_charge_mode: str = "ON_DEMAND"

    @field_validator("provider_code")
    @classmethod
    def normalize_provider_code(cls, v):
        return v.strip().upper()

    @field_validator("default_charge_mode")
    @classmethod
    def validate_charge_mode(cls, v):
        """Validate billing mode."""
        valid_modes = ["ON_DEMAND", "PREPAID"]
        if v.upper() not in valid_modes:
            raise ValueError(f"Charge mode must be one of: {valid_modes}")
        return v.upper()

    @property
    def has_credentials(self) -> bool:
        """Check if explicit keys or a profile are configured."""
        return bool(
            (self.access_key_id and self.secret_access_key) or self.profile_name
        )

    model_config = SettingsConfigDict(
        env_prefix="MULTICLOUD_ECS_AWS_", case_sensitive=False
    )


class MonitoringSettings(BaseSettings):
    """Logging configuration."""

    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None
    event_log_dir: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError("Log format must be 'json' or 'text'")
        return v

    model_config = SettingsConfigDict(
        env_prefix="MULTICLOUD_ECS_", case_sensitive=False
    )


class AppSettings(BaseSettings):
    """Main application settings."""

    app_name: str = "multicloud-ecs"
    app_version: str = "0.1.0"
    environment: str = "development"

    ecs: EcsSettings = Field(default_factory=EcsSettings)
    aws: AwsProviderSettings = Field(default_factory=AwsProviderSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name."""
        valid_envs = ["development", "testing", "staging", "production", "ci"]
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration dict with sensitive values masked."""
        config = self.model_dump()

        def mask_sensitive(obj):
            """Recursively mask sensitive fields."""
            if isinstance(obj, dict):
                for key, value in obj.items():
                    if any(
                        sensitive in key.lower()
                        for sensitive in ["password", "secret", "access_key", "token"]
                    ):
                        if value and str(value).strip():
                            obj[key] = "***MASKED***"
                    elif isinstance(value, (dict, list)):
                        mask_sensitive(value)
            elif isinstance(obj, list):
                for item in obj:
                    if isinstance(item, (dict, list)):
                        mask_sensitive(item)

        mask_sensitive(config)
        return config

    model_config = SettingsConfigDict(
        env_prefix="MULTICLOUD_ECS_APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Settings are cached; the provider registry never is
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get the cached application settings."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Force reload of settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
