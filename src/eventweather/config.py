"""Configuration management: environment variables (Pydantic Settings) + YAML config.

Env vars handle secrets and deployment-specific values.
weather_alerts.yml handles polling cadence, cache TTLs, cooldowns, and the
system-wide defaults seeded on first start (version-controlled).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# YAML config models (nested, loaded from config/weather_alerts.yml)
# ---------------------------------------------------------------------------


class SchedulerConfig(BaseModel):
    """Sweep cadence and the event lookahead window."""

    sweep_interval_minutes: int = 5
    lookahead_days: int = 3
    cache_sweep_minutes: int = 30


class WeatherProviderConfig(BaseModel):
    """Weather API caching and timeout parameters."""

    cache_ttl_minutes: int = 10
    request_timeout_s: float = 15.0
    units: Literal["metric", "imperial"] = "metric"


class AlertsConfig(BaseModel):
    """Anti-spam cooldowns and per-message delivery timeout."""

    risk_cooldown_hours: int = 3
    alerts_sent_history: int = 10
    notification_timeout_s: float = 30.0


class SystemDefaultsConfig(BaseModel):
    """Values used to seed the SystemConfig singleton on first start."""

    enabled: bool = False
    auto_polling: bool = True
    polling_interval: int = Field(default=60, ge=5, le=1440)
    allowed_roles: list[str] = Field(default_factory=lambda: ["super_admin"])
    require_approval: bool = True


class YAMLConfig(BaseModel):
    """Complete parsed weather_alerts.yml structure."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    weather: WeatherProviderConfig = Field(default_factory=WeatherProviderConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    system_defaults: SystemDefaultsConfig = Field(default_factory=SystemDefaultsConfig)


# ---------------------------------------------------------------------------
# Environment settings (Pydantic Settings)
# ---------------------------------------------------------------------------

# Default path to weather_alerts.yml relative to project root
_DEFAULT_CONFIG_PATH = (
    Path(__file__).resolve().parent.parent.parent / "config" / "weather_alerts.yml"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets and deployment-specific values come from env vars.
    Cadence, TTLs and seed defaults come from weather_alerts.yml.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenWeatherMap
    openweather_api_key: str = ""

    # Twilio (SMS + WhatsApp)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_whatsapp_from: str = ""

    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from: str = ""

    # Deployment
    environment: str = "dev"
    db_path: str = "./data/eventweather.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Path to weather_alerts.yml (not typically set via env, but useful for testing)
    config_path: str = str(_DEFAULT_CONFIG_PATH)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"dev", "staging", "prod"}
        if v not in allowed:
            msg = f"ENVIRONMENT must be one of {allowed}, got '{v}'"
            raise ValueError(msg)
        return v

    @property
    def has_twilio(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    @property
    def has_smtp(self) -> bool:
        return bool(self.smtp_host and self.email_from)

    def load_yaml_config(self) -> YAMLConfig:
        """Load and parse config/weather_alerts.yml into typed models."""
        config_file = Path(self.config_path)
        if not config_file.exists():
            msg = f"Config file not found: {config_file}"
            raise FileNotFoundError(msg)

        with open(config_file) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}

        return YAMLConfig.model_validate(raw)


# Module-level singleton for convenience
_settings: Settings | None = None
_yaml_config: YAMLConfig | None = None


def get_settings() -> Settings:
    """Get or create the global Settings instance."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def get_yaml_config() -> YAMLConfig:
    """Get or create the global YAMLConfig instance."""
    global _yaml_config  # noqa: PLW0603
    if _yaml_config is None:
        _yaml_config = get_settings().load_yaml_config()
    return _yaml_config


def reset_config() -> None:
    """Reset cached config singletons. Useful for testing."""
    global _settings, _yaml_config  # noqa: PLW0603
    _settings = None
    _yaml_config = None
