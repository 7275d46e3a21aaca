from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Application
    debug: bool = Field(default=False)
    config_path: str = Field(default="config.yml")

    # Scheduler
    scheduler_enabled: bool = Field(default=True)

    # WhatsApp Cloud API
    whatsapp_access_token: str = Field(default="")
    whatsapp_phone_number_id: str = Field(default="")
    whatsapp_api_base: str = Field(default="https://graph.facebook.com/v18.0")

    # Agent collaborator, as "module:callable"
    agent_factory: str = Field(default="buddy.services.agent:TemplateAgent")


class WindowConfig:
    """A named local time-of-day window."""

    def __init__(self, data: dict[str, Any], default_start: str, default_end: str) -> None:
        self.start: str = data.get("start", default_start)
        self.end: str = data.get("end", default_end)
        self.fuzziness_minutes: int | None = data.get("fuzziness_minutes")


DEFAULT_WINDOWS = {
    "morning": ("07:00", "10:00"),
    "midday": ("11:00", "14:00"),
    "evening": ("18:00", "21:00"),
}


class DeliveryConfig:
    """Delivery window configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.fuzziness_minutes: int = data.get("fuzziness_minutes", 30)
        windows = data.get("windows", {})
        self.windows: dict[str, WindowConfig] = {
            name: WindowConfig(windows.get(name, {}), start, end)
            for name, (start, end) in DEFAULT_WINDOWS.items()
        }

    def fuzziness_for(self, window_name: str) -> int:
        """Per-window fuzziness if configured, else the global value."""
        window = self.windows.get(window_name)
        if window is not None and window.fuzziness_minutes is not None:
            return window.fuzziness_minutes
        return self.fuzziness_minutes


class SchedulerConfig:
    """Delivery scheduler configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.tick_interval_seconds: int = data.get("tick_interval_seconds", 60)
        self.external_timeout_seconds: float = data.get("external_timeout_seconds", 10)
        self.lease_ttl_seconds: int = data.get("lease_ttl_seconds", 300)
        self.max_concurrency: int = data.get("max_concurrency", 8)

        # Backoff and reschedule constants
        self.soft_retry = timedelta(hours=data.get("soft_retry_hours", 1))
        self.hard_retry = timedelta(hours=data.get("hard_retry_hours", 10))
        self.fallback = timedelta(hours=data.get("fallback_hours", 24))
        self.min_lead = timedelta(minutes=data.get("min_lead_minutes", 5))
        self.clamp = timedelta(hours=data.get("clamp_hours", 23))
        self.throttled_reschedule = timedelta(hours=data.get("throttled_reschedule_hours", 24))

        self.daily_prompt: str = data.get(
            "daily_prompt",
            "The conversation is not being initiated by the user but by an automated system. "
            "Start off with a friendly conversation opener, then continue the conversation.",
        )
        self.trial_warning_note: str = data.get(
            "trial_warning_note",
            "Mention briefly that the free trial ends soon.",
        )
        self.subscribe_prompt_note: str = data.get(
            "subscribe_prompt_note",
            "Invite the user to subscribe to keep unlimited daily conversations.",
        )
        self.throttle_warning_message: str = data.get(
            "throttle_warning_message",
            "⚠️ You have reached the maximum number of conversations allowed for your plan. "
            "Please upgrade to continue chatting right now or come back tomorrow :)",
        )


class ThrottleConfig:
    """Free-tier throttle configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.daily_cap: int = data.get("daily_cap", 1)
        self.ttl_seconds: int = data.get("ttl_seconds", 86400)


class CheckpointConfig:
    """Conversation checkpoint retention from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.retention_seconds: int = data.get("retention_seconds", 3 * 86400)
        self.partial_write_ttl_seconds: int = data.get("partial_write_ttl_seconds", 86400)


class AppConfig:
    """Combined application configuration from .env and config.yml."""

    def __init__(self, settings: Settings | None = None, data: dict[str, Any] | None = None) -> None:
        self.settings = settings or Settings()
        if data is None:
            data = self._load_yaml(Path(self.settings.config_path))

        self.delivery = DeliveryConfig(data.get("delivery", {}))
        self.scheduler = SchedulerConfig(data.get("scheduler", {}))
        self.throttle = ThrottleConfig(data.get("throttle", {}))
        self.checkpoints = CheckpointConfig(data.get("checkpoints", {}))

    @staticmethod
    def _load_yaml(config_path: Path) -> dict[str, Any]:
        if not config_path.exists():
            return {}
        with open(config_path) as f:
            return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def get_config() -> AppConfig:
    """Get cached full config instance."""
    return AppConfig(get_settings())
