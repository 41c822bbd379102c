"""
Configuration management using environment variables.
Handles upstream, Discord, server, scheduling and logging settings with validation and defaults.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class NotifierConfig(BaseSettings):
    """
    Configuration class for the stock notifier.
    Uses pydantic BaseSettings for environment variable management.
    """

    # Upstream Configuration
    upstream_base_url: str = Field(default="https://growagardenstock.com")
    request_timeout: float = Field(default=10.0)
    retry_attempts: int = Field(default=1)
    retry_delay: float = Field(default=1.0)

    # Discord Configuration
    discord_webhook_url: Optional[str] = Field(default=None)
    discord_bot_token: Optional[str] = Field(default=None)
    discord_channel_id: Optional[str] = Field(default=None)
    discord_guild_id: Optional[str] = Field(default=None)
    discord_application_id: Optional[str] = Field(default=None)
    discord_public_key: Optional[str] = Field(default=None)
    discord_api_base: str = Field(default="https://discord.com/api/v10")
    send_timeout: float = Field(default=10.0)

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)

    # Scheduler Configuration
    poll_interval_minutes: int = Field(default=5)
    schedule_alignment: str = Field(default="wall_clock")
    settle_seconds: float = Field(default=0.0)
    run_on_startup: bool = Field(default=False)
    timezone: str = Field(default="UTC")

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    # Development/Testing
    debug: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields from .env
    )

    @field_validator('request_timeout', 'send_timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Ensure timeouts are bounded."""
        if v <= 0 or v > 120:
            raise ValueError('timeouts must be between 0 and 120 seconds')
        return v

    @field_validator('retry_attempts')
    @classmethod
    def validate_retry_attempts(cls, v):
        """Ensure retry attempts is reasonable."""
        if v < 0 or v > 5:
            raise ValueError('retry_attempts must be between 0 and 5')
        return v

    @field_validator('poll_interval_minutes')
    @classmethod
    def validate_poll_interval(cls, v):
        """Ensure the poll interval is at least one minute and at most one day."""
        if v < 1 or v > 1440:
            raise ValueError('poll_interval_minutes must be between 1 and 1440')
        return v

    @field_validator('settle_seconds')
    @classmethod
    def validate_settle_seconds(cls, v):
        if v < 0 or v > 300:
            raise ValueError('settle_seconds must be between 0 and 300')
        return v

    @field_validator('schedule_alignment')
    @classmethod
    def validate_schedule_alignment(cls, v):
        """Ensure the alignment policy is known."""
        valid_policies = ['wall_clock', 'free_running']
        if v.lower() not in valid_policies:
            raise ValueError(f'schedule_alignment must be one of: {valid_policies}')
        return v.lower()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def has_webhook(self) -> bool:
        return bool(self.discord_webhook_url)

    def has_bot_channel(self) -> bool:
        return bool(self.discord_bot_token and self.discord_channel_id)

    def get_user_agent(self) -> str:
        """Get user agent string for requests."""
        return "GardenStockNotifier/1.0"

    def get_headers(self) -> dict:
        """Get default headers for upstream HTTP requests."""
        return {
            "User-Agent": self.get_user_agent(),
            "Accept": "application/json",
            "Cache-Control": "no-cache",
        }


# Global configuration instance
config = NotifierConfig()
