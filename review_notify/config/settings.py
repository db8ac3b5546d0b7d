"""
Application settings for the review notification backend.

Settings are grouped into nested Pydantic models and loaded through
pydantic-settings, so every field can be overridden from the environment or
a ``.env`` file using ``__`` as the nesting delimiter:

    DATABASE__MONGODB_URL=mongodb://mongo:27017
    REALTIME__HEARTBEAT_INTERVAL_SECONDS=10
    NOTIFICATIONS__SUPPRESS_SELF_NOTIFICATIONS=false
    LOGGING__LEVEL=DEBUG
"""

from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """MongoDB configuration settings."""
    mongodb_url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URL"
    )
    mongodb_database: str = Field(
        default="beefery",
        description="MongoDB database name"
    )
    notifications_collection: str = Field(
        default="notifications",
        description="Collection holding notification records"
    )
    device_tokens_collection: str = Field(
        default="devicetokens",
        description="Collection holding push device tokens"
    )
    users_collection: str = Field(
        default="users",
        description="Collection holding user profiles (read-only)"
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        description="Server selection timeout in milliseconds"
    )
    max_pool_size: int = Field(
        default=50,
        description="Maximum MongoDB connection pool size"
    )
    min_pool_size: int = Field(
        default=5,
        description="Minimum MongoDB connection pool size"
    )


class RealtimeSettings(BaseModel):
    """Live push channel configuration."""
    heartbeat_interval_seconds: float = Field(
        default=30.0,
        description="Seconds between liveness probe cycles"
    )
    send_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for a single push to one connection"
    )
    user_id_pattern: str = Field(
        default=r"^[A-Za-z0-9_-]{1,64}$",
        description="Pattern a user id must match to open a channel"
    )
    require_known_user: bool = Field(
        default=False,
        description="Reject channel opens for ids unknown to the user directory"
    )
    sync_unread_on_connect: bool = Field(
        default=True,
        description="Push the current unread count when a channel opens"
    )


class NotificationSettings(BaseModel):
    """Notification persistence and fan-out settings."""
    default_page_size: int = Field(
        default=20,
        description="Default page size for notification listings"
    )
    max_page_size: int = Field(
        default=100,
        description="Largest page size a caller may request"
    )
    suppress_self_notifications: bool = Field(
        default=True,
        description="Skip notifications where sender and recipient are the same user"
    )
    allow_test_notifications: Optional[bool] = Field(
        default=None,
        description="Enable the test notification endpoint (defaults to non-production)"
    )
    unknown_sender_name: str = Field(
        default="Unknown User",
        description="Display name used when a sender snapshot cannot be resolved"
    )


class LoggingSettings(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(
        default="text",
        description="Log format (json/text)"
    )
    enable_correlation_ids: bool = Field(
        default=True,
        description="Enable correlation ID tracking"
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Enable logging to file"
    )
    log_file_path: str = Field(
        default="logs/review_notify.log",
        description="Path to log file"
    )


class Settings(BaseSettings):
    """
    Application configuration settings.

    Loaded from environment variables, the ``.env`` file and defaults,
    in that order of precedence.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Review Notification Service",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode enabled"
    )
    environment: str = Field(
        default="development",
        description="Environment (development/staging/production)"
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Database configuration"
    )
    realtime: RealtimeSettings = Field(
        default_factory=RealtimeSettings,
        description="Live channel configuration"
    )
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings,
        description="Notification configuration"
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration"
    )

    @property
    def test_notifications_enabled(self) -> bool:
        """Whether the test notification endpoint is available."""
        if self.notifications.allow_test_notifications is not None:
            return self.notifications.allow_test_notifications
        return self.environment != "production"

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for JSON serialization."""
        return self.model_dump(exclude_unset=False, exclude_none=False)

    def get_nested_setting(self, path: str, default: Any = None) -> Any:
        """
        Get a nested setting using dot notation.

        Args:
            path: Dot-separated path (e.g., "realtime.heartbeat_interval_seconds")
            default: Default value if path not found

        Returns:
            Setting value or default
        """
        try:
            current = self
            for part in path.split('.'):
                current = getattr(current, part)
            return current
        except AttributeError:
            return default

    def validate_configuration(self) -> Dict[str, list[str]]:
        """
        Validate the entire configuration.

        Returns:
            Dictionary with validation errors by section
        """
        errors: Dict[str, list[str]] = {}

        if not self._is_valid_url(self.database.mongodb_url):
            errors.setdefault("database", []).append(
                f"Invalid URL: database.mongodb_url = {self.database.mongodb_url}"
            )

        positive_fields = [
            ("realtime.heartbeat_interval_seconds", self.realtime.heartbeat_interval_seconds),
            ("realtime.send_timeout_seconds", self.realtime.send_timeout_seconds),
            ("notifications.default_page_size", self.notifications.default_page_size),
            ("notifications.max_page_size", self.notifications.max_page_size),
        ]

        for field_path, value in positive_fields:
            if value <= 0:
                section = field_path.split('.')[0]
                errors.setdefault(section, []).append(
                    f"Must be positive: {field_path} = {value}"
                )

        if self.notifications.default_page_size > self.notifications.max_page_size:
            errors.setdefault("notifications", []).append(
                "default_page_size must not exceed max_page_size"
            )

        return errors

    def _is_valid_url(self, url: str) -> bool:
        """Check if URL is valid."""
        from urllib.parse import urlparse
        try:
            result = urlparse(url)
        except ValueError:
            return False
        return all([result.scheme, result.netloc])


@lru_cache()
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
