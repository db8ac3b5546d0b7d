"""Tests for settings loading and validation."""

from review_notify.config.settings import NotificationSettings, RealtimeSettings, Settings


class TestSettings:
    """Test suite for application settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.realtime.heartbeat_interval_seconds == 30
        assert settings.database.notifications_collection == "notifications"
        assert settings.validate_configuration() == {}

    def test_nested_environment_override(self, monkeypatch):
        """Test that ``__`` separates nested sections in environment variables."""
        monkeypatch.setenv("REALTIME__HEARTBEAT_INTERVAL_SECONDS", "10")
        monkeypatch.setenv("NOTIFICATIONS__SUPPRESS_SELF_NOTIFICATIONS", "false")

        settings = Settings(_env_file=None)

        assert settings.realtime.heartbeat_interval_seconds == 10
        assert settings.notifications.suppress_self_notifications is False

    def test_validation_errors(self):
        settings = Settings(
            _env_file=None,
            realtime=RealtimeSettings(heartbeat_interval_seconds=0),
            notifications=NotificationSettings(default_page_size=200, max_page_size=100)
        )
        settings.database.mongodb_url = "not a url"

        errors = settings.validate_configuration()

        assert set(errors) == {"database", "realtime", "notifications"}

    def test_test_notifications_follow_environment(self):
        assert Settings(_env_file=None, environment="development").test_notifications_enabled
        assert not Settings(_env_file=None, environment="production").test_notifications_enabled
        assert Settings(
            _env_file=None,
            environment="production",
            notifications=NotificationSettings(allow_test_notifications=True)
        ).test_notifications_enabled

    def test_get_nested_setting(self):
        settings = Settings(_env_file=None)

        assert settings.get_nested_setting("realtime.send_timeout_seconds") == 5
        assert settings.get_nested_setting("realtime.missing", "fallback") == "fallback"
