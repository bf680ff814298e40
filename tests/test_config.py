import pytest

from quaver.config import IDLE_TIMEOUT, MAX_RETRIES, Settings
from quaver.errors import ConfigError


class TestSettings:
    def test_defaults(self):
        """Should fill every optional setting with its default."""
        s = Settings.from_env({"DISCORD_BOT_TOKEN": "abc"})
        assert s.token == "abc"
        assert s.prefix == "%"
        assert s.idle_timeout == IDLE_TIMEOUT
        assert s.max_retries == MAX_RETRIES
        assert s.web_port == 5000
        assert s.metrics_port is None
        assert s.ytdl_cookiefile is None
        assert s.default_activity == "music | %help"
        assert s.log_level == "INFO"

    def test_missing_token(self):
        with pytest.raises(ConfigError):
            Settings.from_env({})
        with pytest.raises(ConfigError):
            Settings.from_env({"DISCORD_BOT_TOKEN": "   "})

    def test_overrides(self):
        s = Settings.from_env({
            "DISCORD_BOT_TOKEN": "abc",
            "COMMAND_PREFIX": "!",
            "IDLE_TIMEOUT": "60",
            "MAX_RETRIES": "4",
            "RETRY_DELAY": "0.5",
            "WEB_PORT": "8080",
            "METRICS_PORT": "9100",
            "YTDL_COOKIEFILE": "cookies.txt",
            "LOG_LEVEL": "debug",
        })
        assert s.prefix == "!"
        assert s.idle_timeout == 60.0
        assert s.max_retries == 4
        assert s.retry_delay == 0.5
        assert s.web_port == 8080
        assert s.metrics_port == 9100
        assert s.ytdl_cookiefile == "cookies.txt"
        assert s.default_activity == "music | !help"
        assert s.log_level == "DEBUG"

    def test_empty_web_port_disables_server(self):
        s = Settings.from_env({"DISCORD_BOT_TOKEN": "abc", "WEB_PORT": ""})
        assert s.web_port is None

    @pytest.mark.parametrize("name, value", [
        ("IDLE_TIMEOUT", "soon"),
        ("IDLE_TIMEOUT", "-1"),
        ("MAX_RETRIES", "1.5"),
        ("WEB_PORT", "http"),
        ("WEB_PORT", "70000"),
        ("METRICS_PORT", "0"),
    ])
    def test_rejects_bad_values(self, name, value):
        """Should raise ConfigError for malformed or out-of-range values."""
        with pytest.raises(ConfigError):
            Settings.from_env({"DISCORD_BOT_TOKEN": "abc", name: value})
