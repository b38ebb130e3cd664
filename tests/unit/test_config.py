"""
Unit tests for relaychat.config module.
"""

import pytest

from relaychat.config import DEFAULT_CONFIG, Config, LocalProfile
from relaychat.errors import ConfigError, ErrorCode


class TestConfig:
    """Test TOML configuration loading."""

    def test_defaults_without_file(self, temp_dir):
        config = Config(temp_dir / "config.toml")

        assert config.get("relay", "port") == 9090
        assert config.get("client", "server_url") == "ws://10.0.0.1:9090"
        assert config.get("storage", "passphrase") == "bitcoin"
        assert config.get("missing", "key", "fallback") == "fallback"

    def test_file_overrides_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[relay]\nport = 9191\n\n[logging]\nlevel = "DEBUG"\n')

        config = Config(path)

        assert config.get("relay", "port") == 9191
        assert config.get("relay", "host") == "0.0.0.0"
        assert config.get("logging", "level") == "DEBUG"

    def test_env_overrides(self, temp_dir, monkeypatch):
        monkeypatch.setenv("RELAYCHAT_RELAY_PORT", "7000")
        monkeypatch.setenv("RELAYCHAT_LOGGING_FILE_LOGGING", "false")
        monkeypatch.setenv("RELAYCHAT_CLIENT_SERVER_URL", "ws://relay:1")

        config = Config(temp_dir / "config.toml")

        assert config.get("relay", "port") == 7000
        assert config.get("logging", "file_logging") is False
        assert config.get("client", "server_url") == "ws://relay:1"

    def test_bad_env_value_ignored(self, temp_dir, monkeypatch):
        monkeypatch.setenv("RELAYCHAT_RELAY_PORT", "not-a-number")
        assert Config(temp_dir / "config.toml").get("relay", "port") == 9090

    def test_invalid_toml(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[relay\nport = ")

        with pytest.raises(ConfigError) as exc_info:
            Config(path)
        assert exc_info.value.code == ErrorCode.E704_CONFIG_PARSE_ERROR

    def test_save_and_reload(self, temp_dir):
        path = temp_dir / "nested" / "config.toml"
        config = Config(path)
        config.set("relay", "port", 9999)
        config.set("client", "server_url", 'ws://"quoted"')
        config.save()

        reloaded = Config(path)

        assert reloaded.get("relay", "port") == 9999
        assert reloaded.get("client", "server_url") == 'ws://"quoted"'

    def test_defaults_not_mutated(self, temp_dir):
        config = Config(temp_dir / "config.toml")
        config.set("relay", "port", 1)
        assert DEFAULT_CONFIG["relay"]["port"] == 9090

    def test_create_example(self, temp_dir):
        path = temp_dir / "example.toml"
        Config.create_example(path)

        assert Config(path).to_dict() == Config(temp_dir / "absent.toml").to_dict()


class TestLocalProfile:
    """Test the JSON local profile."""

    def test_missing_profile(self, temp_dir):
        assert LocalProfile.load(temp_dir) is None

    def test_save_and_load(self, temp_dir):
        LocalProfile("1 555 0001", "ws://relay:9090", "Me").save(temp_dir)

        profile = LocalProfile.load(temp_dir)

        assert profile.phone_number == "+15550001"
        assert profile.signaling_server_url == "ws://relay:9090"
        assert profile.user_name == "Me"

    def test_default_server(self, temp_dir):
        assert LocalProfile("+1").signaling_server_url == "ws://10.0.0.1:9090"

    def test_invalid_profile_file(self, temp_dir):
        (temp_dir / "profile.json").write_text('{"phoneNumber": ""}')

        with pytest.raises(ConfigError):
            LocalProfile.load(temp_dir)
