"""Test configuration loading"""

import pytest

from setlist_sync.core.config import (
    ENDPOINT_ENV_VARS,
    EndpointConfig,
    load_config,
)
from setlist_sync.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """No endpoint variables from the developer's shell, no stray config.yaml"""
    for env_var in ENDPOINT_ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.chdir(tmp_path)


def write_config(tmp_path, content):
    path = tmp_path / "custom.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test load_config()"""

    def test_defaults_without_file(self):
        config = load_config()

        assert config.confirmation.create_attempts == 6
        assert config.confirmation.create_delay == 1.5
        assert config.confirmation.update_attempts == 3
        assert config.confirmation.update_delay == 1.0
        assert config.confirmation.acceptance_markers == ("started",)
        assert config.network.timeout == 30.0
        assert config.logging.level == "INFO"
        assert config.logging.directory is None
        assert not config.endpoints.is_configured("get_songs")

    def test_default_file_in_working_directory(self, tmp_path):
        (tmp_path / "config.yaml").write_text(
            "endpoints:\n  get_songs: https://n8n.test/webhook/get-songs\n",
            encoding="utf-8"
        )
        config = load_config()
        assert config.endpoints.get_songs == "https://n8n.test/webhook/get-songs"

    def test_explicit_file(self, tmp_path):
        path = write_config(tmp_path, (
            "confirmation:\n"
            "  create_attempts: 2\n"
            "  update_delay: 0\n"
            "  acceptance_markers: queued\n"
            "network:\n"
            "  timeout: 5\n"
            "logging:\n"
            "  level: debug\n"
        ))
        config = load_config(path)

        assert config.confirmation.create_attempts == 2
        assert config.confirmation.update_delay == 0.0
        assert config.confirmation.acceptance_markers == ("queued",)
        assert config.network.timeout == 5.0
        assert config.logging.level == "DEBUG"

    def test_empty_file_means_defaults(self, tmp_path):
        config = load_config(write_config(tmp_path, ""))
        assert config.network.timeout == 30.0

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "endpoints:\n  save_song: https://file.test/save\n")
        monkeypatch.setenv("SETLIST_SAVE_SONG_URL", "https://env.test/save")

        config = load_config(path)
        assert config.endpoints.save_song == "https://env.test/save"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(tmp_path / "nope.yaml")
        assert "not found" in str(exc_info.value)

    @pytest.mark.parametrize("content, fragment", [
        ("endpoints: [unclosed", "Invalid YAML"),
        ("- just\n- a list\n", "YAML dictionary"),
        ("endpoints: nope\n", "must be a dictionary"),
        ("endpoints:\n  get_song: https://typo.test\n", "Unknown endpoint"),
        ("endpoints:\n  get_songs: 42\n", "string URL"),
        ("confirmation:\n  create_attempts: 0\n", "positive integer"),
        ("confirmation:\n  update_attempts: true\n", "positive integer"),
        ("confirmation:\n  create_delay: -1\n", "non-negative"),
        ("confirmation:\n  acceptance_markers: ['']\n", "acceptance_markers"),
        ("network:\n  timeout: 0\n", "positive number"),
        ("logging:\n  level: LOUD\n", "Invalid logging level"),
        ("logging:\n  directory: '  '\n", "logging.directory"),
    ])
    def test_invalid_configuration(self, tmp_path, content, fragment):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(write_config(tmp_path, content))
        assert fragment in str(exc_info.value)

    def test_log_directory_is_expanded(self, tmp_path):
        config = load_config(write_config(tmp_path, f"logging:\n  directory: {tmp_path / 'logs'}\n"))
        assert config.logging.directory == (tmp_path / "logs").resolve()


class TestEndpointConfig:
    """Test endpoint lookup"""

    def test_require_returns_url(self):
        endpoints = EndpointConfig(get_songs="https://n8n.test/get-songs")
        assert endpoints.require("get_songs") == "https://n8n.test/get-songs"

    def test_unset_endpoint_names_env_var(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EndpointConfig().require("save_setlist")
        assert "SETLIST_SAVE_SETLIST_URL" in str(exc_info.value)
        assert exc_info.value.details["endpoint"] == "save_setlist"

    def test_placeholder_counts_as_unset(self):
        endpoints = EndpointConfig(get_songs="https://your-n8n-webhook-url/get-songs")
        assert not endpoints.is_configured("get_songs")
        with pytest.raises(ConfigurationError):
            endpoints.require("get_songs")

    def test_delete_song_falls_back_to_save_song(self):
        endpoints = EndpointConfig(save_song="https://n8n.test/save-song")
        assert endpoints.require("delete_song") == "https://n8n.test/save-song"

        dedicated = EndpointConfig(save_song="https://a.test", delete_song="https://b.test")
        assert dedicated.require("delete_song") == "https://b.test"

    def test_unknown_category(self):
        with pytest.raises(ConfigurationError):
            EndpointConfig().require("get_everything")
