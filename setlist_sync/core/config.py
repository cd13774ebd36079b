"""
Configuration management for setlist-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml, with environment
variable overrides for the remote endpoint URLs.

The configuration file contains:
    - One endpoint URL per remote operation category
    - Confirmation polling policy (attempts and delay, create vs update)
    - Network timeout for the single HTTP round trip
    - Logging level and optional log directory

Configuration File Location:
    An explicit path may be given (CLI --config). Otherwise config.yaml in
    the current working directory is used if present. A missing default
    file is not an error: every endpoint can come from the environment.

Example config.yaml:
    endpoints:
      get_songs: "https://n8n.example.com/webhook/get-songs"
      save_song: "https://n8n.example.com/webhook/save-song"
      get_setlists: "https://n8n.example.com/webhook/get-setlists"
      save_setlist: "https://n8n.example.com/webhook/save-setlist"
      save_setlist_item: "https://n8n.example.com/webhook/save-setlist-item"
      delete_setlist: "https://n8n.example.com/webhook/delete-setlist"

    confirmation:
      create_attempts: 6
      create_delay: 1.5
      update_attempts: 3
      update_delay: 1.0

    network:
      timeout: 30

    logging:
      level: "INFO"
      directory: "~/.setlist-sync/logs"

Endpoints are NOT validated at load time. A missing endpoint fails with
ConfigurationError when the operation that needs it is called.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from setlist_sync.core.exceptions import ConfigurationError


# Load environment variables from .env file if present
load_dotenv()

# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

# Marker left in URLs copied from the example configuration
PLACEHOLDER_MARKER = "your-n8n-webhook-url"

# Environment variable per endpoint category
ENDPOINT_ENV_VARS = {
    "get_songs": "SETLIST_GET_SONGS_URL",
    "save_song": "SETLIST_SAVE_SONG_URL",
    "delete_song": "SETLIST_DELETE_SONG_URL",
    "get_setlists": "SETLIST_GET_SETLISTS_URL",
    "save_setlist": "SETLIST_SAVE_SETLIST_URL",
    "save_setlist_item": "SETLIST_SAVE_SETLIST_ITEM_URL",
    "delete_setlist": "SETLIST_DELETE_SETLIST_URL",
}


@dataclass(frozen=True)
class EndpointConfig:
    """
    Remote endpoint URLs, one per operation category.

    Every field may be empty. Use require() to obtain a URL; it raises
    ConfigurationError when the category is unset.

    Attributes:
        get_songs: Collection read for songs.
        save_song: Song create/update (and delete, see delete_song).
        delete_song: Song delete. Falls back to save_song when empty,
                     because the remote accepts mode "delete" there.
        get_setlists: Collection read for setlists with their items.
        save_setlist: Setlist create/update (top-level fields only).
        save_setlist_item: Setlist item append and whole-list sync.
        delete_setlist: Setlist delete.
    """
    get_songs: str = ""
    save_song: str = ""
    delete_song: str = ""
    get_setlists: str = ""
    save_setlist: str = ""
    save_setlist_item: str = ""
    delete_setlist: str = ""

    def is_configured(self, category: str) -> bool:
        """Return True if the category has a usable URL."""
        url = getattr(self, category, "")
        return bool(url) and PLACEHOLDER_MARKER not in url

    def require(self, category: str) -> str:
        """
        Return the URL for an operation category.

        Args:
            category: Field name, e.g. "save_song".

        Returns:
            The configured URL.

        Raises:
            ConfigurationError: If the category is unknown, empty, or still
                                contains the example placeholder.
        """
        if category not in ENDPOINT_ENV_VARS:
            raise ConfigurationError(
                f"Unknown endpoint category '{category}'",
                details={"endpoint": category}
            )

        if category == "delete_song" and not self.is_configured("delete_song"):
            category = "save_song"

        if not self.is_configured(category):
            raise ConfigurationError(
                f"Endpoint '{category}' is not configured. "
                f"Set {ENDPOINT_ENV_VARS[category]} or endpoints.{category} in {CONFIG_FILENAME}",
                details={"endpoint": category, "env_var": ENDPOINT_ENV_VARS[category]}
            )
        return getattr(self, category)


@dataclass(frozen=True)
class ConfirmationConfig:
    """
    Polling policy for writes the remote accepted asynchronously.

    Creates get more attempts than updates because new rows take longer
    to become visible in the remote store.

    Attributes:
        create_attempts: Poll attempts after an accepted create.
        create_delay: Seconds to wait before each create poll.
        update_attempts: Poll attempts after an accepted update.
        update_delay: Seconds to wait before each update poll.
        acceptance_markers: Case-insensitive substrings of a reply's
                            "message" that signal asynchronous acceptance.
    """
    create_attempts: int = 6
    create_delay: float = 1.5
    update_attempts: int = 3
    update_delay: float = 1.0
    acceptance_markers: tuple[str, ...] = ("started",)


@dataclass(frozen=True)
class NetworkConfig:
    """
    HTTP settings.

    Attributes:
        timeout: Total seconds allowed for one round trip.
    """
    timeout: float = 30.0


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging settings.

    Attributes:
        level: Console log level name.
        directory: Directory for run log files, or None for console only.
    """
    level: str = "INFO"
    directory: Path | None = None


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable.

    Example:
        config = load_config()
        url = config.endpoints.require("get_songs")
        print(f"Create confirmation: {config.confirmation.create_attempts} attempts")
    """
    endpoints: EndpointConfig
    confirmation: ConfirmationConfig
    network: NetworkConfig
    logging: LoggingConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.

    Args:
        config_path: Optional explicit path to the config file.
                     If None, uses config.yaml in the current directory
                     when it exists.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigurationError: If an explicit file is missing, the YAML is
                            invalid, the document is not a mapping, or a
                            value has the wrong type.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content (empty document = defaults)
        3. Parse each section, applying defaults
        4. Apply SETLIST_*_URL environment overrides to endpoints
        5. Return frozen Config object
    """
    raw_config: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                details={"file_path": str(config_path)}
            )
        raw_config = _read_yaml(config_path)
    else:
        default_path = Path.cwd() / CONFIG_FILENAME
        if default_path.exists():
            raw_config = _read_yaml(default_path)

    return Config(
        endpoints=_parse_endpoints(_section(raw_config, "endpoints")),
        confirmation=_parse_confirmation(_section(raw_config, "confirmation")),
        network=_parse_network(_section(raw_config, "network")),
        logging=_parse_logging(_section(raw_config, "logging")),
    )


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk, raising ConfigurationError on any problem."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(path), "original_error": str(e)}
        ) from e

    if raw_config is None:
        return {}

    if not isinstance(raw_config, dict):
        raise ConfigurationError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(path)}
        )
    return raw_config


def _section(raw_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw_config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(
            f"Section '{name}' must be a dictionary",
            details={"section": name}
        )
    return section


def _parse_endpoints(section: dict[str, Any]) -> EndpointConfig:
    """
    Parse endpoint URLs; environment variables win over the file.

    Unknown keys are rejected so a typo does not silently leave an
    endpoint unset.
    """
    known = {f.name for f in fields(EndpointConfig)}
    unknown = set(section) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown endpoint(s) in configuration: {', '.join(sorted(unknown))}",
            details={"unknown": sorted(unknown)}
        )

    values: dict[str, str] = {}
    for name in known:
        raw = section.get(name) or ""
        if not isinstance(raw, str):
            raise ConfigurationError(
                f"'endpoints.{name}' must be a string URL",
                details={"field": f"endpoints.{name}"}
            )
        env_value = os.getenv(ENDPOINT_ENV_VARS[name])
        values[name] = (env_value or raw).strip()

    return EndpointConfig(**values)


def _parse_confirmation(section: dict[str, Any]) -> ConfirmationConfig:
    defaults = ConfirmationConfig()

    create_attempts = _positive_int(section, "create_attempts", defaults.create_attempts)
    update_attempts = _positive_int(section, "update_attempts", defaults.update_attempts)
    create_delay = _non_negative_float(section, "create_delay", defaults.create_delay)
    update_delay = _non_negative_float(section, "update_delay", defaults.update_delay)

    markers = section.get("acceptance_markers", list(defaults.acceptance_markers))
    if isinstance(markers, str):
        markers = [markers]
    if not isinstance(markers, list) or not all(isinstance(m, str) and m for m in markers):
        raise ConfigurationError(
            "'confirmation.acceptance_markers' must be a list of non-empty strings",
            details={"field": "confirmation.acceptance_markers"}
        )

    return ConfirmationConfig(
        create_attempts=create_attempts,
        create_delay=create_delay,
        update_attempts=update_attempts,
        update_delay=update_delay,
        acceptance_markers=tuple(markers),
    )


def _parse_network(section: dict[str, Any]) -> NetworkConfig:
    timeout = section.get("timeout", NetworkConfig.timeout)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigurationError(
            "'network.timeout' must be a positive number",
            details={"field": "network.timeout", "value": timeout}
        )
    return NetworkConfig(timeout=float(timeout))


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = section.get("level", LoggingConfig.level)
    if not isinstance(level, str) or level.upper() not in (
        "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
    ):
        raise ConfigurationError(
            f"Invalid logging level: {level}",
            details={"field": "logging.level", "value": level}
        )

    directory = section.get("directory")
    log_dir = None
    if directory is not None:
        if not isinstance(directory, str) or not directory.strip():
            raise ConfigurationError(
                "'logging.directory' must be a non-empty string",
                details={"field": "logging.directory"}
            )
        log_dir = Path(directory.strip()).expanduser().resolve()

    return LoggingConfig(level=level.upper(), directory=log_dir)


def _positive_int(section: dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(
            f"'confirmation.{key}' must be a positive integer",
            details={"field": f"confirmation.{key}", "value": value}
        )
    return value


def _non_negative_float(section: dict[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(
            f"'confirmation.{key}' must be a non-negative number",
            details={"field": f"confirmation.{key}", "value": value}
        )
    return float(value)
