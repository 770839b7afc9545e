"""Configuration loader for vault-fetchkit."""
import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional
import yaml

from .preferences import get_preference

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error exception."""
    pass


@dataclass(frozen=True)
class FetcherSettings:
    """Tuning for the batch fetcher, from the optional 'fetcher' config section."""
    cache_ttl_seconds: Optional[float] = 300.0
    fetch_timeout_seconds: Optional[float] = 30.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5


def default_config_path() -> Path:
    return Path.home() / ".config" / "vault-fetchkit" / "config.yml"


def _get_config_path() -> str:
    """
    Get config file path using XDG Base Directory standard.

    Priority order:
    1. User preference (stored in ~/.config/vault-fetchkit/preferences.json)
    2. Default location: ~/.config/vault-fetchkit/config.yml

    Returns:
        Absolute path to config file

    Raises:
        FileNotFoundError: If config file doesn't exist in any location
    """
    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    raise FileNotFoundError(
        "Configuration file not found. Please set up your config file using one of these methods:\n\n"
        "1. Use the default location:\n"
        f"   mkdir -p {default_config.parent}\n"
        f"   cp /path/to/your/config.yml {default_config}\n\n"
        "2. Point to an existing config file:\n"
        "   fetchkit config set-path /path/to/your/config.yml\n"
    )


def _validate_authentication(config: Dict[str, Any], config_path: str) -> None:
    if 'authentication' not in config:
        raise ConfigError(
            f"Missing 'authentication' section in config at {config_path}\n"
            f"Required format:\n"
            f"authentication:\n"
            f"  type: service_account\n"
            f"  service_account_path: /path/to/service-account.json"
        )

    auth = config['authentication']
    if 'type' not in auth:
        raise ConfigError("Missing 'authentication.type' in config")

    if auth['type'] != 'service_account':
        raise ConfigError(
            f"Unsupported authentication type: {auth['type']}\n"
            f"Only 'service_account' is supported."
        )

    if 'service_account_path' not in auth:
        raise ConfigError(
            "Missing 'authentication.service_account_path' in config\n"
            "Please specify the absolute path to your service account JSON file."
        )

    service_account_path = auth['service_account_path']
    if not os.path.exists(service_account_path):
        raise ConfigError(
            f"Service account file not found at: {service_account_path}\n"
            f"Please ensure the file exists or update the path in {config_path}"
        )
    if not os.path.isfile(service_account_path):
        raise ConfigError(f"Service account path is not a file: {service_account_path}")


def _validate_gcp(config: Dict[str, Any], config_path: str) -> None:
    if 'gcp' not in config:
        raise ConfigError(
            f"Missing 'gcp' section in config at {config_path}\n"
            f"Required format:\n"
            f"gcp:\n"
            f"  project_id: your-project-id"
        )
    if 'project_id' not in config['gcp']:
        raise ConfigError("Missing 'gcp.project_id' in config")


def load_fetcher_settings(config: Optional[Dict[str, Any]]) -> FetcherSettings:
    """
    Build FetcherSettings from the 'fetcher' section, falling back to defaults.

    A null ttl or timeout disables expiry or the timeout respectively.

    Raises:
        ConfigError: If a value is not a non-negative number
    """
    section = (config or {}).get('fetcher') or {}
    if not isinstance(section, dict):
        raise ConfigError("'fetcher' section must be a mapping")

    defaults = FetcherSettings()
    values: Dict[str, Any] = {}
    for field_name, nullable in (
        ("cache_ttl_seconds", True),
        ("fetch_timeout_seconds", True),
        ("max_retries", False),
        ("retry_backoff_seconds", False),
    ):
        if field_name not in section:
            values[field_name] = getattr(defaults, field_name)
            continue
        raw = section[field_name]
        if raw is None and nullable:
            values[field_name] = None
            continue
        if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw < 0:
            raise ConfigError(f"'fetcher.{field_name}' must be a non-negative number, got: {raw!r}")
        values[field_name] = raw

    values["max_retries"] = int(values["max_retries"])
    return FetcherSettings(**values)


def load_config() -> Dict[str, Any]:
    """
    Load and validate configuration from YAML file.

    Returns:
        Dict containing configuration with keys:
        - authentication: dict with type and service_account_path
        - gcp: dict with project_id
        - fetcher: optional dict of batch fetcher settings

    Raises:
        ConfigError: If config file is invalid or service account file doesn't exist
        FileNotFoundError: If no config file is found
    """
    # Resolved on every call so preference changes apply without a restart
    config_path = _get_config_path()

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if not config:
        raise ConfigError(f"Config file at {config_path} is empty")
    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must define a mapping at the root")

    _validate_authentication(config, config_path)
    _validate_gcp(config, config_path)
    load_fetcher_settings(config)

    logger.info(f"Configuration loaded successfully from {config_path}")
    logger.debug(f"Using service account: {config['authentication']['service_account_path']}")
    logger.debug(f"Using project ID: {config['gcp']['project_id']}")

    return config
