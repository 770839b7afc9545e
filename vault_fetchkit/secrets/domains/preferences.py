"""Persistent user preferences for vault-fetchkit.

Stored as JSON at ~/.config/vault-fetchkit/preferences.json. Currently holds
the optional 'config_path' override used by the config loader.
"""
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

PREFERENCES_DIR = Path.home() / ".config" / "vault-fetchkit"
PREFERENCES_FILE = PREFERENCES_DIR / "preferences.json"


def _read() -> Dict[str, Any]:
    """Return stored preferences, or an empty dict if missing or unreadable."""
    if not PREFERENCES_FILE.exists():
        return {}
    try:
        data = json.loads(PREFERENCES_FILE.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Ignoring unreadable preferences file {PREFERENCES_FILE}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Ignoring preferences file {PREFERENCES_FILE}: expected a JSON object")
        return {}
    return data


def _write(preferences: Dict[str, Any]) -> None:
    PREFERENCES_DIR.mkdir(parents=True, exist_ok=True)
    PREFERENCES_FILE.write_text(json.dumps(preferences, indent=2))


def get_preference(key: str) -> Optional[str]:
    return _read().get(key)


def set_preference(key: str, value: str) -> None:
    preferences = _read()
    preferences[key] = value
    _write(preferences)
    logger.info(f"Preference '{key}' set to: {value}")


def clear_preference(key: str) -> None:
    """Remove ``key``; a missing key is not an error."""
    preferences = _read()
    if preferences.pop(key, None) is None:
        logger.debug(f"Preference '{key}' not found, nothing to clear")
        return
    _write(preferences)
    logger.info(f"Preference '{key}' cleared")


def get_all_preferences() -> Dict[str, Any]:
    return _read()
