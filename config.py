import json
import os
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv
from platformdirs import user_config_dir

from spotify_api.auth import DEFAULT_REDIRECT_URI, DEFAULT_SCOPES
from spotify_api.token_manager import APP_NAME, DEFAULT_TOKEN_CACHE_PATH
from utils.logger import DEFAULT_LOG_FILE

CONFIG_PATH = os.path.join(user_config_dir(APP_NAME), "config.json")


class StartupError(RuntimeError):
    """Unrecoverable problem before the browser can start (credentials, config, terminal)."""


# Default configuration values
DEFAULT_CONFIG = {
    # Spotify Web API (OAuth PKCE)
    "spotify_redirect_uri": DEFAULT_REDIRECT_URI,
    "spotify_scopes": list(DEFAULT_SCOPES),
    "spotify_cache_tokens": True,
    "token_cache_path": DEFAULT_TOKEN_CACHE_PATH,
    # None waits for the browser callback indefinitely.
    "auth_timeout_seconds": None,

    # Terminal UI
    "poll_interval_ms": 250,

    # Logging
    "log_file": DEFAULT_LOG_FILE,
    "log_level": "INFO",
}

# Validation rules for config fields
CONFIG_SCHEMA = {
    "spotify_redirect_uri": {"type": str, "required": True},
    "spotify_scopes": {"type": list, "required": True, "element_type": str},
    "spotify_cache_tokens": {"type": bool, "required": False},
    "token_cache_path": {"type": str, "required": True},
    "auth_timeout_seconds": {"type": (int, float), "required": False, "nullable": True, "min": 1, "max": 3600},
    "poll_interval_ms": {"type": int, "required": True, "min": 10, "max": 5000},
    "log_file": {"type": str, "required": True},
    "log_level": {"type": str, "required": False, "choices": ["DEBUG", "INFO", "WARNING", "ERROR"]},
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from file, applying defaults for missing fields.

    A missing file means "all defaults". Invalid JSON or values raise StartupError.
    """
    path = path or CONFIG_PATH
    config: Dict[str, Any] = {}

    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise StartupError(f"Config file {path} contains invalid JSON: {e}") from e
        except OSError as e:
            raise StartupError(f"Could not read config file {path}: {e}") from e

        if not isinstance(config, dict):
            raise StartupError(f"Config file {path} must contain a JSON object")

    # Apply defaults for missing fields
    for key, value in DEFAULT_CONFIG.items():
        if key not in config:
            config[key] = list(value) if isinstance(value, list) else value

    is_valid, errors = validate_config(config)
    if not is_valid:
        raise StartupError(f"Invalid configuration in {path}: {'; '.join(errors)}")

    return config


def validate_config(config: Dict[str, Any]) -> Tuple[bool, list]:
    """
    Validate configuration against schema.
    Returns (is_valid, list_of_errors).
    """
    errors = []

    for key, rules in CONFIG_SCHEMA.items():
        # Check required fields
        if rules.get("required", False) and key not in config:
            errors.append(f"Missing required field: {key}")
            continue

        if key not in config:
            continue

        value = config[key]

        if value is None and rules.get("nullable", False):
            continue

        # Type check (bool is an int subclass; do not let it pass as a number)
        expected_type = rules.get("type")
        if expected_type and (not isinstance(value, expected_type) or (isinstance(value, bool) and expected_type is not bool)):
            type_names = expected_type.__name__ if not isinstance(expected_type, tuple) else "/".join(t.__name__ for t in expected_type)
            errors.append(f"Field '{key}' must be {type_names}, got {type(value).__name__}")
            continue

        # List element type check (when schema uses: {"type": list, "element_type": ...})
        if isinstance(value, list) and "element_type" in rules:
            elem_type = rules["element_type"]
            bad_elems = [v for v in value if not isinstance(v, elem_type)]
            if bad_elems:
                errors.append(
                    f"Field '{key}' must be a list of {elem_type.__name__}, got invalid elements: {bad_elems}"
                )
                continue

        # Choices check
        if "choices" in rules and value not in rules["choices"]:
            errors.append(f"Field '{key}' must be one of {rules['choices']}, got '{value}'")

        # Range check for numeric values
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if "min" in rules and value < rules["min"]:
                errors.append(f"Field '{key}' must be >= {rules['min']}, got {value}")
            if "max" in rules and value > rules["max"]:
                errors.append(f"Field '{key}' must be <= {rules['max']}, got {value}")

    return len(errors) == 0, errors


def load_credentials() -> Tuple[str, str]:
    """Return (CLIENT_ID, CLIENT_SECRET) from the environment, reading .env first."""
    load_dotenv()

    client_id = os.environ.get("CLIENT_ID", "").strip()
    client_secret = os.environ.get("CLIENT_SECRET", "").strip()

    missing = [name for name, value in (("CLIENT_ID", client_id), ("CLIENT_SECRET", client_secret)) if not value]
    if missing:
        raise StartupError(f"{' and '.join(missing)} must be set (environment or .env file).")

    return client_id, client_secret
