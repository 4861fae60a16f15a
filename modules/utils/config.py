"""
Centralized configuration manager.
Loads YAML configs and provides typed access with defaults.

Secrets for the remote chat-completion service are never stored in YAML;
they come from the environment (optionally via a .env file).
"""

import os
import copy
import logging
from dataclasses import dataclass

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_CONFIG_DIR = os.path.join(_BASE_DIR, "config")

DEFAULT_API_VERSION = "2024-02-15-preview"

_DEFAULTS = {
    "camera": {
        "device_id": 0,
        "width": 640,
        "height": 480,
        "fps": 30,
        "flip_horizontal": False,
    },
    "mediapipe": {
        "model_complexity": 0,
        "max_num_hands": 2,
        "min_detection_confidence": 0.6,
        "min_tracking_confidence": 0.5,
    },
    "gesture": {
        "trigger_mode": "rising_edge",
        "min_closed_frames": 1,
    },
    "speech": {
        "recognition_language": "en-US",
        "phrase_time_limit": 10,
        "cooldown_seconds": 4.0,
        "restart_delay_seconds": 2.0,
        "restart_backoff_multiplier": 1.0,
        "restart_max_delay_seconds": None,
        "restart_max_retries": None,
    },
    "dialogue": {
        "default_language": "en",
        "timeout_seconds": 30,
        "reply_max_tokens": 150,
        "temperature": 0.7,
    },
    "visualization": {
        "enabled": True,
        "window_name": "Grab & Talk",
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_size_mb": 10,
        "backup_count": 3,
    },
}

# Schema: sections and their expected types
_CONFIG_SCHEMA = {
    "camera": {
        "device_id": int,
        "width": int,
        "height": int,
        "fps": int,
    },
    "gesture": {
        "trigger_mode": str,
        "min_closed_frames": int,
    },
    "speech": {
        "recognition_language": str,
        "cooldown_seconds": float,
        "restart_delay_seconds": float,
    },
    "dialogue": {
        "default_language": str,
        "timeout_seconds": float,
        "reply_max_tokens": int,
    },
}


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class ApiSettings:
    """Connection settings for the chat-completion deployment."""

    endpoint: str = ""
    api_key: str = ""
    deployment: str = ""
    api_version: str = DEFAULT_API_VERSION

    @classmethod
    def from_env(cls, environ=None) -> "ApiSettings":
        environ = os.environ if environ is None else environ
        return cls(
            endpoint=environ.get("AZURE_OPENAI_ENDPOINT", "").rstrip("/"),
            api_key=environ.get("AZURE_OPENAI_KEY", ""),
            deployment=environ.get("AZURE_OPENAI_DEPLOYMENT") or environ.get("DEPLOYMENT_NAME", ""),
            api_version=environ.get("AZURE_OPENAI_API_VERSION") or DEFAULT_API_VERSION,
        )

    @property
    def missing(self) -> list:
        names = {
            "AZURE_OPENAI_ENDPOINT": self.endpoint,
            "AZURE_OPENAI_KEY": self.api_key,
            "AZURE_OPENAI_DEPLOYMENT": self.deployment,
        }
        return [name for name, value in names.items() if not value]

    def validate(self) -> "ApiSettings":
        if self.missing:
            raise ConfigError("Missing environment variables: " + ", ".join(self.missing))
        return self

    @property
    def chat_url(self) -> str:
        return (
            f"{self.endpoint}/openai/deployments/{self.deployment}"
            f"/chat/completions?api-version={self.api_version}"
        )


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Singleton configuration manager."""

    _instance = None
    _data = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._data = copy.deepcopy(_DEFAULTS)
        return cls._instance

    def load(self, config_path=None, env_file=None):
        """Load configuration from YAML and the environment."""
        config_path = config_path or os.path.join(_CONFIG_DIR, "config.yaml")

        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using defaults", config_path)
            loaded = {}

        self._data = _deep_merge(_DEFAULTS, loaded)

        # .env values never override variables already set in the environment
        load_dotenv(env_file or os.path.join(_BASE_DIR, ".env"), override=False)

        self._validate()

        return self

    def _validate(self):
        """Validate critical config fields against schema."""
        warnings = []
        for section_name, fields in _CONFIG_SCHEMA.items():
            section = self._data.get(section_name)
            if section is None:
                warnings.append(f"Missing config section: '{section_name}'")
                continue
            if not isinstance(section, dict):
                warnings.append(f"Section '{section_name}' should be a dict, got {type(section).__name__}")
                continue
            for field_name, expected_type in fields.items():
                if field_name in section:
                    value = section[field_name]
                    # Allow int where float is expected
                    if expected_type is float and isinstance(value, (int, float)):
                        continue
                    if not isinstance(value, expected_type):
                        warnings.append(
                            f"{section_name}.{field_name}: expected {expected_type.__name__}, "
                            f"got {type(value).__name__} ({value!r})"
                        )

        if warnings:
            for w in warnings:
                logger.warning("Config validation: %s", w)
        else:
            logger.debug("Config validation passed")

        return warnings

    def get(self, key_path: str, default=None):
        """Get nested config value using dot notation: 'speech.cooldown_seconds'."""
        keys = key_path.split(".")
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value):
        """Override a nested value (CLI flags)."""
        keys = key_path.split(".")
        node = self._data
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value

    def get_section(self, section: str) -> dict:
        """Get an entire config section."""
        return self._data.get(section, {})

    @property
    def camera(self) -> dict:
        return self._data.get("camera", {})

    @property
    def mediapipe(self) -> dict:
        return self._data.get("mediapipe", {})

    @property
    def gesture(self) -> dict:
        return self._data.get("gesture", {})

    @property
    def speech(self) -> dict:
        return self._data.get("speech", {})

    @property
    def dialogue(self) -> dict:
        return self._data.get("dialogue", {})

    @property
    def visualization(self) -> dict:
        return self._data.get("visualization", {})

    @property
    def api(self) -> ApiSettings:
        return ApiSettings.from_env()

    @property
    def base_dir(self) -> str:
        return _BASE_DIR

    @classmethod
    def reset(cls):
        """Reset singleton instance (for testing)."""
        cls._instance = None
        cls._data = {}
