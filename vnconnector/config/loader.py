"""
Configuration loader with environment variable and secrets handling.

Loads configuration from:
1. config.yaml (main config, optional)
2. .env.local (secrets file; loaded into process env)
3. Environment variables (highest priority)

Secrets are NEVER logged or displayed.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .schema import ConnectorConfig


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. OS Environment variables
    2. .env.local file
    3. config.yaml
    """

    # Secrets that must never be logged
    SECRET_KEYS = {
        "consumer_secret",
        "consumersecret",
        "api_secret",
        "access_token",
        "token",
        "password",
    }

    # (env var names in priority order) -> credentials field
    ENV_CREDENTIALS = {
        "consumer_id": ("SSI_CONSUMER_ID", "BROKER_API_KEY"),
        "consumer_secret": ("SSI_CONSUMER_SECRET", "BROKER_API_SECRET"),
        "account_no": ("SSI_ACCOUNT_NO",),
    }

    def __init__(self, config_dir: Path = Path("config")):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.yaml"
        self.secrets_file = self.config_dir / ".env.local"

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources.

        A missing config.yaml is allowed (all sections have defaults); an
        empty or non-mapping one is not.

        Returns:
            Merged configuration dictionary

        Raises:
            ValueError: If config.yaml is present but not a mapping
        """
        config: Dict[str, Any] = {}
        if self.config_file.exists():
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
            if not isinstance(loaded, dict):
                raise ValueError(f"Configuration file must contain a mapping: {self.config_file}")
            config = loaded

        # do NOT override already-set OS env vars
        if self.secrets_file.exists():
            load_dotenv(self.secrets_file, override=False)

        creds = dict(config.get("credentials") or {})
        for field, names in self.ENV_CREDENTIALS.items():
            for name in names:
                value = os.getenv(name)
                if value:
                    creds[field] = value
                    break
        if creds:
            config["credentials"] = creds

        return config

    def load_and_validate(self) -> ConnectorConfig:
        """
        Load and validate configuration.

        Raises:
            ValueError: validation failed (message scrubbed of secrets)
        """
        config_dict = self.load()

        try:
            return ConnectorConfig(**config_dict)
        except ValidationError as e:
            error_msg = str(e)
            for value in self._secret_values(config_dict):
                error_msg = error_msg.replace(value, "[REDACTED]")
            raise ValueError(f"Configuration validation failed: {error_msg}") from e

    @classmethod
    def _secret_values(cls, config_dict: Dict[str, Any]):
        found = []

        def _walk(d: Dict[str, Any]) -> None:
            for key, value in d.items():
                if key.lower() in cls.SECRET_KEYS and isinstance(value, str) and value:
                    found.append(value)
                elif isinstance(value, dict):
                    _walk(value)

        _walk(config_dict)
        return found

    @staticmethod
    def scrub_secrets(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace secret values with [REDACTED] for logging.

        Returns:
            Copy with secrets redacted
        """
        scrubbed = copy.deepcopy(config_dict)

        def _scrub_recursive(d: Dict[str, Any]) -> None:
            for key, value in d.items():
                if key.lower() in ConfigLoader.SECRET_KEYS:
                    d[key] = "[REDACTED]"
                elif isinstance(value, dict):
                    _scrub_recursive(value)
                elif isinstance(value, list):
                    for item in value:
                        if isinstance(item, dict):
                            _scrub_recursive(item)

        _scrub_recursive(scrubbed)
        return scrubbed


def load_config(config_dir: Path = Path("config")) -> ConnectorConfig:
    """
    Convenience function to load and validate configuration.

    Args:
        config_dir: Directory containing config files
    """
    return ConfigLoader(config_dir).load_and_validate()
