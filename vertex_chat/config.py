"""Configuration management for the chat streaming client."""

import os
from typing import Any

import httpx
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")
BASE_URL_ENV = "VERTEX_CHAT_BASE_URL"
CREDENTIAL_SOURCES = ("env", "file", "none")


class Configuration:
    """Manages configuration and environment variables for the chat client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for tokens and overrides
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = self._load_yaml_config(self.config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ConfigurationError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration directly from a dictionary."""
        instance = cls.__new__(cls)
        cls.load_env()
        instance.config_path = None
        instance._config = config
        return instance

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def _require_section(self, name: str, keys: list[str]) -> dict[str, Any]:
        section = self._config.get(name, {})
        if not isinstance(section, dict):
            raise ConfigurationError(f"{name} must be a mapping in config.yaml")
        for key in keys:
            if key not in section:
                raise ConfigurationError(
                    f"{name}.{key} must be explicitly configured in config.yaml"
                )
        return section

    def get_api_config(self) -> dict[str, Any]:
        """Get chat endpoint configuration.

        The base URL can be overridden with the VERTEX_CHAT_BASE_URL
        environment variable.

        Returns:
            Dictionary with `base_url` and `chat_path`.

        Raises:
            ConfigurationError: If a key is missing or malformed.
        """
        api_config = self._require_section("api", ["base_url", "chat_path"])
        base_url = os.getenv(BASE_URL_ENV) or api_config["base_url"]
        chat_path = api_config["chat_path"]

        if not str(base_url).startswith(("http://", "https://")):
            raise ConfigurationError("api.base_url must be an http(s) URL")
        if not str(chat_path).startswith("/"):
            raise ConfigurationError("api.chat_path must start with '/'")

        return {"base_url": str(base_url).rstrip("/"), "chat_path": chat_path}

    @property
    def chat_url(self) -> str:
        api_config = self.get_api_config()
        return f"{api_config['base_url']}{api_config['chat_path']}"

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client timeouts.

        Returns:
            HTTP client configuration dictionary with validated values.

        Raises:
            ConfigurationError: If required parameters are missing or invalid.
        """
        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        http_config = self._require_section("http_client", required_keys)

        for key in required_keys:
            value = http_config[key]
            if not isinstance(value, int | float) or value <= 0:
                raise ConfigurationError(f"http_client.{key} must be positive")

        return {key: float(http_config[key]) for key in required_keys}

    def build_timeout(self) -> httpx.Timeout:
        """Build the httpx timeout used for streaming requests."""
        http_config = self.get_http_client_config()
        return httpx.Timeout(
            connect=http_config["connect_timeout"],
            read=http_config["read_timeout"],
            write=http_config["write_timeout"],
            pool=http_config["pool_timeout"],
        )

    def get_chat_config(self) -> dict[str, Any]:
        """Get chat surface configuration.

        Returns:
            Dictionary with welcome text and user-facing error messages.

        Raises:
            ConfigurationError: If required parameters are missing or invalid.
        """
        chat_config = self._require_section(
            "chat",
            [
                "include_welcome", "welcome_message", "error_prefix",
                "connection_error_message",
            ],
        )
        if not isinstance(chat_config["include_welcome"], bool):
            raise ConfigurationError("chat.include_welcome must be a boolean")
        if not chat_config["connection_error_message"]:
            raise ConfigurationError("chat.connection_error_message must not be empty")
        return chat_config

    def get_credentials_config(self) -> dict[str, Any]:
        """Get credential store configuration.

        Returns:
            Dictionary with `source` and the settings that source needs.

        Raises:
            ConfigurationError: If the source is unknown or incomplete.
        """
        creds_config = self._require_section("credentials", ["source"])
        source = creds_config["source"]
        if source not in CREDENTIAL_SOURCES:
            raise ConfigurationError(
                f"credentials.source must be one of {', '.join(CREDENTIAL_SOURCES)}"
            )
        if source == "env" and not creds_config.get("env_var"):
            raise ConfigurationError(
                "credentials.env_var must be explicitly configured for source 'env'"
            )
        if source == "file" and not creds_config.get("file_path"):
            raise ConfigurationError(
                "credentials.file_path must be explicitly configured for source 'file'"
            )
        return creds_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})
