"""
Bearer token stores.

The streaming controller only needs a synchronous read of the current token.
Stores that persist a token also expose save/clear for login and logout.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from .config import Configuration

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def get_token(self) -> str | None: ...


class StaticCredentialStore:
    """Holds a token in memory."""

    def __init__(self, token: str | None = None):
        self._token = token or None

    def get_token(self) -> str | None:
        return self._token

    def save_token(self, token: str) -> None:
        self._token = token or None

    def clear_token(self) -> None:
        self._token = None


class EnvCredentialStore:
    """Reads the token from an environment variable on every call."""

    def __init__(self, env_var: str):
        self.env_var = env_var

    def get_token(self) -> str | None:
        return os.getenv(self.env_var) or None


class FileCredentialStore:
    """
    Token persisted in a small JSON file, `{"token": "..."}`.

    A missing or unreadable file means no credential; it is never an error
    for the caller.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path).expanduser()

    def get_token(self) -> str | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        token = data.get("token")
        return token if isinstance(token, str) and token else None

    def save_token(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"token": token}), encoding="utf-8")

    def clear_token(self) -> None:
        self.path.unlink(missing_ok=True)


def create_credential_store(config: Configuration) -> CredentialStore:
    """Create the credential store selected in configuration."""
    creds_config: dict[str, Any] = config.get_credentials_config()
    source = creds_config["source"]

    if source == "env":
        return EnvCredentialStore(creds_config["env_var"])
    if source == "file":
        return FileCredentialStore(creds_config["file_path"])
    return StaticCredentialStore()
