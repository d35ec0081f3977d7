"""At-rest encryption for LOCAL storage-mode secrets."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from credvault.base.exceptions import InvalidConfigurationError


class SecretCipher(ABC):
    """Encrypts secret payloads stored in the local metadata record."""

    @abstractmethod
    def encrypt(self, value: dict[str, Any]) -> str:
        """Return an opaque token for *value*."""

    @abstractmethod
    def decrypt(self, token: str) -> dict[str, Any]:
        """Return the payload encrypted in *token*."""


class FernetCipher(SecretCipher):
    """Fernet (AES-128-CBC + HMAC) cipher keyed from config or CREDVAULT_ENCRYPTION_KEY."""

    def __init__(self, key: str | bytes | None = None) -> None:
        key = key or os.environ.get("CREDVAULT_ENCRYPTION_KEY")
        if not key:
            raise InvalidConfigurationError("No encryption key configured for local secrets")
        try:
            self._fernet = Fernet(key)
        except ValueError as e:
            raise InvalidConfigurationError(f"Invalid encryption key: {e}") from e

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, value: dict[str, Any]) -> str:
        return self._fernet.encrypt(json.dumps(value).encode()).decode()

    def decrypt(self, token: str) -> dict[str, Any]:
        try:
            return json.loads(self._fernet.decrypt(token.encode()))
        except InvalidToken as e:
            raise InvalidConfigurationError("Local secret cannot be decrypted with the configured key") from e
