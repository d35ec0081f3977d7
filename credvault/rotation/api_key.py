"""Rotation for AWS access-key secrets.

Payload layout: ``{"accessKeyId": ..., "secretAccessKey": ..., "username": ...}``.
A new key pair is issued in ``create_secret``; the superseded pair is
deactivated and deleted after promotion.
"""

from __future__ import annotations

from typing import Any

from credvault.base.config import RotationSettings
from credvault.base.exceptions import IdentityError, InvalidConfigurationError
from credvault.base.identity import IdentityProviderBlueprint
from credvault.base.logger import cv_logger
from credvault.base.models import VersionedValue
from credvault.base.vault import SecretVaultBlueprint
from credvault.rotation.base import RotationStrategy


class AwsApiKeyStrategy(RotationStrategy):
    """Key issuance and revocation instead of a password change."""

    def __init__(
        self,
        vault: SecretVaultBlueprint,
        settings: RotationSettings | None = None,
        identity: IdentityProviderBlueprint | None = None,
    ) -> None:
        super().__init__(vault, settings)
        if identity is None:
            raise InvalidConfigurationError("AWS_API_KEY rotation requires an identity provider")
        self.identity = identity

    def create_secret(self, secret_id: str, token: str, current: dict[str, Any]) -> None:
        if not current.get("accessKeyId") or not current.get("secretAccessKey"):
            raise InvalidConfigurationError("Secret payload is missing accessKeyId/secretAccessKey")
        username = current.get("username") or self.identity.resolve_username(
            current["accessKeyId"], current["secretAccessKey"]
        )
        key = self.identity.create_access_key(username)
        pending = {
            **current,
            "accessKeyId": key["access_key_id"],
            "secretAccessKey": key["secret_access_key"],
            "username": username,
        }
        try:
            self._store_pending(secret_id, token, pending)
        except Exception:
            # Without a stored PENDING value a replay would issue another key.
            self._revoke(secret_id, username, key["access_key_id"], "createSecret")
            raise
        cv_logger.info(
            f"Issued access key {key['access_key_id']} for {username}",
            secret_id=secret_id,
            step="createSecret",
        )

    def set_secret(
        self,
        secret_id: str,
        token: str,
        pending: dict[str, Any],
        current: dict[str, Any],
    ) -> None:
        # The new key already exists on the identity provider.
        return None

    def test_secret(self, secret_id: str, token: str, pending: dict[str, Any]) -> None:
        self.identity.verify_credentials(pending["accessKeyId"], pending["secretAccessKey"])

    def finish_secret(self, secret_id: str, token: str, current_version: VersionedValue) -> None:
        super().finish_secret(secret_id, token, current_version)

        old = current_version.payload
        key_id, username = old.get("accessKeyId"), old.get("username")
        if not key_id or not username:
            return
        self._revoke(secret_id, username, key_id, "finishSecret")

    def _revoke(self, secret_id: str, username: str, key_id: str, step: str) -> None:
        """Deactivate and delete *key_id*; failures are logged only."""
        try:
            self.identity.deactivate_access_key(username, key_id)
            self.identity.delete_access_key(username, key_id)
            cv_logger.info(f"Deleted access key {key_id}", secret_id=secret_id, step=step)
        except IdentityError as e:
            cv_logger.warning(
                f"Failed to clean up access key {key_id}: {e}",
                secret_id=secret_id,
                step=step,
            )
