"""
Secret lifecycle coordinator.

Keeps local metadata and the remote vault record consistent across
create, read, update, delete and manual rotation. Local validation runs
before any remote mutation; remote mutations that must be undone when a
later step fails are registered on a :class:`Saga` as named compensating
steps.
"""

from __future__ import annotations

from typing import Any, Callable

from credvault.base.cipher import SecretCipher
from credvault.base.exceptions import (
    CredvaultError,
    DuplicateRecordError,
    InvalidConfigurationError,
    RotationConfigurationError,
    RotationNotEnabledError,
    SecretAlreadyExistsError,
    SecretNotFoundError,
    UpstreamSecretExistsError,
    VaultError,
    VaultSecretExistsError,
    VaultSecretNotFoundError,
)
from credvault.base.logger import cv_logger
from credvault.base.models import (
    BackendScopeConfig,
    RotationRule,
    Secret,
    SecretType,
    SecretWithValue,
    StorageMode,
    utcnow,
)
from credvault.base.store import ScopeConfigStore, SecretRecordStore
from credvault.base.vault import SecretVaultBlueprint
from credvault.factory import scope_vault_client
from credvault.rotation.registry import SECRET_TYPE_TAG, is_rotation_supported

ClientFactory = Callable[[BackendScopeConfig, "str | None"], SecretVaultBlueprint]


class Saga:
    """Ordered list of named compensating steps.

    Compensations run newest first. A failing compensation is logged and
    the remaining ones still run; nothing raised here replaces the error
    that triggered the rollback.
    """

    def __init__(self, operation: str, secret_id: str | None = None) -> None:
        self.operation = operation
        self.secret_id = secret_id
        self.compensations: list[tuple[str, Callable[[], Any]]] = []

    @property
    def step_names(self) -> list[str]:
        return [name for name, _ in self.compensations]

    def add(self, name: str, action: Callable[[], Any]) -> None:
        self.compensations.append((name, action))

    def compensate(self) -> list[str]:
        """Run every compensation; return the names of those that failed."""
        failed: list[str] = []
        for name, action in reversed(self.compensations):
            try:
                action()
                cv_logger.info(
                    f"Compensation '{name}' completed",
                    secret_id=self.secret_id,
                    operation=self.operation,
                )
            except Exception as e:
                failed.append(name)
                cv_logger.error(
                    f"Compensation '{name}' failed: {e}",
                    secret_id=self.secret_id,
                    operation=self.operation,
                )
        self.compensations.clear()
        return failed


class ConsistencyCoordinator:
    """Orchestrates secret lifecycle operations across the store and the vault.

    Args:
        records: Local metadata store.
        scopes: Backend scope store.
        client_factory: Builds a vault client from a scope and region.
        cipher: Encrypts LOCAL storage-mode values; optional.
        recovery_window_days: Recovery window for soft deletes.
    """

    def __init__(
        self,
        records: SecretRecordStore,
        scopes: ScopeConfigStore,
        client_factory: ClientFactory = scope_vault_client,
        cipher: SecretCipher | None = None,
        recovery_window_days: int = 30,
    ) -> None:
        self.records = records
        self.scopes = scopes
        self.client_factory = client_factory
        self.cipher = cipher
        self.recovery_window_days = recovery_window_days
        self.last_saga: Saga | None = None

    # --- helpers ---

    def _load(self, secret_id: str) -> Secret:
        secret = self.records.get(secret_id)
        if secret is None:
            raise SecretNotFoundError(f"Secret not found: {secret_id}")
        return secret

    def _client_for(self, secret: Secret) -> SecretVaultBlueprint:
        scope = self.scopes.get(secret.scope_id)
        return self.client_factory(scope, secret.region)

    def _require_cipher(self) -> SecretCipher:
        if self.cipher is None:
            raise InvalidConfigurationError("LOCAL storage requires an encryption cipher")
        return self.cipher

    # --- create ---

    def create_secret(
        self,
        scope_id: str,
        name: str,
        type: SecretType,
        value: dict[str, Any],
        description: str | None = None,
        rotation_enabled: bool = False,
        rotation_rule: RotationRule | None = None,
        region: str | None = None,
        storage_mode: StorageMode = StorageMode.REMOTE,
    ) -> Secret:
        """Create a secret in the vault and record its metadata locally.

        Returns:
            The persisted metadata record (never the value).

        Raises:
            InvalidConfigurationError: Rotation requested but not possible.
            SecretAlreadyExistsError: Name taken in the scope.
            UpstreamSecretExistsError: Name taken in the vault.
            RotationConfigurationError: Rotation could not be enabled (rolled back).
            VaultError: Any other vault failure.
        """
        scope = self.scopes.get(scope_id)
        secret_type = SecretType(type)
        region = region or scope.region

        if rotation_enabled:
            if not is_rotation_supported(secret_type):
                raise InvalidConfigurationError(
                    f"Secret type {secret_type.value} does not support automatic rotation"
                )
            if storage_mode is not StorageMode.REMOTE:
                raise InvalidConfigurationError("Rotation is only available for REMOTE secrets")
            if not scope.rotation_function_ref:
                raise InvalidConfigurationError(
                    "Rotation function is not deployed for this scope, cannot enable rotation"
                )

        if self.records.find_by_name(scope_id, name) is not None:
            raise SecretAlreadyExistsError(f"Secret name '{name}' already exists")

        if storage_mode is StorageMode.LOCAL:
            return self._create_local(scope_id, name, secret_type, value, description, region)

        client = self.client_factory(scope, region)
        try:
            client.describe_secret(name)
            raise UpstreamSecretExistsError(
                f"Vault already contains a secret named '{name}'"
            )
        except VaultSecretNotFoundError:
            pass

        saga = Saga("create_secret", secret_id=name)
        self.last_saga = saga
        try:
            arn = client.create_secret(
                name,
                value,
                description=description,
                tags={SECRET_TYPE_TAG: secret_type.value},
            )
        except VaultSecretExistsError as e:
            # A concurrent creator won between describe and create.
            raise UpstreamSecretExistsError(
                f"Vault already contains a secret named '{name}'"
            ) from e
        saga.add("delete-remote", lambda: client.delete_secret(arn, force=True))
        cv_logger.info("Remote secret created", scope_id=scope_id, secret_id=arn, operation="create_secret")

        rule = rotation_rule or RotationRule()
        if rotation_enabled:
            try:
                client.enable_rotation(arn, scope.rotation_function_ref, rule.to_aws())
            except VaultError as e:
                saga.compensate()
                raise RotationConfigurationError(f"Failed to enable rotation: {e}") from e
            except Exception:
                saga.compensate()
                raise

        try:
            record = self.records.insert(
                Secret(
                    scope_id=scope_id,
                    name=name,
                    type=secret_type,
                    storage_mode=StorageMode.REMOTE,
                    remote_ref=arn,
                    region=region,
                    description=description,
                    rotation_enabled=rotation_enabled,
                    rotation_function_ref=scope.rotation_function_ref if rotation_enabled else None,
                    rotation_rule=rule if rotation_enabled else None,
                )
            )
        except DuplicateRecordError as e:
            # Lost the insert race; the remote secret is left to the winner.
            raise SecretAlreadyExistsError(f"Secret name '{name}' already exists") from e
        except Exception:
            saga.compensate()
            raise

        cv_logger.info("Secret created", scope_id=scope_id, secret_id=record.id, operation="create_secret")
        return record

    def _create_local(
        self,
        scope_id: str,
        name: str,
        secret_type: SecretType,
        value: dict[str, Any],
        description: str | None,
        region: str | None,
    ) -> Secret:
        cipher = self._require_cipher()
        try:
            return self.records.insert(
                Secret(
                    scope_id=scope_id,
                    name=name,
                    type=secret_type,
                    storage_mode=StorageMode.LOCAL,
                    encrypted_value=cipher.encrypt(value),
                    region=region,
                    description=description,
                )
            )
        except DuplicateRecordError as e:
            raise SecretAlreadyExistsError(f"Secret name '{name}' already exists") from e

    # --- read ---

    def get_secret(self, secret_id: str) -> Secret:
        return self._load(secret_id)

    def list_secrets(self, scope_id: str) -> list[Secret]:
        self.scopes.get(scope_id)
        return self.records.list(scope_id)

    def get_secret_with_value(self, secret_id: str) -> SecretWithValue:
        """Return metadata merged with the live CURRENT value.

        Raises:
            SecretNotFoundError: If the record does not exist.
            VaultError: If the vault read fails; there is no local fallback.
        """
        secret = self._load(secret_id)
        metadata = secret.model_dump()
        if secret.storage_mode is StorageMode.LOCAL:
            value = self._require_cipher().decrypt(secret.encrypted_value or "")
            return SecretWithValue(**metadata, secret_value=value)

        client = self._client_for(secret)
        try:
            current = client.get_current_value(secret.remote_ref or secret.name)
        except VaultError as e:
            raise VaultError(f"Failed to get secret '{secret.name}' from the vault: {e}") from e
        return SecretWithValue(**metadata, secret_value=current.payload)

    # --- update ---

    def update_secret(
        self,
        secret_id: str,
        value: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> Secret:
        """Write a new value to the vault first, then update local metadata.

        A vault failure aborts with no local side effect.
        """
        secret = self._load(secret_id)
        changes: dict[str, Any] = {"updated_at": utcnow()}
        if description is not None:
            changes["description"] = description

        if value is not None:
            if secret.storage_mode is StorageMode.LOCAL:
                changes["encrypted_value"] = self._require_cipher().encrypt(value)
            else:
                client = self._client_for(secret)
                try:
                    client.update_secret_value(
                        secret.remote_ref or secret.name, value, description=description
                    )
                except VaultError as e:
                    raise VaultError(f"Failed to update secret '{secret.name}': {e}") from e

        record = self.records.update(secret_id, **changes)
        cv_logger.info("Secret updated", scope_id=secret.scope_id, secret_id=secret_id, operation="update_secret")
        return record

    # --- delete ---

    def delete_secret(self, secret_id: str, force: bool = False) -> Secret:
        """Delete the remote secret (best effort) and always the local record.

        Args:
            secret_id: Local record id.
            force: Delete immediately instead of after the recovery window.

        Returns:
            The deleted metadata record.
        """
        secret = self._load(secret_id)

        if secret.storage_mode is StorageMode.REMOTE:
            self._delete_remote(secret, force)

        record = self.records.delete(secret_id)
        cv_logger.info("Secret deleted", scope_id=secret.scope_id, secret_id=secret_id, operation="delete_secret")
        return record

    def _delete_remote(self, secret: Secret, force: bool) -> None:
        try:
            client = self._client_for(secret)
        except (CredvaultError, ValueError) as e:
            cv_logger.warning(
                f"Vault client unavailable, skipping remote delete: {e}",
                scope_id=secret.scope_id,
                secret_id=secret.id,
                operation="delete_secret",
            )
            return

        try:
            client.delete_secret(
                secret.remote_ref or secret.name,
                force=force,
                recovery_window_days=self.recovery_window_days,
            )
        except VaultSecretNotFoundError:
            cv_logger.info(
                "Remote secret already gone",
                scope_id=secret.scope_id,
                secret_id=secret.id,
                operation="delete_secret",
            )
        except VaultError as e:
            cv_logger.error(
                f"Remote delete failed, remote secret {secret.remote_ref} may be orphaned: {e}",
                scope_id=secret.scope_id,
                secret_id=secret.id,
                operation="delete_secret",
            )

    # --- rotate ---

    def rotate_secret(self, secret_id: str) -> dict[str, Any]:
        """Trigger an immediate rotation and stamp ``last_rotated_at``.

        Raises:
            SecretNotFoundError: If the record does not exist.
            RotationNotEnabledError: If rotation is disabled for the secret.
            VaultError: If the vault rejects the rotation.
        """
        secret = self._load(secret_id)
        if not secret.rotation_enabled:
            raise RotationNotEnabledError(
                f"Secret '{secret.name}' does not have automatic rotation enabled"
            )

        client = self._client_for(secret)
        try:
            result = client.rotate_secret(secret.remote_ref or secret.name)
        except VaultError as e:
            raise VaultError(f"Failed to rotate secret '{secret.name}': {e}") from e

        self.records.update(secret_id, last_rotated_at=utcnow())
        cv_logger.info("Rotation triggered", scope_id=secret.scope_id, secret_id=secret_id, operation="rotate_secret")
        return result
