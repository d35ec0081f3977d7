"""Secret vault blueprint."""

from abc import ABC, abstractmethod
from typing import Any

from credvault.base.models import VersionedValue


class SecretVaultBlueprint(ABC):
    """Abstract capability interface over the remote secret vault.

    Maps to AWS Secrets Manager. ``secret_id`` arguments accept either the
    secret name or its ARN.
    """

    @abstractmethod
    def create_secret(
        self,
        name: str,
        value: dict[str, Any],
        *,
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Create a secret whose first version is CURRENT.

        Returns:
            The vault identifier (ARN) of the new secret.
        """

    @abstractmethod
    def describe_secret(self, secret_id: str) -> dict[str, Any]:
        """Return secret metadata, including ``VersionIdsToStages``.

        Raises:
            VaultSecretNotFoundError: If no such secret exists.
        """

    @abstractmethod
    def get_secret_value(
        self,
        secret_id: str,
        *,
        stage: str | None = "AWSCURRENT",
        version_id: str | None = None,
    ) -> VersionedValue:
        """Fetch and decode one version, by stage and/or version id."""

    def get_current_value(self, secret_id: str) -> VersionedValue:
        """Fetch the live CURRENT version."""
        return self.get_secret_value(secret_id, stage="AWSCURRENT")

    @abstractmethod
    def update_secret_value(
        self,
        secret_id: str,
        value: dict[str, Any],
        *,
        description: str | None = None,
    ) -> None:
        """Overwrite the value with a new CURRENT version."""

    @abstractmethod
    def put_secret_value(
        self,
        secret_id: str,
        token: str,
        value: dict[str, Any],
        stages: list[str],
    ) -> None:
        """Store a new version under ``token`` with the given stage labels."""

    @abstractmethod
    def delete_secret(
        self,
        secret_id: str,
        *,
        force: bool = False,
        recovery_window_days: int = 30,
    ) -> None:
        """Delete a secret, immediately or after a recovery window."""

    @abstractmethod
    def rotate_secret(self, secret_id: str) -> dict[str, Any]:
        """Trigger an immediate rotation with the configured function."""

    @abstractmethod
    def enable_rotation(
        self,
        secret_id: str,
        rotation_function_ref: str,
        rules: dict[str, Any],
    ) -> dict[str, Any]:
        """Register the rotation function and schedule for a secret."""

    @abstractmethod
    def get_random_password(
        self,
        length: int = 32,
        *,
        exclude_characters: str = "",
        exclude_punctuation: bool = False,
    ) -> str:
        """Generate a random value with the vault's secure generator."""

    @abstractmethod
    def update_version_stage(
        self,
        secret_id: str,
        stage: str,
        *,
        move_to_version_id: str,
        remove_from_version_id: str | None = None,
    ) -> None:
        """Move a stage label between versions in a single request."""
