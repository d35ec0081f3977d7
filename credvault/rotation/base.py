"""Rotation strategy blueprint.

Each credential type implements the four rotation steps the vault
drives through the rotation function. All steps of one rotation cycle
share the same ``token`` (the pending version id).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from credvault.base.config import RotationSettings
from credvault.base.models import VersionStage, VersionedValue
from credvault.base.vault import SecretVaultBlueprint


class RotationStrategy(ABC):
    """Four-step rotation protocol for one credential type.

    Attributes:
        vault: Client for the vault holding the secret.
        settings: Password generation and connection settings.
    """

    def __init__(
        self,
        vault: SecretVaultBlueprint,
        settings: RotationSettings | None = None,
    ) -> None:
        self.vault = vault
        self.settings = settings or RotationSettings()

    @abstractmethod
    def create_secret(self, secret_id: str, token: str, current: dict[str, Any]) -> None:
        """Generate a candidate value and store it as PENDING under *token*."""

    @abstractmethod
    def set_secret(
        self,
        secret_id: str,
        token: str,
        pending: dict[str, Any],
        current: dict[str, Any],
    ) -> None:
        """Apply the pending value to the target system using the CURRENT credential."""

    @abstractmethod
    def test_secret(self, secret_id: str, token: str, pending: dict[str, Any]) -> None:
        """Verify the pending value works; raising prevents promotion."""

    def finish_secret(self, secret_id: str, token: str, current_version: VersionedValue) -> None:
        """Promote PENDING to CURRENT; the old CURRENT becomes PREVIOUS.

        One stage-move request, so no moment exists without a CURRENT version.
        """
        self.vault.update_version_stage(
            secret_id,
            VersionStage.CURRENT.value,
            move_to_version_id=token,
            remove_from_version_id=current_version.version_id,
        )

    # --- shared helpers ---

    def _store_pending(self, secret_id: str, token: str, payload: dict[str, Any]) -> None:
        self.vault.put_secret_value(secret_id, token, payload, [VersionStage.PENDING.value])

    def _random_password(self, *, exclude_punctuation: bool = True) -> str:
        return self.vault.get_random_password(
            self.settings.password_length,
            exclude_characters=self.settings.exclude_characters,
            exclude_punctuation=exclude_punctuation,
        )
