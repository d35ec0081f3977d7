"""
Rotation function entry point.

The vault invokes the rotation function once per step with
``{"Step", "SecretId", "ClientRequestToken"}``. :class:`RotationHandler`
checks the version state for the token, loads the PENDING and CURRENT
payloads the step needs and dispatches to the strategy registered for
the secret's type. Replayed invocations are safe: a token that is
already CURRENT is a no-op, and ``createSecret`` keeps an existing
PENDING value for the same token instead of minting a second one.
"""

from __future__ import annotations

from typing import Any, Callable

from credvault.base.config import RotationSettings
from credvault.base.exceptions import (
    InvalidConfigurationError,
    RotationStateError,
    VaultSecretNotFoundError,
)
from credvault.base.identity import IdentityProviderBlueprint
from credvault.base.logger import cv_logger
from credvault.base.models import RotationEvent, RotationStep, VersionStage, VersionedValue
from credvault.base.vault import SecretVaultBlueprint
from credvault.factory import universal_factory
from credvault.rotation.base import RotationStrategy
from credvault.rotation.registry import SECRET_TYPE_TAG, get_strategy

StrategyFactory = Callable[..., RotationStrategy]


class RotationHandler:
    """Runs one rotation step against the vault."""

    def __init__(
        self,
        vault: SecretVaultBlueprint,
        identity: IdentityProviderBlueprint | None = None,
        settings: RotationSettings | None = None,
        strategy_factory: StrategyFactory = get_strategy,
    ) -> None:
        self.vault = vault
        self.identity = identity
        self.settings = settings or RotationSettings()
        self.strategy_factory = strategy_factory

    def handle(self, event: RotationEvent | dict[str, Any]) -> None:
        """Validate the version state and run ``event.step``.

        Raises:
            RotationStateError: Rotation disabled, unknown token, or the token
                has no PENDING version to act on.
            InvalidConfigurationError: The secret carries no usable type tag.
        """
        if not isinstance(event, RotationEvent):
            event = RotationEvent.model_validate(event)
        secret_id, token, step = event.secret_id, event.client_request_token, event.step

        cv_logger.info(f"Rotation step invoked (token {token[:8]}...)", secret_id=secret_id, step=step.value)

        metadata = self.vault.describe_secret(secret_id)
        if not metadata.get("RotationEnabled"):
            raise RotationStateError(f"Secret {secret_id} does not have rotation enabled")

        versions: dict[str, list[str]] = metadata.get("VersionIdsToStages", {})
        if token not in versions:
            raise RotationStateError(f"Secret version {token} has no stage for rotation of {secret_id}")
        if VersionStage.CURRENT.value in versions[token]:
            cv_logger.info("Version already CURRENT, nothing to do", secret_id=secret_id, step=step.value)
            return
        if VersionStage.PENDING.value not in versions[token]:
            raise RotationStateError(
                f"Secret version {token} is not set as PENDING for rotation of {secret_id}"
            )

        strategy = self.strategy_factory(
            self._secret_type(metadata), self.vault, identity=self.identity, settings=self.settings
        )

        if step is RotationStep.CREATE_SECRET:
            self._create(strategy, secret_id, token)
        elif step is RotationStep.SET_SECRET:
            strategy.set_secret(
                secret_id, token, self._pending(secret_id, token).payload, self._current(secret_id).payload
            )
        elif step is RotationStep.TEST_SECRET:
            strategy.test_secret(secret_id, token, self._pending(secret_id, token).payload)
        else:
            strategy.finish_secret(secret_id, token, self._current_version(secret_id, versions))

        cv_logger.info("Rotation step completed", secret_id=secret_id, step=step.value)

    # --- steps ---

    def _create(self, strategy: RotationStrategy, secret_id: str, token: str) -> None:
        current = self._current(secret_id)
        try:
            self._pending(secret_id, token)
            cv_logger.info("PENDING value already stored for token", secret_id=secret_id, step="createSecret")
            return
        except VaultSecretNotFoundError:
            pass
        strategy.create_secret(secret_id, token, current.payload)

    # --- helpers ---

    @staticmethod
    def _secret_type(metadata: dict[str, Any]) -> str:
        for tag in metadata.get("Tags", []):
            if tag.get("Key") == SECRET_TYPE_TAG:
                return tag["Value"]
        raise InvalidConfigurationError(
            f"Secret {metadata.get('Name')} has no '{SECRET_TYPE_TAG}' tag"
        )

    def _pending(self, secret_id: str, token: str) -> VersionedValue:
        return self.vault.get_secret_value(
            secret_id, stage=VersionStage.PENDING.value, version_id=token
        )

    def _current(self, secret_id: str) -> VersionedValue:
        return self.vault.get_secret_value(secret_id, stage=VersionStage.CURRENT.value)

    def _current_version(self, secret_id: str, versions: dict[str, list[str]]) -> VersionedValue:
        for version_id, stages in versions.items():
            if VersionStage.CURRENT.value in stages:
                return self.vault.get_secret_value(
                    secret_id, stage=VersionStage.CURRENT.value, version_id=version_id
                )
        raise RotationStateError(f"Secret {secret_id} has no CURRENT version")


def lambda_handler(event: dict[str, Any], context: Any) -> None:
    """Rotation function entry point invoked by the vault.

    Clients are built per invocation from the function's own environment
    credentials.

    Args:
        event: ``{"Step", "SecretId", "ClientRequestToken"}``.
        context: Runtime context (unused).
    """
    handler = RotationHandler(
        vault=universal_factory("vault", "aws", {}),
        identity=universal_factory("identity", "aws", {}),
        settings=RotationSettings(),
    )
    handler.handle(event)
