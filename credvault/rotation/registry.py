"""Secret type -> rotation strategy mapping.

``STRATEGY_REGISTRY`` is the single source for which types support
rotation; the coordinator checks it before enabling rotation and the
rotation function uses it to pick an implementation.
"""

from __future__ import annotations

from credvault.base.config import RotationSettings
from credvault.base.exceptions import InvalidConfigurationError
from credvault.base.identity import IdentityProviderBlueprint
from credvault.base.models import SecretType
from credvault.base.vault import SecretVaultBlueprint
from credvault.rotation.api_key import AwsApiKeyStrategy
from credvault.rotation.base import RotationStrategy
from credvault.rotation.database import DocumentDbStrategy, RdsCredentialsStrategy
from credvault.rotation.generic import GenericStrategy

# Vault tag holding the secret type, written on create and read by the rotation function.
SECRET_TYPE_TAG = "credvault:secret-type"

STRATEGY_REGISTRY: dict[SecretType, type[RotationStrategy]] = {
    SecretType.RDS_CREDENTIALS: RdsCredentialsStrategy,
    SecretType.DOCUMENTDB_CREDENTIALS: DocumentDbStrategy,
    SecretType.AWS_API_KEY: AwsApiKeyStrategy,
    SecretType.GENERIC_SECRET: GenericStrategy,
}


def is_rotation_supported(secret_type: SecretType | str) -> bool:
    try:
        return SecretType(secret_type) in STRATEGY_REGISTRY
    except ValueError:
        return False


def get_strategy(
    secret_type: SecretType | str,
    vault: SecretVaultBlueprint,
    identity: IdentityProviderBlueprint | None = None,
    settings: RotationSettings | None = None,
) -> RotationStrategy:
    """Instantiate the strategy for *secret_type*.

    Raises:
        InvalidConfigurationError: If the type has no rotation strategy.
    """
    if not is_rotation_supported(secret_type):
        raise InvalidConfigurationError(f"No rotation strategy for secret type: {secret_type}")
    strategy_class = STRATEGY_REGISTRY[SecretType(secret_type)]
    if strategy_class is AwsApiKeyStrategy:
        return AwsApiKeyStrategy(vault, settings, identity=identity)
    return strategy_class(vault, settings)
