"""Abstract blueprints, models and core utilities.

The vault and identity clients implement the blueprints defined here.
Import them to type-hint your own code or to plug in a fake client.
"""

from .vault import SecretVaultBlueprint
from .identity import IdentityProviderBlueprint
from .store import SecretRecordStore, ScopeConfigStore
from .models import (
    BackendScopeConfig,
    DeploymentStatus,
    RotationRule,
    Secret,
    SecretType,
    StorageMode,
)
from .supported_services import existing_services, existing_providers


__all__ = [
    "SecretVaultBlueprint",
    "IdentityProviderBlueprint",
    "SecretRecordStore",
    "ScopeConfigStore",
    "BackendScopeConfig",
    "DeploymentStatus",
    "RotationRule",
    "Secret",
    "SecretType",
    "StorageMode",
    "existing_services",
    "existing_providers",
]
