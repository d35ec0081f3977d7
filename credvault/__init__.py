"""Credvault: secret lifecycle and rotation engine over a remote vault.

Entry point for the library. Build a :class:`ConsistencyCoordinator`
over your metadata stores to manage secrets, and a
:class:`DeploymentStateMachine` to provision the rotation function::

    from credvault import ConsistencyCoordinator
    from credvault.base.store import InMemorySecretRecordStore, InMemoryScopeConfigStore

    coordinator = ConsistencyCoordinator(InMemorySecretRecordStore(), InMemoryScopeConfigStore())
"""

from .base import (
    SecretVaultBlueprint,
    IdentityProviderBlueprint,
    SecretRecordStore,
    ScopeConfigStore,
    BackendScopeConfig,
    DeploymentStatus,
    RotationRule,
    Secret,
    SecretType,
    StorageMode,
)
from .factory import universal_factory, scope_vault_client
from .coordinator import ConsistencyCoordinator, Saga
from .deployment import DeploymentStateMachine, ProvisioningRunner

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
    "universal_factory",
    "scope_vault_client",
    "ConsistencyCoordinator",
    "Saga",
    "DeploymentStateMachine",
    "ProvisioningRunner",
]
