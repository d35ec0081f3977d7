"""Stateless client factory.

Provides :func:`universal_factory`, the single entry-point for creating
vault and identity clients, and :func:`scope_vault_client`, which builds
a vault client from a scope's explicit credentials on every call. No
client is cached or shared, so tests can pass a fake factory to the
coordinator without touching process state.
"""

from typing import overload, Literal, Any

from credvault.base import (
    SecretVaultBlueprint,
    IdentityProviderBlueprint,
    existing_services,
    existing_providers,
)
from credvault.base.config import validate_config
from credvault.base.exceptions import InvalidConfigurationError
from credvault.base.models import BackendScopeConfig
from credvault.aws.factory import SERVICE_REGISTRY as AWS_SERVICES


# Nested factory registry: provider -> service registry
_FACTORY_REGISTRY: dict[str, dict[str, type]] = {
    "aws": AWS_SERVICES,
}


@overload
def universal_factory(
    service_name: Literal["vault"], provider: existing_providers, config: dict
) -> SecretVaultBlueprint: ...


@overload
def universal_factory(
    service_name: Literal["identity"], provider: existing_providers, config: dict
) -> IdentityProviderBlueprint: ...


def universal_factory(
    service_name: existing_services,
    provider: existing_providers,
    config: dict,
) -> Any:
    """
    Create a client instance based on provider and service name.
    Args:
        service_name: The name of the service ('vault' or 'identity').
        provider: The vault provider (e.g., 'aws').
        config: Configuration dictionary to initialize the client.
    Returns:
        An instance of the requested service class.
    Raises:
        ValueError: If the provider or service is not supported.
    """
    if provider not in _FACTORY_REGISTRY:
        raise ValueError(f"Unsupported provider: {provider}")

    provider_services = _FACTORY_REGISTRY[provider]

    if service_name not in provider_services:
        raise ValueError(
            f"Unsupported service '{service_name}' for provider '{provider}'"
        )

    service_class = provider_services[service_name]
    config_obj = validate_config(provider, config)
    return service_class(config_obj)


def scope_vault_client(
    scope: BackendScopeConfig, region: str | None = None
) -> SecretVaultBlueprint:
    """Build a vault client from a scope's credentials.

    Args:
        scope: Backend scope holding the vault credentials.
        region: Region override (a secret may live outside the scope default).

    Raises:
        InvalidConfigurationError: If the scope has no vault credentials.
    """
    if not scope.has_vault_credentials:
        raise InvalidConfigurationError(
            f"Scope {scope.name or scope.scope_id} does not have vault credentials configured"
        )
    config = scope.vault_config(region).model_dump()
    return universal_factory("vault", "aws", config)
