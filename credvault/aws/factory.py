"""AWS service factory.

Maps service names to their AWS SDK implementations.
``SERVICE_REGISTRY`` is consumed by :func:`credvault.factory.universal_factory`.
"""

from credvault.aws.secrets_manager import SecretsManagerVault
from credvault.aws.iam import IAMIdentityProvider


# Service registry for AWS
SERVICE_REGISTRY: dict[str, type] = {
    "vault": SecretsManagerVault,
    "identity": IAMIdentityProvider,
}
