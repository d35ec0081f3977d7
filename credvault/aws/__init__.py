"""AWS implementations of the vault and identity blueprints."""

from .secrets_manager import SecretsManagerVault, decode_secret_payload
from .iam import IAMIdentityProvider

__all__ = ["SecretsManagerVault", "IAMIdentityProvider", "decode_secret_payload"]
