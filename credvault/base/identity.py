"""Identity provider blueprint (access-key issuance for identity credentials)."""

from abc import ABC, abstractmethod
from typing import Any


class IdentityProviderBlueprint(ABC):
    """Abstract interface for issuing and revoking access-key pairs.

    Maps to AWS IAM (keys) and AWS STS (caller identity).
    """

    @abstractmethod
    def resolve_username(self, access_key_id: str, secret_access_key: str) -> str:
        """Return the user name that owns the given key pair.

        Raises:
            IdentityError: If the key is invalid or the identity is not a user.
        """

    @abstractmethod
    def create_access_key(self, username: str) -> dict[str, Any]:
        """Issue a new key pair.

        Returns:
            Dict with ``access_key_id`` and ``secret_access_key``.
        """

    @abstractmethod
    def deactivate_access_key(self, username: str, access_key_id: str) -> None:
        """Mark a key pair inactive."""

    @abstractmethod
    def delete_access_key(self, username: str, access_key_id: str) -> None:
        """Delete a key pair."""

    @abstractmethod
    def verify_credentials(self, access_key_id: str, secret_access_key: str) -> dict[str, Any]:
        """Call the identity-verification endpoint with the given key pair.

        Returns:
            Dict with ``account``, ``arn`` and ``user_id``.
        """
