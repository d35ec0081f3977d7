"""AWS IAM implementation of the IdentityProvider blueprint."""

from __future__ import annotations

from typing import Any, NoReturn

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from credvault.base.identity import IdentityProviderBlueprint
from credvault.base.exceptions import IdentityError
from credvault.base.config import AWSConfig


def _handle(e: ClientError | BotoCoreError, msg: str) -> NoReturn:
    code = e.response["Error"]["Code"] if isinstance(e, ClientError) else type(e).__name__
    raise IdentityError(f"{msg} ({code}): {e}") from e


class IAMIdentityProvider(IdentityProviderBlueprint):
    """AWS IAM access-key management.

    Key issuance and revocation run with the provider's own credentials
    (the rotation function's execution role by default); caller-identity
    checks run with the key pair under inspection.

    Attributes:
        client: boto3 IAM client.
    """

    def __init__(self, config: AWSConfig) -> None:
        """Initialize the IAM client.

        Args:
            config: AWS configuration object containing credentials and region.
        """
        self.client = boto3.client("iam", **config.client_kwargs())
        self.region = config.region_name

    def _sts_for(self, access_key_id: str, secret_access_key: str) -> Any:
        return boto3.client(
            "sts",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=self.region,
        )

    def verify_credentials(self, access_key_id: str, secret_access_key: str) -> dict[str, Any]:
        try:
            resp = self._sts_for(access_key_id, secret_access_key).get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Credential check failed for key '{access_key_id}'")
        return {"account": resp["Account"], "arn": resp["Arn"], "user_id": resp["UserId"]}

    def resolve_username(self, access_key_id: str, secret_access_key: str) -> str:
        """Derive the IAM user name from the caller ARN (``arn:aws:iam::123:user/name``)."""
        arn = self.verify_credentials(access_key_id, secret_access_key)["arn"]
        if ":user/" not in arn:
            raise IdentityError(f"Credentials do not belong to an IAM user: {arn}")
        return arn.rsplit("/", 1)[-1]

    def create_access_key(self, username: str) -> dict[str, Any]:
        try:
            key = self.client.create_access_key(UserName=username)["AccessKey"]
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to create access key for '{username}'")
        return {
            "access_key_id": key["AccessKeyId"],
            "secret_access_key": key["SecretAccessKey"],
        }

    def deactivate_access_key(self, username: str, access_key_id: str) -> None:
        try:
            self.client.update_access_key(
                UserName=username, AccessKeyId=access_key_id, Status="Inactive"
            )
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to deactivate access key '{access_key_id}'")

    def delete_access_key(self, username: str, access_key_id: str) -> None:
        try:
            self.client.delete_access_key(UserName=username, AccessKeyId=access_key_id)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to delete access key '{access_key_id}'")
