"""AWS Secrets Manager implementation of the SecretVault blueprint."""

from __future__ import annotations

import base64
import json
from typing import Any, NoReturn

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from credvault.base.vault import SecretVaultBlueprint
from credvault.base.exceptions import (
    VaultError,
    VaultSecretExistsError,
    VaultSecretNotFoundError,
)
from credvault.base.config import AWSConfig
from credvault.base.models import VersionedValue

_ERROR_MAP: dict[str, type[VaultError]] = {
    "ResourceNotFoundException": VaultSecretNotFoundError,
    "ResourceExistsException": VaultSecretExistsError,
}


def _handle(e: ClientError | BotoCoreError, msg: str) -> NoReturn:
    # Transport and credential failures carry no error code.
    exc = _ERROR_MAP.get(e.response["Error"]["Code"]) if isinstance(e, ClientError) else None
    raise (exc or VaultError)(f"{msg}: {e}") from e


def decode_secret_payload(response: dict[str, Any]) -> dict[str, Any]:
    """Decode a GetSecretValue response from its text or binary encoding.

    Args:
        response: Raw ``get_secret_value`` response.

    Returns:
        The JSON payload as a dict (empty when the version holds nothing).

    Raises:
        VaultError: If the payload is not a JSON object.
    """
    raw: str | None = None
    if response.get("SecretString") is not None:
        raw = response["SecretString"]
    elif response.get("SecretBinary") is not None:
        blob = response["SecretBinary"]
        if isinstance(blob, str):
            blob = base64.b64decode(blob)
        raw = bytes(blob).decode("utf-8")
    if raw is None:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise VaultError(f"Secret payload is not valid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise VaultError("Secret payload must be a JSON object")
    return payload


class SecretsManagerVault(SecretVaultBlueprint):
    """AWS Secrets Manager vault client.

    One instance is built per request from explicit scope credentials;
    nothing is shared between scopes.

    Attributes:
        client: boto3 Secrets Manager client.
        region: AWS region name.
    """

    def __init__(self, config: AWSConfig) -> None:
        """Initialize the Secrets Manager client.

        Args:
            config: AWS configuration object containing credentials and region.
        """
        self.client = boto3.client("secretsmanager", **config.client_kwargs())
        self.region = config.region_name

    def create_secret(
        self,
        name: str,
        value: dict[str, Any],
        *,
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Create a new secret.

        Returns:
            The secret ARN.

        Raises:
            VaultSecretExistsError: If a secret with the given name already exists.
            VaultError: If creation fails for any other reason.
        """
        params: dict[str, Any] = {"Name": name, "SecretString": json.dumps(value)}
        if description is not None:
            params["Description"] = description
        if tags:
            params["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]
        try:
            resp = self.client.create_secret(**params)
            return resp["ARN"]  # type: ignore[no-any-return]
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to create secret '{name}'")

    def describe_secret(self, secret_id: str) -> dict[str, Any]:
        try:
            return self.client.describe_secret(SecretId=secret_id)  # type: ignore[no-any-return]
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to describe secret '{secret_id}'")

    def get_secret_value(
        self,
        secret_id: str,
        *,
        stage: str | None = "AWSCURRENT",
        version_id: str | None = None,
    ) -> VersionedValue:
        """Fetch one version and decode its payload.

        Raises:
            VaultSecretNotFoundError: If the secret or version does not exist.
            VaultError: If retrieval fails for any other reason.
        """
        params: dict[str, Any] = {"SecretId": secret_id}
        if stage:
            params["VersionStage"] = stage
        if version_id:
            params["VersionId"] = version_id
        try:
            resp = self.client.get_secret_value(**params)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to get value of secret '{secret_id}'")
        return VersionedValue(
            payload=decode_secret_payload(resp),
            version_id=resp.get("VersionId"),
            stages=list(resp.get("VersionStages", [])),
        )

    def update_secret_value(
        self,
        secret_id: str,
        value: dict[str, Any],
        *,
        description: str | None = None,
    ) -> None:
        params: dict[str, Any] = {"SecretId": secret_id, "SecretString": json.dumps(value)}
        if description is not None:
            params["Description"] = description
        try:
            self.client.update_secret(**params)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to update secret '{secret_id}'")

    def put_secret_value(
        self,
        secret_id: str,
        token: str,
        value: dict[str, Any],
        stages: list[str],
    ) -> None:
        try:
            self.client.put_secret_value(
                SecretId=secret_id,
                ClientRequestToken=token,
                SecretString=json.dumps(value),
                VersionStages=stages,
            )
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to store version '{token}' of secret '{secret_id}'")

    def delete_secret(
        self,
        secret_id: str,
        *,
        force: bool = False,
        recovery_window_days: int = 30,
    ) -> None:
        """Delete a secret.

        Args:
            secret_id: Name or ARN.
            force: Delete immediately, without a recovery window.
            recovery_window_days: Days before a soft-deleted secret is purged (7-30).

        Raises:
            VaultSecretNotFoundError: If the secret does not exist.
            VaultError: If deletion fails for any other reason.
        """
        params: dict[str, Any] = {"SecretId": secret_id}
        if force:
            params["ForceDeleteWithoutRecovery"] = True
        else:
            params["RecoveryWindowInDays"] = recovery_window_days
        try:
            self.client.delete_secret(**params)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to delete secret '{secret_id}'")

    def rotate_secret(self, secret_id: str) -> dict[str, Any]:
        try:
            resp = self.client.rotate_secret(SecretId=secret_id, RotateImmediately=True)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to rotate secret '{secret_id}'")
        return {"arn": resp.get("ARN"), "name": resp.get("Name"), "version_id": resp.get("VersionId")}

    def enable_rotation(
        self,
        secret_id: str,
        rotation_function_ref: str,
        rules: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            resp = self.client.rotate_secret(
                SecretId=secret_id,
                RotationLambdaARN=rotation_function_ref,
                RotationRules=rules,
            )
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to enable rotation for secret '{secret_id}'")
        return {"arn": resp.get("ARN"), "version_id": resp.get("VersionId")}

    def get_random_password(
        self,
        length: int = 32,
        *,
        exclude_characters: str = "",
        exclude_punctuation: bool = False,
    ) -> str:
        params: dict[str, Any] = {
            "PasswordLength": length,
            "ExcludePunctuation": exclude_punctuation,
        }
        if exclude_characters:
            params["ExcludeCharacters"] = exclude_characters
        try:
            return self.client.get_random_password(**params)["RandomPassword"]  # type: ignore[no-any-return]
        except (ClientError, BotoCoreError) as e:
            _handle(e, "Failed to generate random password")

    def update_version_stage(
        self,
        secret_id: str,
        stage: str,
        *,
        move_to_version_id: str,
        remove_from_version_id: str | None = None,
    ) -> None:
        params: dict[str, Any] = {
            "SecretId": secret_id,
            "VersionStage": stage,
            "MoveToVersionId": move_to_version_id,
        }
        if remove_from_version_id:
            params["RemoveFromVersionId"] = remove_from_version_id
        try:
            self.client.update_secret_version_stage(**params)
        except (ClientError, BotoCoreError) as e:
            _handle(e, f"Failed to move stage {stage} of secret '{secret_id}'")
