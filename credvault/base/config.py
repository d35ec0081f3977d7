"""
Pydantic configuration models.

Validates vault client, provisioning and rotation-function settings at
initialization time instead of silently passing bad values to SDK
clients or subprocesses.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from pydantic import BaseModel, ConfigDict, Field, model_validator


class AWSConfig(BaseModel):
    """Configuration for AWS clients.

    Credentials are resolved in order:
    1. Explicit values passed in the config dict.
    2. Environment variables (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_DEFAULT_REGION).
    3. If neither is set, fields are left as None so boto3 can fall back to its
       own credential chain (instance metadata, the Lambda execution role, etc.).
    """

    model_config = ConfigDict(extra="forbid")

    aws_access_key_id: str | None = Field(default=None, description="AWS access key ID")
    aws_secret_access_key: str | None = Field(default=None, description="AWS secret access key")
    region_name: str | None = Field(default=None, description="AWS region (e.g. 'us-east-1')")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Fall back to environment variables for missing credentials."""
        env_map = {
            "aws_access_key_id": "AWS_ACCESS_KEY_ID",
            "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
            "region_name": "AWS_DEFAULT_REGION",
        }
        for field, env_var in env_map.items():
            if not values.get(field):
                values[field] = os.environ.get(env_var)
        return values

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``boto3.client``."""
        return {
            "aws_access_key_id": self.aws_access_key_id,
            "aws_secret_access_key": self.aws_secret_access_key,
            "region_name": self.region_name,
        }


class DeploymentSettings(BaseModel):
    """Where and how the rotation-function infrastructure is provisioned.

    Values fall back to CREDVAULT_INFRA_PATH and CREDVAULT_COMMAND_TIMEOUT.
    """

    model_config = ConfigDict(extra="forbid")

    infra_path: Path = Field(default=Path("infrastructure"), description="Provisioning project dir")
    command_timeout: float = Field(default=900.0, gt=0, description="Seconds per command")
    output_tail: int = Field(default=1000, ge=0, description="Chars of output kept in messages")
    stage_prefix: str = Field(default="", description="Prepended to the scope id to form the stage")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        if not values.get("infra_path") and os.environ.get("CREDVAULT_INFRA_PATH"):
            values["infra_path"] = os.environ["CREDVAULT_INFRA_PATH"]
        if not values.get("command_timeout") and os.environ.get("CREDVAULT_COMMAND_TIMEOUT"):
            values["command_timeout"] = os.environ["CREDVAULT_COMMAND_TIMEOUT"]
        return values


class RotationSettings(BaseModel):
    """Settings read by the rotation function when the vault invokes it."""

    model_config = ConfigDict(extra="forbid")

    password_length: int = Field(default=32, ge=8, le=4096)
    exclude_characters: str = Field(default="/@\"'\\")
    connect_timeout: int = Field(default=10, gt=0)
    documentdb_ca_file: str | None = Field(default=None, description="TLS CA bundle path")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        env_map = {
            "password_length": "CREDVAULT_PASSWORD_LENGTH",
            "connect_timeout": "CREDVAULT_CONNECT_TIMEOUT",
            "documentdb_ca_file": "CREDVAULT_DOCUMENTDB_CA_FILE",
        }
        for field, env_var in env_map.items():
            if values.get(field) is None and os.environ.get(env_var):
                values[field] = os.environ[env_var]
        return values


# Map provider names to their config models for dynamic validation
CONFIG_REGISTRY: dict[str, type[BaseModel]] = {
    "aws": AWSConfig,
}


def validate_config(provider: str, config: dict) -> BaseModel:
    """Validate and return a typed config model for the given provider.

    Args:
        provider: The vault provider name (e.g. 'aws').
        config: Raw configuration dictionary.

    Returns:
        A validated Pydantic config model.

    Raises:
        ValueError: If the provider is unknown.
        pydantic.ValidationError: If the config is invalid.
    """
    model = CONFIG_REGISTRY.get(provider)
    if model is None:
        raise ValueError(f"No config model registered for provider: {provider}")
    return model(**config)


__all__ = [
    "AWSConfig",
    "DeploymentSettings",
    "RotationSettings",
    "CONFIG_REGISTRY",
    "validate_config",
]
