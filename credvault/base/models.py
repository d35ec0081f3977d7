"""
Pydantic models for secret metadata, backend scopes and rotation events.

The local store owns :class:`Secret` records; the vault owns the actual
value and its version history (:class:`VersionedValue`).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from credvault.base.config import AWSConfig


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecretType(str, Enum):
    """Kind of credential a secret holds; selects the rotation strategy."""

    RDS_CREDENTIALS = "RDS_CREDENTIALS"
    DOCUMENTDB_CREDENTIALS = "DOCUMENTDB_CREDENTIALS"
    AWS_API_KEY = "AWS_API_KEY"
    GENERIC_SECRET = "GENERIC_SECRET"


class StorageMode(str, Enum):
    LOCAL = "LOCAL"
    REMOTE = "REMOTE"


class DeploymentStatus(str, Enum):
    """Lifecycle of a scope's rotation-function infrastructure."""

    IDLE = "IDLE"
    DEPLOYING = "DEPLOYING"
    DEPLOYED = "DEPLOYED"
    REMOVING = "REMOVING"
    FAILED = "FAILED"


class VersionStage(str, Enum):
    PENDING = "AWSPENDING"
    CURRENT = "AWSCURRENT"
    PREVIOUS = "AWSPREVIOUS"


class RotationStep(str, Enum):
    CREATE_SECRET = "createSecret"
    SET_SECRET = "setSecret"
    TEST_SECRET = "testSecret"
    FINISH_SECRET = "finishSecret"


class RotationRule(BaseModel):
    """How often the vault should invoke the rotation function."""

    automatically_after_days: int | None = Field(default=30, ge=1, le=1000)
    schedule_expression: str | None = Field(
        default=None, description="e.g. 'rate(10 days)' or a cron() expression"
    )
    duration: str | None = Field(default=None, description="Rotation window, e.g. '2h'")

    @model_validator(mode="after")
    def require_schedule(self) -> RotationRule:
        if self.automatically_after_days is None and self.schedule_expression is None:
            raise ValueError("Either automatically_after_days or schedule_expression is required")
        return self

    def to_aws(self) -> dict[str, Any]:
        """Render as the vault's ``RotationRules`` structure."""
        rules: dict[str, Any] = {}
        if self.schedule_expression:
            rules["ScheduleExpression"] = self.schedule_expression
        else:
            rules["AutomaticallyAfterDays"] = self.automatically_after_days
        if self.duration:
            rules["Duration"] = self.duration
        return rules


class BackendScopeConfig(BaseModel):
    """Per-tenant vault credentials, region and rotation-function state."""

    model_config = ConfigDict(validate_assignment=True)

    scope_id: str
    name: str = ""
    access_key_id: str | None = None
    secret_access_key: str | None = None
    region: str | None = None
    rotation_function_ref: str | None = None
    deployment_status: DeploymentStatus = DeploymentStatus.IDLE
    deployment_message: str | None = None

    @property
    def has_vault_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def vault_config(self, region: str | None = None) -> AWSConfig:
        """Build the client config for this scope, optionally for another region."""
        return AWSConfig(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=region or self.region,
        )


class Secret(BaseModel):
    """Local metadata for a secret. Never carries the plaintext value."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    scope_id: str
    name: str = Field(min_length=1, max_length=512)
    type: SecretType
    storage_mode: StorageMode = StorageMode.REMOTE
    remote_ref: str | None = None
    encrypted_value: str | None = Field(default=None, repr=False)
    region: str | None = None
    description: str | None = None
    rotation_enabled: bool = False
    rotation_function_ref: str | None = None
    rotation_rule: RotationRule | None = None
    last_rotated_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_storage(self) -> Secret:
        if self.storage_mode is StorageMode.REMOTE and not self.remote_ref:
            raise ValueError("remote_ref is required for REMOTE secrets")
        if self.storage_mode is StorageMode.LOCAL and self.remote_ref:
            raise ValueError("remote_ref must be empty for LOCAL secrets")
        return self


class SecretWithValue(Secret):
    """Metadata merged with the decoded current value."""

    secret_value: dict[str, Any] = Field(default_factory=dict, repr=False)


class VersionedValue(BaseModel):
    """One version of a secret as returned by the vault."""

    payload: dict[str, Any] = Field(default_factory=dict, repr=False)
    version_id: str | None = None
    stages: list[str] = Field(default_factory=list)


class RotationEvent(BaseModel):
    """Invocation payload the vault sends to the rotation function."""

    model_config = ConfigDict(populate_by_name=True)

    step: RotationStep = Field(alias="Step")
    secret_id: str = Field(alias="SecretId")
    client_request_token: str = Field(alias="ClientRequestToken")


class TransitionAccepted(BaseModel):
    """Returned when a deployment or removal has been started."""

    scope_id: str
    status: DeploymentStatus
    message: str


__all__ = [
    "SecretType",
    "StorageMode",
    "DeploymentStatus",
    "VersionStage",
    "RotationStep",
    "RotationRule",
    "BackendScopeConfig",
    "Secret",
    "SecretWithValue",
    "VersionedValue",
    "RotationEvent",
    "TransitionAccepted",
    "utcnow",
]
