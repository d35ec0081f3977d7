"""
Credvault exception hierarchy.

Every failure mode has a top-level category that inherits from
:class:`CredvaultError` (not-found, conflict, invalid configuration,
upstream failure, provisioning failure) and specific sub-exceptions
for the individual cases.
"""


# ── Base ──────────────────────────────────────────────────────────────
class CredvaultError(Exception):
    """Root exception for all Credvault errors."""


# ── Not found ─────────────────────────────────────────────────────────
class NotFoundError(CredvaultError):
    """Base exception for missing secrets or scopes."""


class SecretNotFoundError(NotFoundError):
    """Secret metadata record not found."""


class ScopeNotFoundError(NotFoundError):
    """Backend scope not found."""


# ── Conflict ──────────────────────────────────────────────────────────
class ConflictError(CredvaultError):
    """Base exception for conflicting state."""


class SecretAlreadyExistsError(ConflictError):
    """A secret with the same name already exists in the scope."""


class UpstreamSecretExistsError(ConflictError):
    """The vault already holds a secret with that name."""


class DeploymentInProgressError(ConflictError):
    """A deployment or removal is already running for the scope."""


# ── Configuration ─────────────────────────────────────────────────────
class InvalidConfigurationError(CredvaultError):
    """Request or scope configuration does not allow the operation."""


class RotationNotEnabledError(InvalidConfigurationError):
    """Rotation requested for a secret without rotation enabled."""


class InvalidTransitionError(InvalidConfigurationError):
    """Deployment status does not allow the requested transition."""


# ── Upstream ──────────────────────────────────────────────────────────
class UpstreamError(CredvaultError):
    """Base exception for vault or target-system failures."""


class VaultError(UpstreamError):
    """Secret vault call failed."""


class VaultSecretNotFoundError(VaultError):
    """Secret (or requested version) not found in the vault."""


class VaultSecretExistsError(VaultError):
    """Secret (or version) already exists in the vault."""


class RotationConfigurationError(UpstreamError):
    """Enabling rotation on the vault failed."""


class IdentityError(UpstreamError):
    """Identity provider call failed."""


class TargetSystemError(UpstreamError):
    """Database or document store rejected the credential change or check."""


class RotationStateError(UpstreamError):
    """Secret versions are not in a state the rotation step can act on."""


# ── Provisioning ──────────────────────────────────────────────────────
class ProvisioningError(CredvaultError):
    """Base exception for rotation-function provisioning failures."""


class ProvisioningCommandError(ProvisioningError):
    """Provisioning command exited unsuccessfully."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


# ── Local store ───────────────────────────────────────────────────────
class StoreError(CredvaultError):
    """Base exception for local persistence failures."""


class DuplicateRecordError(StoreError):
    """Unique key constraint violated on insert."""


class RecordNotFoundError(StoreError):
    """Record to update or delete does not exist."""
