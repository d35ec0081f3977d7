"""
Rotation-function provisioning state machine.

``deploy`` and ``remove`` validate synchronously, persist the transient
status (DEPLOYING / REMOVING) and hand the provisioning work to a thread
pool; callers poll the scope's ``deployment_status`` afterwards.

Mutual exclusion is per scope and held in process memory, so it only
holds while a single process manages a given scope.
"""

from __future__ import annotations

import os
import re
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from credvault.base.config import DeploymentSettings
from credvault.base.exceptions import (
    CredvaultError,
    DeploymentInProgressError,
    InvalidConfigurationError,
    InvalidTransitionError,
    ProvisioningCommandError,
    ProvisioningError,
)
from credvault.base.logger import cv_logger
from credvault.base.models import BackendScopeConfig, DeploymentStatus, TransitionAccepted
from credvault.base.store import ScopeConfigStore

# Output of a run that found the state lock of an earlier, interrupted run.
LOCK_SENTINELS = ("Locked", "sst unlock")

_ARN_QUOTED = re.compile(r'lambdaArn:\s+"(arn:aws:lambda:[^"]+)"')
_ARN_BARE = re.compile(r"lambdaArn:\s+(arn:aws:lambda:[^\"\s]+)")

# Source statuses allowed for each transition.
_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.DEPLOYING: frozenset({DeploymentStatus.IDLE, DeploymentStatus.FAILED}),
    DeploymentStatus.REMOVING: frozenset(
        {DeploymentStatus.IDLE, DeploymentStatus.DEPLOYED, DeploymentStatus.FAILED}
    ),
}
_IN_FLIGHT = frozenset({DeploymentStatus.DEPLOYING, DeploymentStatus.REMOVING})


@dataclass
class ProvisioningResult:
    stdout: str
    stderr: str


class ProvisioningRunner:
    """Runs provisioning commands as subprocesses and captures their output."""

    def __init__(self, timeout: float = 900.0) -> None:
        self.timeout = timeout

    def run(self, command: list[str], env: dict[str, str], cwd: str) -> ProvisioningResult:
        """Run *command* to completion.

        Raises:
            ProvisioningCommandError: Non-zero exit, timeout or missing executable.
        """
        try:
            proc = subprocess.run(
                command,
                env=env,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProvisioningCommandError(
                f"{' '.join(command)} timed out after {self.timeout}s",
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
            ) from e
        except OSError as e:
            raise ProvisioningCommandError(f"{' '.join(command)} could not be started: {e}") from e
        if proc.returncode != 0:
            raise ProvisioningCommandError(
                f"{' '.join(command)} exited with status {proc.returncode}",
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        return ProvisioningResult(stdout=proc.stdout, stderr=proc.stderr)


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    return value.decode(errors="replace") if isinstance(value, bytes) else value


def parse_function_ref(stdout: str) -> str:
    """Extract the rotation function ARN from provisioning output.

    Raises:
        ProvisioningError: If no ARN is present.
    """
    match = _ARN_QUOTED.search(stdout) or _ARN_BARE.search(stdout)
    if not match:
        raise ProvisioningError("Deployment completed but the function ARN could not be parsed from output")
    return match.group(1).strip()


def is_lock_error(error: ProvisioningCommandError) -> bool:
    output = f"{error.stdout}\n{error.stderr}"
    return all(sentinel in output for sentinel in LOCK_SENTINELS)


class DeploymentStateMachine:
    """Provisions and removes a scope's rotation function in the background.

    Args:
        scopes: Scope store holding status and function reference.
        runner: Command runner; defaults to a subprocess runner.
        settings: Infra path and command settings.
        executor: Pool running background transitions.
    """

    def __init__(
        self,
        scopes: ScopeConfigStore,
        runner: ProvisioningRunner | None = None,
        settings: DeploymentSettings | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.scopes = scopes
        self.settings = settings or DeploymentSettings()
        self.runner = runner or ProvisioningRunner(timeout=self.settings.command_timeout)
        self.executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="credvault-deploy"
        )
        self._active: set[str] = set()
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    # --- public API ---

    def deploy(self, scope_id: str) -> TransitionAccepted:
        """Start provisioning the rotation function for *scope_id*.

        Raises:
            DeploymentInProgressError: A transition is already running.
            ScopeNotFoundError: The scope does not exist.
            InvalidConfigurationError: Vault credentials or region missing.
            InvalidTransitionError: Current status does not allow deploying.
        """
        return self._start(scope_id, DeploymentStatus.DEPLOYING, self._deploy, "Deployment")

    def remove(self, scope_id: str) -> TransitionAccepted:
        """Start tearing down the rotation function for *scope_id*."""
        return self._start(scope_id, DeploymentStatus.REMOVING, self._remove, "Removal")

    def is_active(self, scope_id: str) -> bool:
        with self._lock:
            return scope_id in self._active

    def join(self, scope_id: str, timeout: float | None = None) -> None:
        """Block until the background transition of *scope_id* (if any) ends."""
        with self._lock:
            future = self._futures.get(scope_id)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    # --- transition plumbing ---

    def _acquire(self, scope_id: str) -> None:
        with self._lock:
            if scope_id in self._active:
                raise DeploymentInProgressError("Deployment/removal already in progress")
            self._active.add(scope_id)

    def _release(self, scope_id: str) -> None:
        with self._lock:
            self._active.discard(scope_id)

    def _start(
        self,
        scope_id: str,
        target: DeploymentStatus,
        work: Callable[[BackendScopeConfig], DeploymentStatus],
        label: str,
    ) -> TransitionAccepted:
        self._acquire(scope_id)
        try:
            scope = self.scopes.get(scope_id)
            self._check_transition(scope, target)
            if target is DeploymentStatus.DEPLOYING:
                self._check_credentials(scope)
            self._set_status(scope_id, target)
        except Exception:
            self._release(scope_id)
            raise

        # The worker's _release blocks on this lock until the future is recorded.
        with self._lock:
            try:
                self._futures[scope_id] = self.executor.submit(self._run, scope, work, label)
            except RuntimeError:
                self._active.discard(scope_id)
                raise
        cv_logger.info(f"{label} started", scope_id=scope_id, operation=target.value.lower())
        return TransitionAccepted(
            scope_id=scope_id,
            status=target,
            message=f"{label} started in background. Please check status shortly.",
        )

    def _check_transition(self, scope: BackendScopeConfig, target: DeploymentStatus) -> None:
        status = scope.deployment_status
        if status in _TRANSITIONS[target]:
            return
        if status in _IN_FLIGHT:
            # No in-process transition holds the guard, so the status was left
            # behind by a run that never finished.
            cv_logger.warning(
                f"Overriding stale {status.value} status",
                scope_id=scope.scope_id,
                operation=target.value.lower(),
            )
            return
        raise InvalidTransitionError(f"Cannot go from {status.value} to {target.value}")

    @staticmethod
    def _check_credentials(scope: BackendScopeConfig) -> None:
        if not scope.has_vault_credentials or not scope.region:
            raise InvalidConfigurationError(
                f"Scope {scope.name or scope.scope_id} does not have vault credentials configured"
            )

    def _run(
        self,
        scope: BackendScopeConfig,
        work: Callable[[BackendScopeConfig], DeploymentStatus],
        label: str,
    ) -> None:
        try:
            final = work(scope)
            self._set_status(scope.scope_id, final, f"{label} successful")
            cv_logger.info(f"{label} finished", scope_id=scope.scope_id, operation=final.value.lower())
        except Exception as e:
            message = self._failure_message(label, e)
            self._set_status(scope.scope_id, DeploymentStatus.FAILED, message)
            cv_logger.error(message, scope_id=scope.scope_id, operation=label.lower())
        finally:
            self._release(scope.scope_id)

    def _set_status(self, scope_id: str, status: DeploymentStatus, message: str | None = None) -> None:
        try:
            self.scopes.update(scope_id, deployment_status=status, deployment_message=message)
        except CredvaultError as e:
            cv_logger.error(
                f"Could not persist status {status.value}: {e}",
                scope_id=scope_id,
                operation="set_status",
            )
            raise

    def _failure_message(self, label: str, error: Exception) -> str:
        tail = self.settings.output_tail
        message = f"{label} failed. Message: {error}."
        if isinstance(error, ProvisioningCommandError):
            if error.stderr:
                message += f"\nStderr: {error.stderr[-tail:]}"
            if error.stdout:
                message += f"\nStdout: {error.stdout[-tail:]}"
        return message

    # --- provisioning work ---

    def _stage(self, scope_id: str) -> str:
        return f"{self.settings.stage_prefix}{scope_id}"

    def _env(self, scope: BackendScopeConfig) -> dict[str, str]:
        env = dict(os.environ)
        for key, value in (
            ("AWS_ACCESS_KEY_ID", scope.access_key_id),
            ("AWS_SECRET_ACCESS_KEY", scope.secret_access_key),
            ("AWS_REGION", scope.region),
        ):
            if value:
                env[key] = value
        return env

    def _run_with_unlock(self, command: list[str], scope: BackendScopeConfig) -> ProvisioningResult:
        """Run *command*; on a stale-lock failure unlock once and retry once."""
        env, cwd = self._env(scope), str(self.settings.infra_path)
        try:
            return self.runner.run(command, env, cwd)
        except ProvisioningCommandError as e:
            if not is_lock_error(e):
                raise
            cv_logger.warning("Provisioning state locked, unlocking and retrying", scope_id=scope.scope_id)
            self.runner.run(["npx", "sst", "unlock", "--stage", self._stage(scope.scope_id)], env, cwd)
            return self.runner.run(command, env, cwd)

    def _deploy(self, scope: BackendScopeConfig) -> DeploymentStatus:
        self.runner.run(["npm", "install"], self._env(scope), str(self.settings.infra_path))
        result = self._run_with_unlock(
            ["npx", "sst", "deploy", "--stage", self._stage(scope.scope_id)], scope
        )
        function_ref = parse_function_ref(result.stdout)
        self.scopes.update(scope.scope_id, rotation_function_ref=function_ref)
        cv_logger.info(f"Rotation function deployed: {function_ref}", scope_id=scope.scope_id, operation="deploy")
        return DeploymentStatus.DEPLOYED

    def _remove(self, scope: BackendScopeConfig) -> DeploymentStatus:
        self._run_with_unlock(["npx", "sst", "remove", "--stage", self._stage(scope.scope_id)], scope)
        self.scopes.update(scope.scope_id, rotation_function_ref=None)
        return DeploymentStatus.IDLE
