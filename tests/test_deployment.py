"""Tests for the rotation-function provisioning state machine."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch, MagicMock
import subprocess
import threading
import pytest

from credvault.base.config import DeploymentSettings
from credvault.base.exceptions import (
    DeploymentInProgressError,
    InvalidConfigurationError,
    InvalidTransitionError,
    ProvisioningCommandError,
    ProvisioningError,
    ScopeNotFoundError,
)
from credvault.base.models import BackendScopeConfig, DeploymentStatus
from credvault.base.store import InMemoryScopeConfigStore
from credvault.deployment import (
    DeploymentStateMachine,
    ProvisioningResult,
    ProvisioningRunner,
    is_lock_error,
    parse_function_ref,
)

FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:credvault-p1-rotation"
DEPLOY_OUTPUT = f'✓  Complete\n   lambdaArn: "{FUNCTION_ARN}"\n'


class FakeRunner:
    """Records commands; responses are keyed by the command's first three words."""

    def __init__(self, responses=None, gate=None):
        self.responses = responses or {}
        self.gate = gate
        self.calls = []
        self.envs = []

    def run(self, command, env, cwd):
        self.calls.append(command)
        self.envs.append(env)
        if self.gate is not None and command[0] == "npm":
            self.gate.wait(5)
        response = self.responses.get(" ".join(command[:3]), ProvisioningResult("", ""))
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _scope(**overrides):
    fields = {
        "scope_id": "p1",
        "name": "Project One",
        "access_key_id": "AKIA",
        "secret_access_key": "secret",
        "region": "us-east-1",
    }
    fields.update(overrides)
    return BackendScopeConfig(**fields)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=True)


def _machine(executor, runner, *scopes):
    store = InMemoryScopeConfigStore(list(scopes) or [_scope()])
    machine = DeploymentStateMachine(
        store,
        runner=runner,
        settings=DeploymentSettings(infra_path="/srv/infra", stage_prefix="cv-"),
        executor=executor,
    )
    return machine, store


# --- deploy ---


class TestDeploy:
    def test_success(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")})
        machine, store = _machine(executor, runner)

        accepted = machine.deploy("p1")
        assert accepted.status is DeploymentStatus.DEPLOYING
        machine.join("p1", timeout=5)

        scope = store.get("p1")
        assert scope.deployment_status is DeploymentStatus.DEPLOYED
        assert scope.deployment_message == "Deployment successful"
        assert scope.rotation_function_ref == FUNCTION_ARN
        assert runner.calls == [["npm", "install"], ["npx", "sst", "deploy", "--stage", "cv-p1"]]
        assert runner.envs[1]["AWS_ACCESS_KEY_ID"] == "AKIA"
        assert runner.envs[1]["AWS_REGION"] == "us-east-1"
        assert not machine.is_active("p1")

    def test_concurrent_deploy_rejected(self, executor):
        gate = threading.Event()
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")}, gate=gate)
        machine, store = _machine(executor, runner)

        machine.deploy("p1")
        with pytest.raises(DeploymentInProgressError):
            machine.deploy("p1")
        with pytest.raises(DeploymentInProgressError):
            machine.remove("p1")
        assert store.get("p1").deployment_status is DeploymentStatus.DEPLOYING

        gate.set()
        machine.join("p1", timeout=5)
        assert store.get("p1").deployment_status is DeploymentStatus.DEPLOYED
        assert runner.calls.count(["npm", "install"]) == 1

    def test_simultaneous_callers_one_accepted(self, executor):
        gate = threading.Event()
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")}, gate=gate)
        machine, store = _machine(executor, runner)
        barrier = threading.Barrier(2)
        outcomes = []

        def call():
            barrier.wait(5)
            try:
                machine.deploy("p1")
                outcomes.append("accepted")
            except DeploymentInProgressError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=call) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        gate.set()
        machine.join("p1", timeout=5)

        assert sorted(outcomes) == ["accepted", "conflict"]
        assert store.get("p1").deployment_status in (DeploymentStatus.DEPLOYED, DeploymentStatus.FAILED)

    def test_future_recorded_before_worker_releases(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")})
        machine, _ = _machine(executor, runner)
        seen = []
        release = machine._release

        def recording_release(scope_id):
            with machine._lock:
                seen.append(machine._futures.get(scope_id))
            release(scope_id)

        machine._release = recording_release
        machine.deploy("p1")
        machine.join("p1", timeout=5)

        assert len(seen) == 1
        assert seen[0] is not None
        assert seen[0] is machine._futures["p1"]

    def test_back_to_back_join_waits_for_latest(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")})
        machine, store = _machine(executor, runner)
        machine.deploy("p1")
        machine.join("p1", timeout=5)

        machine.remove("p1")
        machine.join("p1", timeout=5)
        assert store.get("p1").deployment_status is DeploymentStatus.IDLE
        assert store.get("p1").rotation_function_ref is None

    def test_lock_error_unlocks_and_retries_once(self, executor):
        locked = ProvisioningCommandError(
            "exited with status 1",
            stdout="Error: Locked\nA concurrent update was detected. Run `sst unlock` to remove the lock.",
        )
        runner = FakeRunner({"npx sst deploy": [locked, ProvisioningResult(DEPLOY_OUTPUT, "")]})
        machine, store = _machine(executor, runner)

        machine.deploy("p1")
        machine.join("p1", timeout=5)

        assert runner.calls[1:] == [
            ["npx", "sst", "deploy", "--stage", "cv-p1"],
            ["npx", "sst", "unlock", "--stage", "cv-p1"],
            ["npx", "sst", "deploy", "--stage", "cv-p1"],
        ]
        assert store.get("p1").deployment_status is DeploymentStatus.DEPLOYED

    def test_lock_error_twice_fails(self, executor):
        locked = ProvisioningCommandError("exit 1", stderr="Locked: run sst unlock")
        runner = FakeRunner({"npx sst deploy": [locked, locked]})
        machine, store = _machine(executor, runner)

        machine.deploy("p1")
        machine.join("p1", timeout=5)
        assert runner.calls.count(["npx", "sst", "deploy", "--stage", "cv-p1"]) == 2
        assert store.get("p1").deployment_status is DeploymentStatus.FAILED

    def test_command_failure_records_output(self, executor):
        error = ProvisioningCommandError("exited with status 1", stdout="building", stderr="AccessDenied")
        runner = FakeRunner({"npx sst deploy": error})
        machine, store = _machine(executor, runner)

        machine.deploy("p1")
        machine.join("p1", timeout=5)

        scope = store.get("p1")
        assert scope.deployment_status is DeploymentStatus.FAILED
        assert scope.deployment_message.startswith("Deployment failed. Message:")
        assert "Stderr: AccessDenied" in scope.deployment_message
        assert "Stdout: building" in scope.deployment_message
        assert ["npx", "sst", "unlock", "--stage", "cv-p1"] not in runner.calls
        assert not machine.is_active("p1")

    def test_unparsable_output_fails(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult("Complete\n", "")})
        machine, store = _machine(executor, runner)

        machine.deploy("p1")
        machine.join("p1", timeout=5)

        scope = store.get("p1")
        assert scope.deployment_status is DeploymentStatus.FAILED
        assert "could not be parsed" in scope.deployment_message
        assert scope.rotation_function_ref is None

    def test_missing_credentials(self, executor):
        runner = FakeRunner()
        machine, store = _machine(executor, runner, _scope(secret_access_key=None))
        with pytest.raises(InvalidConfigurationError):
            machine.deploy("p1")
        assert store.get("p1").deployment_status is DeploymentStatus.IDLE
        assert not machine.is_active("p1")
        assert runner.calls == []

    def test_missing_region(self, executor):
        machine, _ = _machine(executor, FakeRunner(), _scope(region=None))
        with pytest.raises(InvalidConfigurationError):
            machine.deploy("p1")

    def test_unknown_scope(self, executor):
        machine, _ = _machine(executor, FakeRunner())
        with pytest.raises(ScopeNotFoundError):
            machine.deploy("nope")
        assert not machine.is_active("nope")

    def test_already_deployed(self, executor):
        machine, _ = _machine(
            executor, FakeRunner(), _scope(deployment_status=DeploymentStatus.DEPLOYED)
        )
        with pytest.raises(InvalidTransitionError):
            machine.deploy("p1")
        assert not machine.is_active("p1")

    def test_retry_after_failure(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")})
        machine, store = _machine(
            executor, runner, _scope(deployment_status=DeploymentStatus.FAILED)
        )
        machine.deploy("p1")
        machine.join("p1", timeout=5)
        assert store.get("p1").deployment_status is DeploymentStatus.DEPLOYED

    def test_stale_in_flight_status_overridden(self, executor):
        runner = FakeRunner({"npx sst deploy": ProvisioningResult(DEPLOY_OUTPUT, "")})
        machine, store = _machine(
            executor, runner, _scope(deployment_status=DeploymentStatus.DEPLOYING)
        )
        machine.deploy("p1")
        machine.join("p1", timeout=5)
        assert store.get("p1").deployment_status is DeploymentStatus.DEPLOYED


# --- remove ---


class TestRemove:
    def test_success(self, executor):
        runner = FakeRunner()
        machine, store = _machine(
            executor,
            runner,
            _scope(deployment_status=DeploymentStatus.DEPLOYED, rotation_function_ref=FUNCTION_ARN),
        )
        accepted = machine.remove("p1")
        assert accepted.status is DeploymentStatus.REMOVING
        machine.join("p1", timeout=5)

        scope = store.get("p1")
        assert scope.deployment_status is DeploymentStatus.IDLE
        assert scope.rotation_function_ref is None
        assert scope.deployment_message == "Removal successful"
        assert runner.calls == [["npx", "sst", "remove", "--stage", "cv-p1"]]

    def test_failure_keeps_ref(self, executor):
        runner = FakeRunner({"npx sst remove": ProvisioningCommandError("exit 1", stderr="boom")})
        machine, store = _machine(
            executor,
            runner,
            _scope(deployment_status=DeploymentStatus.DEPLOYED, rotation_function_ref=FUNCTION_ARN),
        )
        machine.remove("p1")
        machine.join("p1", timeout=5)

        scope = store.get("p1")
        assert scope.deployment_status is DeploymentStatus.FAILED
        assert scope.deployment_message.startswith("Removal failed.")
        assert scope.rotation_function_ref == FUNCTION_ARN


# --- helpers ---


class TestParseFunctionRef:
    def test_quoted(self):
        assert parse_function_ref(DEPLOY_OUTPUT) == FUNCTION_ARN

    def test_bare(self):
        assert parse_function_ref(f"outputs:\n  lambdaArn: {FUNCTION_ARN}\n") == FUNCTION_ARN

    def test_missing(self):
        with pytest.raises(ProvisioningError):
            parse_function_ref("lambdaArn: pending")


class TestLockDetection:
    def test_needs_both_sentinels(self):
        assert is_lock_error(ProvisioningCommandError("x", stdout="Locked", stderr="run sst unlock"))
        assert not is_lock_error(ProvisioningCommandError("x", stdout="Locked"))
        assert not is_lock_error(ProvisioningCommandError("x", stderr="sst unlock"))


class TestProvisioningRunner:
    @patch("credvault.deployment.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="out", stderr="")
        result = ProvisioningRunner(timeout=30).run(["npm", "install"], {"A": "1"}, "/srv/infra")
        assert result.stdout == "out"
        mock_run.assert_called_once_with(
            ["npm", "install"],
            env={"A": "1"},
            cwd="/srv/infra",
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )

    @patch("credvault.deployment.subprocess.run")
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = MagicMock(returncode=2, stdout="partial", stderr="denied")
        with pytest.raises(ProvisioningCommandError) as exc:
            ProvisioningRunner().run(["npx", "sst", "deploy"], {}, ".")
        assert exc.value.stderr == "denied"
        assert exc.value.stdout == "partial"

    @patch("credvault.deployment.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["npx"], 1, output=b"slow")
        with pytest.raises(ProvisioningCommandError, match="timed out") as exc:
            ProvisioningRunner(timeout=1).run(["npx"], {}, ".")
        assert exc.value.stdout == "slow"

    @patch("credvault.deployment.subprocess.run")
    def test_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError("npx")
        with pytest.raises(ProvisioningCommandError, match="could not be started"):
            ProvisioningRunner().run(["npx"], {}, ".")
