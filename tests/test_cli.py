from unittest.mock import patch, MagicMock
import json
import pytest

from credvault.base.exceptions import VaultSecretNotFoundError
from credvault.base.models import VersionedValue
from credvault.base.vault import SecretVaultBlueprint
from credvault.cli import main
from credvault.deployment import ProvisioningResult

ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:db-1-AbCdEf"
FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:credvault-p1-rotation"


@pytest.fixture
def vault():
    client = MagicMock(spec=SecretVaultBlueprint)
    client.describe_secret.side_effect = VaultSecretNotFoundError("not found")
    client.create_secret.return_value = ARN
    with patch("credvault.cli.scope_vault_client", return_value=client) as mock_factory:
        yield mock_factory, client


@pytest.fixture
def run(tmp_path, capsys):
    """Invoke the CLI against a temporary state dir and return parsed stdout."""

    def invoke(*args):
        main(["--state-dir", str(tmp_path), *args])
        out = capsys.readouterr().out
        return json.loads(out) if out.strip() else None

    return invoke


def _add_scope(run):
    return run(
        "scope", "add", "p1", "--name", "Project One",
        "--access-key-id", "AKIA", "--secret-access-key", "secret", "--region", "us-east-1",
    )


class TestScope:
    def test_add_then_show(self, run, tmp_path):
        added = _add_scope(run)
        assert added["scope_id"] == "p1"

        shown = run("scope", "show", "p1")
        assert shown["region"] == "us-east-1"
        assert shown["deployment_status"] == "IDLE"
        assert json.loads((tmp_path / "scopes.json").read_text())[0]["scope_id"] == "p1"

    def test_show_unknown(self, run, capsys):
        with pytest.raises(SystemExit):
            run("scope", "show", "nope")
        assert "Scope not found" in capsys.readouterr().err


class TestSecrets:
    def test_create_list_get(self, run, vault):
        _add_scope(run)
        created = run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", '{"token": "t"}')
        assert created["remote_ref"] == ARN
        assert "secret_value" not in created

        listed = run("list", "p1")
        assert [s["name"] for s in listed] == ["db-1"]

        _, client = vault
        client.get_current_value.return_value = VersionedValue(payload={"token": "t"}, version_id="v1")
        fetched = run("get", created["id"], "--with-value")
        assert fetched["secret_value"] == {"token": "t"}
        client.get_current_value.assert_called_once_with(ARN)

    def test_update_description(self, run, vault):
        _add_scope(run)
        created = run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", "{}")
        updated = run("update", created["id"], "--description", "rotated by ops")
        assert updated["description"] == "rotated by ops"
        _, client = vault
        client.update_secret_value.assert_not_called()

    def test_force_delete(self, run, vault):
        _add_scope(run)
        created = run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", "{}")
        run("delete", created["id"], "--force")

        _, client = vault
        client.delete_secret.assert_called_once_with(ARN, force=True, recovery_window_days=30)
        assert run("list", "p1") == []

    def test_rotate_not_enabled(self, run, vault, capsys):
        _add_scope(run)
        created = run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", "{}")
        with pytest.raises(SystemExit):
            run("rotate", created["id"])
        assert "does not have automatic rotation enabled" in capsys.readouterr().err

    def test_invalid_value_json(self, run, vault, capsys):
        _add_scope(run)
        with pytest.raises(SystemExit):
            run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", "{not json")
        assert "Invalid --value JSON" in capsys.readouterr().err
        _, client = vault
        client.create_secret.assert_not_called()

    def test_value_must_be_object(self, run, vault):
        _add_scope(run)
        with pytest.raises(SystemExit):
            run("create", "p1", "db-1", "--type", "GENERIC_SECRET", "--value", "[1, 2]")

    def test_unknown_type_rejected_by_parser(self, run):
        with pytest.raises(SystemExit):
            run("create", "p1", "db-1", "--type", "NOPE", "--value", "{}")


class TestDeploy:
    @patch("credvault.deployment.ProvisioningRunner")
    def test_deploy_waits_and_persists_function(self, mock_runner_cls, run, tmp_path):
        mock_runner_cls.return_value.run.return_value = ProvisioningResult(
            f'lambdaArn: "{FUNCTION_ARN}"\n', ""
        )
        _add_scope(run)

        scope = run("deploy", "p1")
        assert scope["deployment_status"] == "DEPLOYED"
        assert scope["rotation_function_ref"] == FUNCTION_ARN

        stored = json.loads((tmp_path / "scopes.json").read_text())[0]
        assert stored["rotation_function_ref"] == FUNCTION_ARN

    def test_deploy_without_credentials(self, run, capsys):
        run("scope", "add", "p1")
        with pytest.raises(SystemExit):
            run("deploy", "p1")
        assert "does not have vault credentials configured" in capsys.readouterr().err
