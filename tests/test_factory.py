from unittest.mock import patch, MagicMock
import pytest

from credvault.factory import universal_factory, scope_vault_client
from credvault.base import SecretVaultBlueprint, IdentityProviderBlueprint
from credvault.base.exceptions import InvalidConfigurationError
from credvault.base.models import BackendScopeConfig


class TestUniversalFactory:
    @patch("credvault.aws.secrets_manager.boto3")
    def test_aws_vault(self, mock_boto):
        mock_boto.client.return_value = MagicMock()
        result = universal_factory("vault", "aws", {
            "aws_access_key_id": "k",
            "aws_secret_access_key": "s",
            "region_name": "us-east-1",
        })
        assert isinstance(result, SecretVaultBlueprint)

    @patch("credvault.aws.iam.boto3")
    def test_aws_identity(self, mock_boto):
        mock_boto.client.return_value = MagicMock()
        result = universal_factory("identity", "aws", {"region_name": "us-east-1"})
        assert isinstance(result, IdentityProviderBlueprint)

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            universal_factory("vault", "azure", {})

    def test_unsupported_service(self):
        with pytest.raises(ValueError, match="Unsupported service"):
            universal_factory("database", "aws", {})


class TestScopeVaultClient:
    @patch("credvault.aws.secrets_manager.boto3")
    def test_uses_scope_credentials(self, mock_boto):
        scope = BackendScopeConfig(
            scope_id="p1", access_key_id="AKIA", secret_access_key="s", region="eu-west-1"
        )
        scope_vault_client(scope, "us-east-2")
        mock_boto.client.assert_called_once_with(
            "secretsmanager",
            aws_access_key_id="AKIA",
            aws_secret_access_key="s",
            region_name="us-east-2",
        )

    @patch("credvault.aws.secrets_manager.boto3")
    def test_new_client_each_call(self, mock_boto):
        mock_boto.client.side_effect = lambda *a, **kw: MagicMock()
        scope = BackendScopeConfig(scope_id="p1", access_key_id="AKIA", secret_access_key="s")
        assert scope_vault_client(scope) is not scope_vault_client(scope)

    def test_missing_credentials(self):
        with pytest.raises(InvalidConfigurationError):
            scope_vault_client(BackendScopeConfig(scope_id="p1", region="us-east-1"))
