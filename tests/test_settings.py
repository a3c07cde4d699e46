"""Tests for deployment settings and environment resolution."""

import os
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from n8n_deploy.config import settings as settings_module
from n8n_deploy.config.settings import (
    DeploymentSettings,
    create_deployment_environment,
    get_settings,
    is_valid_email,
    is_valid_hostname,
    is_valid_instance_type,
    reset_settings,
    update_settings,
)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for key in list(os.environ):
        if key.startswith("N8N_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


class TestDeploymentSettings:
    """Test suite for DeploymentSettings defaults and validation."""

    def test_defaults(self):
        settings = DeploymentSettings(_env_file=None)

        assert settings.domain_name == "n8n.keysely.com"
        assert settings.instance_type == "t3.micro"
        assert settings.allowed_ssh_cidr == "0.0.0.0/0"
        assert settings.create_key_pair is True
        assert settings.use_default_vpc is True
        assert settings.stack_name == "N8nStack"
        assert settings.resolved_acme_email == "admin@n8n.keysely.com"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("N8N_DOMAIN_NAME", "Automation.Example.com ")
        monkeypatch.setenv("N8N_INSTANCE_TYPE", "t3.small")
        monkeypatch.setenv("N8N_ALLOWED_SSH_CIDR", "198.51.100.0/24")
        monkeypatch.setenv("N8N_CREATE_KEY_PAIR", "false")

        settings = DeploymentSettings(_env_file=None)

        assert settings.domain_name == "automation.example.com"
        assert settings.instance_type == "t3.small"
        assert settings.allowed_ssh_cidr == "198.51.100.0/24"
        assert settings.create_key_pair is False

    @pytest.mark.parametrize(
        "field, value",
        [
            ("domain_name", "no spaces allowed.com x"),
            ("instance_type", "T3-MICRO"),
            ("allowed_ssh_cidr", "300.0.0.0/8"),
            ("acme_email", "not-an-email"),
            ("acme_email", "`id`"),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            DeploymentSettings(_env_file=None, **{field: value})

    def test_stack_inputs(self):
        settings = DeploymentSettings(
            _env_file=None,
            domain_name="n8n.example.com",
            acme_email="ops@example.com",
        )

        assert settings.get_stack_inputs() == {
            "domain_name": "n8n.example.com",
            "instance_type": "t3.micro",
            "allowed_ssh_cidr": "0.0.0.0/0",
            "acme_email": "ops@example.com",
            "create_key_pair": True,
        }


class TestValidators:
    def test_hostnames(self):
        assert is_valid_hostname("n8n.keysely.com")
        assert not is_valid_hostname("-bad.example.com")
        assert not is_valid_hostname("example")

    def test_instance_types(self):
        assert is_valid_instance_type("t3.micro")
        assert is_valid_instance_type("m7i-flex.large")
        assert not is_valid_instance_type("t3")

    def test_emails(self):
        assert is_valid_email("ops@example.com")
        assert not is_valid_email("ops")
        assert not is_valid_email("$(reboot)")


class TestSettingsSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_update_and_reset(self):
        updated = update_settings(_env_file=None, stack_name="OtherStack")

        assert get_settings() is updated
        assert get_settings().stack_name == "OtherStack"

        reset_settings()
        assert get_settings() is not updated


class TestDeploymentEnvironment:
    """Test suite for account and region resolution."""

    def test_from_environment_variables(self, monkeypatch):
        monkeypatch.setenv("CDK_DEFAULT_ACCOUNT", "111122223333")
        monkeypatch.setenv("CDK_DEFAULT_REGION", "eu-west-1")

        env = create_deployment_environment(DeploymentSettings(_env_file=None))

        assert env.account == "111122223333"
        assert env.region == "eu-west-1"

    def test_default_region(self, monkeypatch):
        monkeypatch.delenv("CDK_DEFAULT_REGION", raising=False)

        env = create_deployment_environment(DeploymentSettings(_env_file=None))

        assert env.region == settings_module.DEFAULT_REGION

    @patch("boto3.Session")
    def test_from_profile(self, mock_session_cls):
        session = MagicMock()
        session.region_name = "us-east-2"
        session.client.return_value.get_caller_identity.return_value = {"Account": "444455556666"}
        mock_session_cls.return_value = session

        env = create_deployment_environment(
            DeploymentSettings(_env_file=None, aws_profile="n8n-admin")
        )

        mock_session_cls.assert_called_once_with(profile_name="n8n-admin")
        session.client.assert_called_once_with("sts")
        assert env.account == "444455556666"
        assert env.region == "us-east-2"
