"""Configuration management for the n8n deployment.

This module provides centralized configuration using Pydantic settings with
support for environment variables, an optional ``.env`` file and defaults. It
also resolves the target AWS account and region for CDK synthesis.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
from typing import Literal, Optional

import boto3
from aws_cdk import Environment
from pydantic import EmailStr, Field, field_validator, validate_email
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-west-2"

_HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))+$"
)
_INSTANCE_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9-]*\.[a-z0-9]+$")


def is_valid_hostname(value: str) -> bool:
    """Return True when ``value`` is a fully qualified DNS host name."""
    return bool(_HOSTNAME_PATTERN.match(value))


def is_valid_instance_type(value: str) -> bool:
    """Return True when ``value`` looks like an EC2 instance type (``t3.micro``)."""
    return bool(_INSTANCE_TYPE_PATTERN.match(value))


def is_valid_email(value: str) -> bool:
    """Return True when ``value`` is an address pydantic's ``EmailStr`` accepts."""
    try:
        validate_email(value)
    except ValueError:
        return False
    return True


class DeploymentSettings(BaseSettings):
    """Deployment inputs for the n8n stack.

    Args:
        domain_name: Public host name n8n is served on.
        instance_type: EC2 instance type for the host.
        allowed_ssh_cidr: IPv4 range allowed to reach port 22.
        acme_email: Contact address for Let's Encrypt registration.
        create_key_pair: Whether to generate an SSH key pair and store its
            private key in Secrets Manager.
        use_default_vpc: Look up the account default VPC instead of creating one.
        stack_name: CloudFormation stack name.
        environment_name: Deployment environment tag value.
        aws_profile: AWS named profile used to resolve account and region.
        log_level: Application log level.

    Returns:
        A validated settings object sourced from environment variables and defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="N8N_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    domain_name: str = Field(
        default="n8n.keysely.com", description="Domain name n8n is served on"
    )

    instance_type: str = Field(
        default="t3.micro", description="EC2 instance type for the n8n host"
    )

    # Restrict this in production
    allowed_ssh_cidr: str = Field(
        default="0.0.0.0/0", description="CIDR allowed to connect over SSH"
    )

    acme_email: Optional[EmailStr] = Field(
        default=None,
        description="Let's Encrypt contact email (defaults to admin@<domain>)",
    )

    create_key_pair: bool = Field(
        default=True,
        description="Create an EC2 key pair and copy its private key to Secrets Manager",
    )

    use_default_vpc: bool = Field(
        default=True, description="Use the account default VPC"
    )

    stack_name: str = Field(default="N8nStack", description="CloudFormation stack name")

    environment_name: str = Field(default="dev", description="Deployment environment")

    aws_profile: Optional[str] = Field(
        default=None, description="AWS profile used to resolve the target account"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("domain_name")
    @classmethod
    def _validate_domain_name(cls, value: str) -> str:
        value = value.strip().lower()
        if not is_valid_hostname(value):
            raise ValueError(f"Invalid domain name: {value!r}")
        return value

    @field_validator("instance_type")
    @classmethod
    def _validate_instance_type(cls, value: str) -> str:
        if not is_valid_instance_type(value):
            raise ValueError(f"Invalid instance type: {value!r}")
        return value

    @field_validator("allowed_ssh_cidr")
    @classmethod
    def _validate_allowed_ssh_cidr(cls, value: str) -> str:
        ipaddress.IPv4Network(value, strict=False)
        return value

    @property
    def resolved_acme_email(self) -> str:
        """ACME contact email, falling back to ``admin@<domain>``."""
        return self.acme_email or f"admin@{self.domain_name}"

    def get_stack_inputs(self) -> dict:
        """Get the subset of settings consumed by the stack props."""
        return {
            "domain_name": self.domain_name,
            "instance_type": self.instance_type,
            "allowed_ssh_cidr": self.allowed_ssh_cidr,
            "acme_email": self.resolved_acme_email,
            "create_key_pair": self.create_key_pair,
        }


# Global settings instance
_settings: Optional[DeploymentSettings] = None


def get_settings() -> DeploymentSettings:
    """Get global settings instance.

    Returns:
        DeploymentSettings: Singleton settings instance.
    """
    global _settings
    if _settings is None:
        _settings = DeploymentSettings()
    return _settings


def update_settings(**kwargs) -> DeploymentSettings:
    """Replace global settings with a new instance built from ``kwargs``."""
    global _settings
    _settings = DeploymentSettings(**kwargs)
    return _settings


def reset_settings() -> None:
    """Clear the cached settings so the next ``get_settings`` re-reads the environment."""
    global _settings
    _settings = None


def create_deployment_environment(settings: DeploymentSettings) -> Environment:
    """Creates CDK Environment from configuration.

    Handles both AWS profile and direct environment variable configurations.

    Args:
        settings: Deployment settings holding the optional AWS profile.

    Returns:
        CDK Environment with account and region resolved.
    """
    if settings.aws_profile:
        session = boto3.Session(profile_name=settings.aws_profile)
        sts = session.client("sts")
        account = sts.get_caller_identity()["Account"]
        logger.info(
            "Resolved deployment account from profile %s: %s",
            settings.aws_profile,
            account,
        )
        return Environment(
            account=account,
            region=session.region_name or DEFAULT_REGION,
        )

    return Environment(
        account=os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=os.environ.get("CDK_DEFAULT_REGION") or DEFAULT_REGION,
    )
