"""Single-host n8n stack with EC2, Docker Compose, PostgreSQL and Traefik.

This module translates a small set of deployment inputs (domain name, instance
type, SSH source range) into a fixed resource graph:

Architecture:
    - Default VPC lookup, or a public-only VPC without NAT gateways for tests
    - Security group allowing HTTP/HTTPS from anywhere and SSH from one CIDR
    - Optional RSA key pair whose private key is copied to Secrets Manager by
      a custom resource
    - Elastic IP associated with the instance
    - Instance role with Session Manager access and read access to /n8n/*
      parameters
    - Amazon Linux 2023 instance provisioned at first boot with n8n,
      PostgreSQL and Traefik containers
"""

import ipaddress
import logging
import os
from dataclasses import dataclass
from typing import Any

from aws_cdk import Fn, Stack
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3_assets as s3_assets
from cdk_nag import NagSuppressions
from constructs import Construct

from ..config.settings import is_valid_email, is_valid_hostname, is_valid_instance_type
from ..custom_constructs import SECRET_NAME_PREFIX, KeyPairSecretResource
from ..provisioning import BootProvisioner
from .outputs import OutputManager

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN_NAME = "n8n.keysely.com"
DEFAULT_INSTANCE_TYPE = "t3.micro"
DEFAULT_SSH_CIDR = "0.0.0.0/0"
USE_DEFAULT_VPC_CONTEXT_KEY = "useDefaultVpc"
DIAGNOSTIC_SCRIPT_SOURCE = os.path.join(
    os.path.dirname(__file__), "..", "cli", "check_traefik_local.py"
)


@dataclass(frozen=True)
class N8nStackProps:
    """Configuration properties for the n8n stack.

    Attributes:
        domain_name: Public host name n8n is served on.
        instance_type: EC2 instance type, e.g. ``t3.micro``.
        allowed_ssh_cidr: IPv4 CIDR allowed to reach port 22.
        acme_email: Let's Encrypt contact; defaults to ``admin@<domain_name>``.
        create_key_pair: Create a key pair and store its private key as a secret.
    """

    domain_name: str = DEFAULT_DOMAIN_NAME
    instance_type: str = DEFAULT_INSTANCE_TYPE
    allowed_ssh_cidr: str = DEFAULT_SSH_CIDR
    acme_email: str | None = None
    create_key_pair: bool = True

    def __post_init__(self):
        """Validate inputs and fill in the ACME email default."""
        if not is_valid_hostname(self.domain_name):
            raise ValueError(f"Invalid domain name: {self.domain_name!r}")
        if not is_valid_instance_type(self.instance_type):
            raise ValueError(f"Invalid instance type: {self.instance_type!r}")
        try:
            ipaddress.IPv4Network(self.allowed_ssh_cidr, strict=False)
        except ValueError as exc:
            raise ValueError(f"Invalid SSH CIDR: {self.allowed_ssh_cidr!r}") from exc
        if self.acme_email is None:
            object.__setattr__(self, "acme_email", f"admin@{self.domain_name}")
        elif not is_valid_email(self.acme_email):
            raise ValueError(f"Invalid ACME email: {self.acme_email!r}")


class N8nStack(Stack):
    """n8n infrastructure on a single EC2 instance.

    Attributes:
        props: Deployment inputs for this stack.
        vpc: VPC hosting the instance.
        security_group: Ingress rules for HTTP, HTTPS and SSH.
        key_pair: Generated key pair, or None when disabled.
        key_secret: Custom resource copying the private key to Secrets Manager.
        elastic_ip: Reserved public address for the instance.
        instance_role: IAM role attached to the instance.
        diagnostics_asset: S3 asset holding the on-host diagnostic script.
        instance: The n8n host.
        output_manager: Manager for consistent output creation.
    """

    props: N8nStackProps
    vpc: ec2.IVpc
    security_group: ec2.SecurityGroup
    key_pair: ec2.CfnKeyPair | None
    key_secret: KeyPairSecretResource | None
    elastic_ip: ec2.CfnEIP
    instance_role: iam.Role
    diagnostics_asset: s3_assets.Asset
    instance: ec2.Instance
    output_manager: OutputManager

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        props: N8nStackProps | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the n8n stack.

        Args:
            scope: CDK construct scope for resource creation.
            construct_id: Unique identifier for this stack.
            props: Deployment inputs; defaults apply when omitted.
            **kwargs: Additional arguments passed to parent Stack.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.props = props or N8nStackProps()
        self.output_manager = OutputManager(self, self.stack_name)

        self._create_vpc()
        self._create_security_group()
        self._create_key_pair()
        self._create_elastic_ip()
        self._create_instance_role()
        self._create_instance()
        self._associate_elastic_ip()
        self._create_outputs()
        self._configure_security_checks()

    def _use_default_vpc(self) -> bool:
        value = self.node.try_get_context(USE_DEFAULT_VPC_CONTEXT_KEY)
        if isinstance(value, str):
            return value.strip().lower() != "false"
        return value is not False

    def _create_vpc(self) -> None:
        """Look up the default VPC or create a public-only VPC.

        Creating the VPC avoids the lookup API call, which tests rely on by
        setting the ``useDefaultVpc`` context to ``False``.
        """
        if self._use_default_vpc():
            logger.info("Using default VPC for %s", self.stack_name)
            self.vpc = ec2.Vpc.from_lookup(self, "DefaultVPC", is_default=True)
            return

        logger.info("Creating dedicated VPC for %s", self.stack_name)
        self.vpc = ec2.Vpc(
            self,
            "VPC",
            max_azs=2,
            nat_gateways=0,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                )
            ],
        )

    def _create_security_group(self) -> None:
        self.security_group = ec2.SecurityGroup(
            self,
            "N8nEC2SecurityGroup",
            vpc=self.vpc,
            description="Security group for n8n EC2 instance",
            allow_all_outbound=True,
        )

        self.security_group.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(80),
            description="Allow HTTP from internet",
        )

        self.security_group.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(443),
            description="Allow HTTPS from internet",
        )

        self.security_group.add_ingress_rule(
            peer=ec2.Peer.ipv4(self.props.allowed_ssh_cidr),
            connection=ec2.Port.tcp(22),
            description="Allow SSH from specified CIDR",
        )

    def _create_key_pair(self) -> None:
        """Create the key pair and the custom resource that stores its private key.

        The stack name is part of both the key name and the secret name, so
        stacks sharing an account keep separate keys. A secret retained from an
        earlier deployment of the same stack is overwritten.
        """
        self.key_pair = None
        self.key_secret = None
        if not self.props.create_key_pair:
            return

        self.key_pair = ec2.CfnKeyPair(
            self,
            "N8nKeyPair",
            key_name=f"n8n-keypair-{self.stack_name}",
            key_type="rsa",
            key_format="pem",
        )

        self.key_secret = KeyPairSecretResource(
            self,
            "KeyRetriever",
            key_pair=self.key_pair,
            secret_name=f"{SECRET_NAME_PREFIX}{self.stack_name}",
        )

    def _create_elastic_ip(self) -> None:
        self.elastic_ip = ec2.CfnEIP(self, "N8nElasticIP", domain="vpc")

    def _create_instance_role(self) -> None:
        self.instance_role = iam.Role(
            self,
            "N8nEC2Role",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            description="IAM role for n8n EC2 instance",
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedInstanceCore"
                ),
            ],
        )

        self.instance_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["ssm:GetParameter", "ssm:GetParameters"],
                resources=[
                    f"arn:aws:ssm:{self.region}:{self.account}:parameter/n8n/*"
                ],
            )
        )

    def _create_instance(self) -> None:
        """Create the instance with first-boot provisioning attached."""
        self.diagnostics_asset = s3_assets.Asset(
            self,
            "DiagnosticScriptAsset",
            path=DIAGNOSTIC_SCRIPT_SOURCE,
        )
        self.diagnostics_asset.grant_read(self.instance_role)

        provisioner = BootProvisioner(
            domain_name=self.props.domain_name,
            acme_email=self.props.acme_email,
        )

        key_pair = None
        if self.key_pair is not None:
            key_pair = ec2.KeyPair.from_key_pair_name(
                self, "InstanceKeyPair", self.key_pair.ref
            )

        self.instance = ec2.Instance(
            self,
            "N8nInstance",
            vpc=self.vpc,
            instance_type=ec2.InstanceType(self.props.instance_type),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(
                cpu_type=ec2.AmazonLinuxCpuType.X86_64,
            ),
            security_group=self.security_group,
            role=self.instance_role,
            user_data=provisioner.build_user_data(self.diagnostics_asset),
            key_pair=key_pair,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

    def _associate_elastic_ip(self) -> None:
        ec2.CfnEIPAssociation(
            self,
            "N8nElasticIPAssociation",
            allocation_id=self.elastic_ip.attr_allocation_id,
            instance_id=self.instance.instance_id,
        )

    def _create_outputs(self) -> None:
        self.output_manager.add_output_with_ssm(
            "InstanceId",
            self.instance.instance_id,
            "EC2 Instance ID",
            parameter_key="instance-id",
        )
        self.output_manager.add_output_with_ssm(
            "ElasticIP",
            self.elastic_ip.ref,
            "Elastic IP address for n8n instance",
            parameter_key="elastic-ip",
        )
        self.output_manager.add_output(
            "PublicIP",
            self.instance.instance_public_ip,
            "Public IP address of the instance",
        )
        self.output_manager.add_output(
            "DomainName",
            self.props.domain_name,
            "Domain name for n8n (configure DNS A record pointing to Elastic IP)",
        )
        self.output_manager.add_output(
            "SSHCommand",
            f"ssh -i <your-key.pem> ec2-user@{self.elastic_ip.ref}",
            "SSH command to connect to the instance",
        )

        if self.key_pair is not None and self.key_secret is not None:
            self.output_manager.add_output(
                "KeyPairName",
                self.key_pair.ref,
                "Name of the EC2 Key Pair",
            )
            self.output_manager.add_output(
                "PrivateKeySecretArn",
                self.key_secret.secret_arn,
                "ARN of the Secrets Manager secret containing the private key",
            )
            self.output_manager.add_output(
                "GetPrivateKeyCommand",
                Fn.join(
                    "",
                    [
                        "aws secretsmanager get-secret-value --secret-id ",
                        self.key_secret.secret_arn,
                        " --query SecretString --output text > n8n-key.pem"
                        " && chmod 400 n8n-key.pem",
                    ],
                ),
                "Command to retrieve and save the private key from Secrets Manager",
            )

        self.output_manager.add_output(
            "SSMSessionCommand",
            f"aws ssm start-session --target {self.instance.instance_id}",
            "Alternative: Connect using AWS Systems Manager Session Manager (no key needed)",
        )

    def _configure_security_checks(self) -> None:
        """Record cdk-nag suppressions for deliberate single-host trade-offs.

        The AwsSolutions checks themselves are attached at the app level.
        """
        NagSuppressions.add_stack_suppressions(
            stack=self,
            suppressions=[
                {
                    "id": "AwsSolutions-EC23",
                    "reason": "Traefik serves public HTTP/HTTPS and answers the ACME HTTP challenge",
                },
                {
                    "id": "AwsSolutions-EC26",
                    "reason": "Single-host deployment keeps the default Amazon Linux root volume",
                },
                {
                    "id": "AwsSolutions-EC28",
                    "reason": "Single low-cost host; detailed monitoring is not required",
                },
                {
                    "id": "AwsSolutions-EC29",
                    "reason": "Host is recreated from user data; termination protection is not used",
                },
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "AmazonSSMManagedInstanceCore and Lambda basic execution are AWS managed",
                },
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "Key pair parameters and secret names are only known after deployment",
                },
                {
                    "id": "AwsSolutions-L1",
                    "reason": "Provider framework runtime is managed by aws-cdk-lib",
                },
                {
                    "id": "AwsSolutions-VPC7",
                    "reason": "Dedicated VPC is only created for synthesis without a default VPC",
                },
            ],
        )
