"""
Custom resource moving an EC2 key pair private key into Secrets Manager.

Provides a construct backed by a Provider framework Lambda that waits for the
key pair parameter to be written by CloudFormation and copies it into a
Secrets Manager secret.
"""

import os
from typing import List

import aws_cdk as cdk
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_logs as logs
from aws_cdk.custom_resources import Provider
from constructs import Construct

LAMBDA_CODE_PATH = os.path.join(
    os.path.dirname(__file__), "..", "lambda_functions", "key_retriever"
)
POWERTOOLS_LAYER_ARN = (
    "arn:aws:lambda:{region}:017000801446:layer:"
    "AWSLambdaPowertoolsPythonV3-python312-arm64:7"
)
SECRET_NAME_PREFIX = "/n8n/ec2/private-key-"


class KeyPairSecretResource(Construct):
    """
    Custom resource that stores a generated key pair's private key as a secret.

    The resource is created after the key pair and returns the ARN of the
    secret as the ``PrivateKeySecretArn`` attribute. Deleting the resource
    leaves the secret in place.

    Attributes:
        secret_name: Name of the Secrets Manager secret holding the key.
        function: Lambda handling the custom resource events.
        resource: The underlying CloudFormation custom resource.
        secret_arn: Token resolving to the ARN of the populated secret.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        key_pair: ec2.CfnKeyPair,
        secret_name: str,
        max_retries: int = 10,
        retry_delay: cdk.Duration = cdk.Duration.seconds(2),
        python_version: lambda_.Runtime = lambda_.Runtime.PYTHON_3_12,
        architecture: lambda_.Architecture = lambda_.Architecture.ARM_64,
        **kwargs,
    ) -> None:
        """
        Initialize the key retrieval custom resource.

        Args:
            scope: CDK construct scope
            construct_id: Unique identifier for this construct
            key_pair: Key pair whose private key should be copied
            secret_name: Name of the secret to create or update
            max_retries: Parameter Store read attempts before failing
            retry_delay: Fixed wait between read attempts
            python_version: Python runtime version for the Lambda function
            architecture: CPU architecture for the Lambda function
            **kwargs: Additional arguments to pass to the parent construct
        """
        super().__init__(scope, construct_id, **kwargs)

        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        stack = cdk.Stack.of(self)
        self.secret_name = secret_name

        self.function = lambda_.Function(
            self,
            "KeyRetrieverFunction",
            runtime=python_version,
            handler="index.on_event_handler",
            architecture=architecture,
            code=lambda_.Code.from_asset(LAMBDA_CODE_PATH),
            timeout=cdk.Duration.minutes(5),
            initial_policy=self._iam_statements(stack),
            layers=[
                lambda_.LayerVersion.from_layer_version_arn(
                    self,
                    "PowertoolsLayer",
                    POWERTOOLS_LAYER_ARN.format(region=stack.region),
                )
            ],
            environment={
                "POWERTOOLS_SERVICE_NAME": "n8n-key-retriever",
                "LOG_LEVEL": "INFO",
                "MAX_RETRIES": str(max_retries),
                "RETRY_DELAY_SECONDS": str(retry_delay.to_seconds()),
            },
        )

        provider = Provider(
            self,
            "Provider",
            on_event_handler=self.function,
            log_retention=logs.RetentionDays.ONE_WEEK,
        )

        self.resource = cdk.CustomResource(
            self,
            "Resource",
            service_token=provider.service_token,
            resource_type="Custom::KeyPairSecret",
            properties={
                "KeyPairId": key_pair.attr_key_pair_id,
                "SecretName": secret_name,
            },
        )
        self.resource.node.add_dependency(key_pair)

        self.secret_arn = self.resource.get_att_string("PrivateKeySecretArn")

    @staticmethod
    def _iam_statements(stack: cdk.Stack) -> List[iam.PolicyStatement]:
        return [
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["ssm:GetParameter"],
                resources=[
                    f"arn:aws:ssm:{stack.region}:{stack.account}:parameter/ec2/keypair/*"
                ],
            ),
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "secretsmanager:CreateSecret",
                    "secretsmanager:DescribeSecret",
                    "secretsmanager:PutSecretValue",
                    "secretsmanager:GetSecretValue",
                ],
                resources=[
                    f"arn:aws:secretsmanager:{stack.region}:{stack.account}"
                    f":secret:{SECRET_NAME_PREFIX}*"
                ],
            ),
        ]
