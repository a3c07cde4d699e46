"""
Lambda handler for the EC2 key pair private key custom resource.

CloudFormation stores the private key of a ``AWS::EC2::KeyPair`` created with
``KeyFormat: pem`` in SSM Parameter Store under ``/ec2/keypair/<key_pair_id>``.
This handler waits for that parameter to appear and copies its value into a
Secrets Manager secret, creating the secret when it does not exist yet.
"""

import os
import time
from typing import Any, Dict

import boto3
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext
from botocore.exceptions import ClientError

logger = Logger()
ssm_client = boto3.client("ssm")
secretsmanager_client = boto3.client("secretsmanager")

MAX_RETRIES = int(os.environ.get("MAX_RETRIES", "10"))
RETRY_DELAY_SECONDS = float(os.environ.get("RETRY_DELAY_SECONDS", "2"))
SECRET_DESCRIPTION = "Private key for n8n EC2 instance SSH access"


class PrivateKeyNotFoundError(Exception):
    """Raised when the key pair parameter never becomes readable."""


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def keypair_parameter_name(key_pair_id: str) -> str:
    return f"/ec2/keypair/{key_pair_id}"


def get_private_key(
    key_pair_id: str,
    max_retries: int = MAX_RETRIES,
    delay_seconds: float = RETRY_DELAY_SECONDS,
) -> str:
    """
    Read the private key from Parameter Store, polling until it exists.

    Args:
        key_pair_id: ID of the EC2 key pair (``key-...``)
        max_retries: Number of attempts before giving up
        delay_seconds: Fixed wait between attempts

    Returns:
        PEM encoded private key

    Raises:
        ValueError: If key_pair_id is empty or max_retries is below 1
        PrivateKeyNotFoundError: If the parameter is missing after every attempt
            or holds an empty value
        ClientError: For any Parameter Store error other than ParameterNotFound
    """
    if not key_pair_id:
        raise ValueError("key_pair_id not provided")
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    parameter_name = keypair_parameter_name(key_pair_id)

    for attempt in range(1, max_retries + 1):
        try:
            response = ssm_client.get_parameter(Name=parameter_name, WithDecryption=True)
        except ClientError as error:
            if _error_code(error) != "ParameterNotFound":
                raise
            logger.info(
                "Private key not yet in Parameter Store",
                extra={"parameter_name": parameter_name, "attempt": attempt},
            )
            if attempt < max_retries:
                time.sleep(delay_seconds)
            continue

        private_key = response["Parameter"]["Value"]
        if not private_key:
            raise PrivateKeyNotFoundError(
                f"Parameter {parameter_name} exists but holds no private key"
            )

        logger.info(
            "Private key retrieved",
            extra={"parameter_name": parameter_name, "attempt": attempt},
        )
        return private_key

    raise PrivateKeyNotFoundError(
        f"Private key not found in Parameter Store after {max_retries} retries"
    )


def store_private_key(secret_name: str, private_key: str) -> str:
    """
    Write the private key to Secrets Manager.

    Updates the secret when it exists, creates it otherwise.

    Args:
        secret_name: Name of the Secrets Manager secret
        private_key: PEM encoded private key

    Returns:
        ARN of the secret holding the key
    """
    if not secret_name:
        raise ValueError("secret_name not provided")

    try:
        response = secretsmanager_client.describe_secret(SecretId=secret_name)
    except ClientError as error:
        if _error_code(error) != "ResourceNotFoundException":
            raise
        logger.info("Creating secret", extra={"secret_name": secret_name})
        response = secretsmanager_client.create_secret(
            Name=secret_name,
            Description=SECRET_DESCRIPTION,
            SecretString=private_key,
        )
        return response["ARN"]

    secret_arn = response["ARN"]
    logger.info("Updating existing secret", extra={"secret_arn": secret_arn})
    secretsmanager_client.put_secret_value(SecretId=secret_arn, SecretString=private_key)
    return secret_arn


def on_create(event: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the key into Secrets Manager and expose the secret ARN."""
    properties = event.get("ResourceProperties", {})
    key_pair_id = properties.get("KeyPairId", "")
    secret_name = properties.get("SecretName", "")

    private_key = get_private_key(key_pair_id)
    secret_arn = store_private_key(secret_name, private_key)

    return {
        "PhysicalResourceId": secret_name,
        "Data": {"PrivateKeySecretArn": secret_arn},
    }


def on_update(event: Dict[str, Any]) -> Dict[str, Any]:
    # A replaced key pair carries a new KeyPairId; resync the same way
    return on_create(event)


def on_delete(event: Dict[str, Any]) -> Dict[str, Any]:
    """Leave the secret in place so the key stays retrievable after teardown."""
    physical_resource_id = event.get("PhysicalResourceId", "")
    logger.info(
        "Delete event handler invoked (secret retained)",
        extra={"physical_resource_id": physical_resource_id},
    )
    return {"PhysicalResourceId": physical_resource_id}


@logger.inject_lambda_context
def on_event_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Handle custom resource lifecycle events.

    Args:
        event: CloudFormation custom resource event
        context: Lambda execution context

    Returns:
        Provider framework response for the request type

    Raises:
        ValueError: If the request type is invalid
    """
    logger.set_correlation_id(context.aws_request_id)
    logger.info(
        "Custom resource event received",
        extra={
            "request_type": event.get("RequestType"),
            "logical_resource_id": event.get("LogicalResourceId"),
        },
    )

    request_type = event["RequestType"]

    if request_type == "Create":
        return on_create(event)

    if request_type == "Update":
        return on_update(event)

    if request_type == "Delete":
        return on_delete(event)

    raise ValueError(f"Invalid request type: {request_type}")
