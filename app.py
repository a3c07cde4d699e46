"""Entry point for the n8n single-host deployment.

Builds the CDK application holding the n8n stack and attaches the cdk-nag
AwsSolutions checks before synthesis.

Environment Configuration Options:
    1. AWS Named Profile:
       N8N_AWS_PROFILE: Named profile from AWS credentials file

    2. Direct Environment Variables:
       CDK_DEFAULT_REGION: Target AWS region for deployment
       CDK_DEFAULT_ACCOUNT: Target AWS account for deployment

Deployment inputs (domain, instance type, SSH CIDR, ...) are read from
``N8N_*`` environment variables or a ``.env`` file.
"""

import logging

import cdk_nag
from aws_cdk import App, Aspects

from n8n_deploy.config import DeploymentSettings, create_deployment_environment, get_settings
from n8n_deploy.stacks import N8nStack, N8nStackProps
from n8n_deploy.stacks.n8n_stack import USE_DEFAULT_VPC_CONTEXT_KEY

logger = logging.getLogger(__name__)


def initialize_app(settings: DeploymentSettings | None = None) -> App:
    """Initializes and configures the CDK application.

    Args:
        settings: Deployment settings; read from the environment when omitted.

    Returns:
        Configured CDK App instance ready for synthesis.
    """
    settings = settings or get_settings()
    env = create_deployment_environment(settings)

    app = App()
    if app.node.try_get_context(USE_DEFAULT_VPC_CONTEXT_KEY) is None:
        app.node.set_context(USE_DEFAULT_VPC_CONTEXT_KEY, settings.use_default_vpc)

    logger.info(
        "Synthesizing %s for %s (%s)",
        settings.stack_name,
        settings.domain_name,
        settings.environment_name,
    )

    N8nStack(
        app,
        settings.stack_name,
        props=N8nStackProps(**settings.get_stack_inputs()),
        env=env,
        description=(
            "n8n infrastructure stack with EC2, Docker Compose, PostgreSQL, and Traefik"
        ),
        tags={
            "Environment": settings.environment_name,
            "Application": "n8n",
            "ManagedBy": "AWS-CDK",
        },
    )

    Aspects.of(app).add(cdk_nag.AwsSolutionsChecks())
    return app


def main() -> None:
    """Main execution entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = initialize_app(settings)
    app.synth()


if __name__ == "__main__":
    main()
