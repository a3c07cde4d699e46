from .settings import (
    DeploymentSettings,
    create_deployment_environment,
    get_settings,
    reset_settings,
    update_settings,
)

__all__ = [
    "DeploymentSettings",
    "create_deployment_environment",
    "get_settings",
    "reset_settings",
    "update_settings",
]
