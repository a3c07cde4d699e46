"""CDK stacks for the single-host n8n deployment."""

from .n8n_stack import N8nStack, N8nStackProps
from .outputs import OutputManager

__all__ = [
    "N8nStack",
    "N8nStackProps",
    "OutputManager",
]
