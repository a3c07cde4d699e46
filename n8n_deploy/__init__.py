"""Single-host n8n deployment on AWS.

Provides the CDK stack, boot provisioning, key retrieval custom resource and
on-host diagnostics for running n8n behind Traefik with PostgreSQL on one EC2
instance.
"""

__version__ = "0.1.0"
