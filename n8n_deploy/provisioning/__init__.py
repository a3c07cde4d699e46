"""Boot-time provisioning for the n8n host."""

from .user_data import BootProvisioner, escape_expanding, heredoc

__all__ = ["BootProvisioner", "escape_expanding", "heredoc"]
