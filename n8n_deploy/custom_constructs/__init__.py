"""
Custom resource constructs for the n8n deployment.
"""

from .key_pair_secret import SECRET_NAME_PREFIX, KeyPairSecretResource

__all__ = [
    "KeyPairSecretResource",
    "SECRET_NAME_PREFIX",
]
