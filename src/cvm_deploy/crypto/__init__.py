"""Secret encryption subpackage.

* **SecretCodec** -- X25519 + AES-256-GCM hybrid encryption of secret
  sets (:mod:`~cvm_deploy.crypto.codec`).
* **Env parsing** -- ``KEY=VALUE`` lines to secret entries
  (:mod:`~cvm_deploy.crypto.secrets`).
"""
from __future__ import annotations

from cvm_deploy.crypto.codec import (
    NONCE_SIZE,
    PUBLIC_KEY_SIZE,
    TAG_SIZE,
    EncryptedPayload,
    SecretCodec,
    encrypt_secrets,
    serialize_secrets,
)
from cvm_deploy.crypto.secrets import parse_assignment, parse_env_lines, parse_env_text

__all__ = [
    "NONCE_SIZE",
    "PUBLIC_KEY_SIZE",
    "TAG_SIZE",
    "EncryptedPayload",
    "SecretCodec",
    "encrypt_secrets",
    "serialize_secrets",
    "parse_assignment",
    "parse_env_lines",
    "parse_env_text",
]
