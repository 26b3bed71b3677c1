"""
Provider credential encryption.

Handles reversible encryption of provider API keys before they reach the
row store. Uses Fernet symmetric encryption with a key derived from the
deployment secret.

Security model:
    - Plaintext credentials are NEVER stored at rest
    - The Fernet key is derived from PROVIDER_SETTINGS_ENCRYPTION_KEY
    - Each credential is independently encrypted (random IV per value)
    - Only a 4-character hint of the cleartext is kept alongside the blob

Usage:
    from quizcore.security.crypto import SecretCipher

    cipher = SecretCipher.from_env()
    blob = cipher.encrypt("sk-live-123")
    cipher.decrypt(blob)  # "sk-live-123"
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken

from quizcore.exceptions import ConfigurationError, CredentialDecryptionError

logger = logging.getLogger(__name__)


MASTER_KEY_ENV = "PROVIDER_SETTINGS_ENCRYPTION_KEY"
HINT_LENGTH = 4


def _derive_fernet_key(master_key: str) -> bytes:
    """
    Derive a Fernet-compatible key from a master key string.

    SHA-256 of the master key, url-safe base64 encoded (Fernet requires
    exactly 32 encoded bytes).
    """
    hashed = hashlib.sha256(master_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(hashed)


def key_hint(secret: str) -> str:
    """Last four characters of a secret (the whole value if shorter)."""
    secret = secret.strip()
    return secret[-HINT_LENGTH:] if len(secret) > HINT_LENGTH else secret


class SecretCipher:
    """
    Reversible encryption scoped to one deployment secret.

    Ciphertext produced under one master key cannot be decrypted under
    another.
    """

    def __init__(self, master_key: str):
        if not master_key or not master_key.strip():
            raise ConfigurationError(
                "Credential encryption secret is empty. "
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        self._fernet = Fernet(_derive_fernet_key(master_key.strip()))

    @classmethod
    def from_env(
        cls,
        env_var: str = MASTER_KEY_ENV,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SecretCipher":
        """
        Build a cipher from the deployment secret in the environment.

        Raises:
            ConfigurationError: If the variable is not set.
        """
        env = os.environ if environ is None else environ
        key = (env.get(env_var) or "").strip()
        if not key:
            raise ConfigurationError(
                f"{env_var} environment variable is not set. "
                "Provider credentials cannot be encrypted or decrypted."
            )
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext credential value.

        Returns a url-safe base64 token that can be stored as text.
        """
        if not plaintext or not plaintext.strip():
            raise ValueError("Cannot encrypt an empty credential")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, blob: str, *, provider_id: Optional[str] = None) -> str:
        """
        Decrypt a stored credential blob.

        Raises:
            CredentialDecryptionError: If the blob is malformed or was
                encrypted under a different secret.
        """
        if not blob:
            raise CredentialDecryptionError(
                "Encrypted credential is empty", provider_id=provider_id
            )
        try:
            decrypted = self._fernet.decrypt(blob.encode("utf-8"))
        except (InvalidToken, ValueError) as e:
            raise CredentialDecryptionError(
                "Stored credential could not be decrypted",
                provider_id=provider_id,
            ) from e
        return decrypted.decode("utf-8")
