"""
Credential encryption for API keys at rest.

Keys are derived from a passphrase with PBKDF2-HMAC-SHA256 and sealed with
AES-GCM. Output layout, base64 encoded: salt (16) | nonce (12) | ciphertext.
"""
import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from polychat.core.config import settings
from polychat.core.exceptions import ConfigError

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
TAG_BYTES = 16


class CredentialCipher:
    """Passphrase-based encrypt/decrypt for short secrets."""

    def __init__(self, iterations: Optional[int] = None):
        self.iterations = iterations or settings.CREDENTIAL_KDF_ITERATIONS

    def _derive_key(self, passphrase: str, salt: bytes) -> bytes:
        if not passphrase:
            raise ConfigError("A passphrase is required to protect credentials")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def encrypt(self, plaintext: str, passphrase: str) -> str:
        salt = os.urandom(SALT_BYTES)
        nonce = os.urandom(NONCE_BYTES)
        key = self._derive_key(passphrase, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str, passphrase: str) -> str:
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError("Stored credential is not valid base64") from e
        if len(raw) < SALT_BYTES + NONCE_BYTES + TAG_BYTES:
            raise ConfigError("Stored credential is truncated")

        salt = raw[:SALT_BYTES]
        nonce = raw[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
        sealed = raw[SALT_BYTES + NONCE_BYTES:]

        key = self._derive_key(passphrase, salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise ConfigError("Unable to decrypt credential: wrong passphrase or corrupted data") from e
        return plaintext.decode("utf-8")
