"""Password-based encryption for OAuth tokens at rest."""
import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from prepaidly.config import config
from prepaidly.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
DEFAULT_ITERATIONS = 100000


class EncryptionService:
    """
    Symmetric string encryption keyed by a password.

    Every value gets its own random salt; the Fernet key is derived from the
    password and that salt with PBKDF2-HMAC-SHA256. The stored form is
    url-safe base64 of ``salt || fernet_token`` so it fits a text column.
    """

    def __init__(self, password: Optional[str] = None, iterations: int = DEFAULT_ITERATIONS):
        password = password if password is not None else config.ENCRYPTION_PASSWORD
        if not password:
            raise ConfigurationError("ENCRYPTION_PASSWORD is not set. Token encryption is unavailable.")
        self._password = password.encode()
        self._iterations = iterations

    def _fernet(self, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self._iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._password))
        return Fernet(key)

    def encrypt(self, plain_text: Optional[str]) -> Optional[str]:
        if plain_text is None:
            return None
        salt = os.urandom(SALT_LENGTH)
        token = self._fernet(salt).encrypt(plain_text.encode("utf-8"))
        return base64.urlsafe_b64encode(salt + token).decode("ascii")

    def decrypt(self, encrypted_text: Optional[str]) -> Optional[str]:
        """Decrypt a stored value.

        Raises:
            DecryptionError: the value is malformed, truncated, or was encrypted
                with another password. Callers must treat the token as unusable.
        """
        if encrypted_text is None:
            return None
        try:
            raw = base64.urlsafe_b64decode(encrypted_text.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise DecryptionError(f"Malformed ciphertext: {e}") from e
        if len(raw) <= SALT_LENGTH:
            raise DecryptionError("Malformed ciphertext: value too short")
        salt, token = raw[:SALT_LENGTH], raw[SALT_LENGTH:]
        try:
            return self._fernet(salt).decrypt(token).decode("utf-8")
        except InvalidToken as e:
            logger.warning("Failed to decrypt value: invalid token or wrong password")
            raise DecryptionError("Unable to decrypt value") from e
