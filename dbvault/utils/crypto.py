"""
Encryption utilities for secrets stored in the configuration file
(database password, S3 keys, e-mail API key).

Values are encrypted with Fernet using a key derived from a master password
and stored as ``enc:<salt>:<token>`` so the salt travels with the value.
"""

import os
import base64
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


ENCRYPTED_PREFIX = 'enc:'


class SecretError(Exception):
    """Raised when a secret cannot be encrypted or decrypted."""
    pass


class CryptoManager:
    """Handles encryption and decryption of configuration secrets."""

    def __init__(self, password: str, iterations: int = 480000):
        """
        Initialize the encryption manager with a master password.

        Args:
            password: Master password to derive encryption keys from
            iterations: PBKDF2 iterations
        """
        if not password:
            raise SecretError("Master password must not be empty")

        self._password = password
        self._iterations = iterations
        self._fernets = {}

    def _fernet_for(self, salt: bytes) -> Fernet:
        """Derive (and cache) the Fernet instance for a salt."""
        if salt not in self._fernets:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=salt,
                iterations=self._iterations,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self._password.encode()))
            self._fernets[salt] = Fernet(key)
        return self._fernets[salt]

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: String to encrypt

        Returns:
            Value in ``enc:<salt>:<token>`` form, ready to paste into the config
        """
        salt = os.urandom(16)
        token = self._fernet_for(salt).encrypt(plaintext.encode())
        encoded_salt = base64.urlsafe_b64encode(salt).decode()
        return f"{ENCRYPTED_PREFIX}{encoded_salt}:{token.decode()}"

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Args:
            encrypted: Value in ``enc:<salt>:<token>`` form

        Returns:
            Decrypted plaintext string

        Raises:
            SecretError: If the value is malformed or the password is wrong
        """
        if not is_encrypted(encrypted):
            raise SecretError("Value is not an encrypted secret")

        try:
            encoded_salt, token = encrypted[len(ENCRYPTED_PREFIX):].split(':', 1)
            salt = base64.urlsafe_b64decode(encoded_salt.encode())
        except ValueError as e:
            raise SecretError(f"Malformed encrypted secret: {e}")

        try:
            return self._fernet_for(salt).decrypt(token.encode()).decode()
        except InvalidToken:
            raise SecretError("Failed to decrypt secret (wrong master password?)")


def is_encrypted(value) -> bool:
    """Check whether a config value holds an encrypted secret."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)
