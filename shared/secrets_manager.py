"""
Secrets lookup for the proxy: the downstream API key and friends.
"""

import os
import json
import base64
from typing import Dict, Mapping, Optional
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import logging

logger = logging.getLogger(__name__)


class SecretsManager:
    """
    Resolves secrets by name.

    Lookup order is the process environment, then an optional JSON file of
    Fernet-encrypted values (``ACCESS_SECRETS_FILE``). Found values are cached
    for the lifetime of the manager.
    """

    def __init__(self, master_key: Optional[str] = None, secrets_file: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Initialize the secrets manager.

        Args:
            master_key: Master key for decrypting the secrets file
            secrets_file: Path to the encrypted secrets file
            environ: Environment mapping, defaults to ``os.environ``
        """
        self._environ = environ if environ is not None else os.environ
        self.master_key = master_key or self._environ.get("ACCESS_MASTER_KEY")
        self.secrets_file = secrets_file or self._environ.get("ACCESS_SECRETS_FILE")
        self._fernet = self._create_fernet() if self.master_key else None
        self._cache: Dict[str, str] = {}

    def _create_fernet(self) -> Fernet:
        """
        Create a Fernet cipher instance.

        Returns:
            Fernet cipher instance
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'card_proxy_salt',
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self.master_key.encode()))
        return Fernet(key)

    def encrypt_secret(self, secret: str) -> str:
        """
        Encrypt a secret for storage in the secrets file.

        Args:
            secret: Secret to encrypt

        Returns:
            Encrypted secret
        """
        if self._fernet is None:
            raise ValueError("Master key is required to encrypt secrets")
        encrypted = self._fernet.encrypt(secret.encode())
        return base64.urlsafe_b64encode(encrypted).decode()

    def decrypt_secret(self, encrypted_secret: str) -> str:
        """
        Decrypt a secret.

        Args:
            encrypted_secret: Encrypted secret

        Returns:
            Decrypted secret
        """
        if self._fernet is None:
            raise ValueError("Master key is required to decrypt secrets")
        decoded = base64.urlsafe_b64decode(encrypted_secret.encode())
        return self._fernet.decrypt(decoded).decode()

    def get_secret(self, key: str) -> Optional[str]:
        """
        Get a secret by name.

        Args:
            key: Secret name

        Returns:
            Secret value, or None when it is not available anywhere
        """
        if key in self._cache:
            return self._cache[key]

        secret = (self._environ.get(key) or "").strip() or self._read_secret_file(key)
        if secret:
            self._cache[key] = secret
            return secret
        return None

    def _read_secret_file(self, key: str) -> Optional[str]:
        if not self.secrets_file or not os.path.exists(self.secrets_file):
            return None
        if self._fernet is None:
            logger.warning("Secrets file configured without ACCESS_MASTER_KEY; skipping")
            return None
        try:
            with open(self.secrets_file, 'r') as f:
                secrets = json.load(f)
            if key in secrets:
                return self.decrypt_secret(secrets[key]).strip()
        except Exception as e:
            logger.warning(f"Failed to read secrets file: {e}")
        return None
