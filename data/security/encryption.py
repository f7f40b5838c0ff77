# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 ScheduleSync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Encryption helpers for persisted credentials.

AES-256-GCM with a key derived from a machine identifier and a local salt.
"""

import base64
import binascii
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config.app_config import get_app_dir
from config.constants import FILE_PERMISSION_OWNER_RW


logger = logging.getLogger('schedulesync.security')

NONCE_SIZE = 12
SALT_SIZE = 32
KDF_ITERATIONS = 100_000


class SecurityManager:
    """
    Manages encryption and decryption of sensitive data.

    Uses AES-256-GCM for authenticated encryption with machine-specific
    key derivation.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize security manager.

        Args:
            config_dir: Directory for storing the salt file.
                        Defaults to ~/.schedulesync
        """
        if config_dir is None:
            self.config_dir = get_app_dir()
        else:
            self.config_dir = Path(config_dir).expanduser()

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.salt_file = self.config_dir / ".salt"
        self.salt = self._get_or_create_salt()
        self.encryption_key = self._derive_key()

        logger.info("Security manager initialized")

    def _get_machine_uuid(self) -> str:
        """Return a stable identifier for this machine."""
        for candidate in ('/etc/machine-id', '/var/lib/dbus/machine-id'):
            try:
                with open(candidate, 'r', encoding='utf-8') as f:
                    value = f.read().strip()
                if value:
                    return value
            except OSError:
                continue

        # macOS/Windows: MAC address based node id
        return str(uuid.getnode())

    def _get_or_create_salt(self) -> bytes:
        if self.salt_file.exists():
            try:
                salt = self.salt_file.read_bytes()
                if len(salt) == SALT_SIZE:
                    logger.debug("Loaded existing salt")
                    return salt
            except OSError as e:
                logger.warning(f"Could not read salt file: {e}")

        salt = os.urandom(SALT_SIZE)
        self.salt_file.write_bytes(salt)
        os.chmod(self.salt_file, FILE_PERMISSION_OWNER_RW)
        logger.info("Created new salt")
        return salt

    def _derive_key(self) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,  # AES-256
            salt=self.salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._get_machine_uuid().encode('utf-8'))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext.

        Returns:
            Base64-encoded nonce + ciphertext + tag
        """
        if not plaintext:
            return ""

        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self.encryption_key).encrypt(
            nonce, plaintext.encode('utf-8'), None
        )
        return base64.b64encode(nonce + ciphertext).decode('utf-8')

    def decrypt(self, encrypted_data: str) -> str:
        """
        Decrypt data produced by :meth:`encrypt`.

        Raises:
            ValueError: If the payload is malformed or fails authentication
        """
        if not encrypted_data:
            return ""

        try:
            encrypted_bytes = base64.b64decode(encrypted_data.encode('utf-8'), validate=True)
            nonce, ciphertext = encrypted_bytes[:NONCE_SIZE], encrypted_bytes[NONCE_SIZE:]
            plaintext = AESGCM(self.encryption_key).decrypt(nonce, ciphertext, None)
        except (binascii.Error, InvalidTag, ValueError) as e:
            logger.error(f"Decryption failed: {type(e).__name__}")
            raise ValueError("Unable to decrypt data") from e

        return plaintext.decode('utf-8')

    def encrypt_dict(self, data: dict) -> dict:
        """Encrypt all string values in a dictionary."""
        encrypted = {}

        for key, value in data.items():
            if isinstance(value, str):
                encrypted[key] = self.encrypt(value)
            elif isinstance(value, dict):
                encrypted[key] = self.encrypt_dict(value)
            else:
                encrypted[key] = value

        return encrypted

    def decrypt_dict(self, encrypted_data: dict) -> dict:
        """Decrypt all string values in a dictionary."""
        decrypted = {}

        for key, value in encrypted_data.items():
            if isinstance(value, str):
                decrypted[key] = self.decrypt(value)
            elif isinstance(value, dict):
                decrypted[key] = self.decrypt_dict(value)
            else:
                decrypted[key] = value

        return decrypted
