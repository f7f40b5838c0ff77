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
Persisted OAuth token storage.

Keeps provider access tokens encrypted on disk so a later process can
reconnect to the remote calendar without a new sign-in.
"""

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from config.app_config import get_app_dir
from config.constants import FILE_PERMISSION_OWNER_RW
from data.security.encryption import SecurityManager

logger = logging.getLogger("schedulesync.security.tokens")

# Treat tokens as expired slightly early
EXPIRY_BUFFER_SECONDS = 300


class TokenStore:
    """
    Encrypted per-provider token storage.

    Tokens live in ``tokens.enc`` (JSON with encrypted string values).
    """

    def __init__(self, security_manager: SecurityManager, config_dir: Optional[str] = None):
        """
        Initialize the token store.

        Args:
            security_manager: SecurityManager used for encryption
            config_dir: Directory for the token file. Defaults to ~/.schedulesync
        """
        self.security_manager = security_manager

        if config_dir is None:
            self.config_dir = get_app_dir()
        else:
            self.config_dir = Path(config_dir).expanduser()

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.tokens_file = self.config_dir / "tokens.enc"
        self._tokens_cache: Dict[str, Dict[str, Any]] = {}
        self._load_tokens()

    def _load_tokens(self):
        if not self.tokens_file.exists():
            logger.debug("No existing token file")
            self._tokens_cache = {}
            return

        try:
            with open(self.tokens_file, "r", encoding="utf-8") as f:
                encrypted_data = json.load(f)
            self._tokens_cache = self.security_manager.decrypt_dict(encrypted_data)
            logger.info(f"Loaded {len(self._tokens_cache)} stored token(s)")
        except (OSError, ValueError) as e:
            # unreadable tokens only mean the user has to sign in again
            logger.error(f"Failed to load stored tokens: {e}")
            self._tokens_cache = {}

    def _save_tokens(self):
        encrypted_data = self.security_manager.encrypt_dict(self._tokens_cache)

        with open(self.tokens_file, "w", encoding="utf-8") as f:
            json.dump(encrypted_data, f, indent=2)

        os.chmod(self.tokens_file, FILE_PERMISSION_OWNER_RW)
        logger.debug("Tokens saved")

    def store_token(
        self,
        provider: str,
        access_token: str,
        expires_in: Optional[int] = None,
        token_type: str = "Bearer",
    ):
        """
        Store an access token for ``provider``.

        Args:
            provider: Provider name (e.g. 'google')
            access_token: OAuth access token
            expires_in: Lifetime in seconds, if known
            token_type: Token type (default 'Bearer')
        """
        now = datetime.now()
        expires_at = None
        if expires_in is not None:
            expires_at = (now + timedelta(seconds=expires_in)).isoformat()

        self._tokens_cache[provider] = {
            "access_token": access_token,
            "token_type": token_type,
            "expires_at": expires_at,
            "stored_at": now.isoformat(),
        }
        self._save_tokens()
        logger.info(f"Stored token for provider: {provider}")

    def get_token(self, provider: str) -> Optional[Dict[str, Any]]:
        return self._tokens_cache.get(provider)

    def get_access_token(self, provider: str) -> Optional[str]:
        """Return a usable access token, or None if missing or expired."""
        token_data = self._tokens_cache.get(provider)
        if not token_data:
            return None

        if self.is_token_expired(provider):
            logger.info(f"Stored token for {provider} has expired")
            return None

        return token_data.get("access_token")

    def is_token_expired(self, provider: str, buffer_seconds: int = EXPIRY_BUFFER_SECONDS) -> bool:
        token_data = self._tokens_cache.get(provider)
        if not token_data:
            return True

        expires_at = token_data.get("expires_at")
        if not expires_at:
            return False

        try:
            expiry = datetime.fromisoformat(expires_at)
        except ValueError:
            logger.warning(f"Invalid expires_at for {provider}: {expires_at}")
            return True

        return datetime.now() >= expiry - timedelta(seconds=buffer_seconds)

    def delete_token(self, provider: str):
        if provider in self._tokens_cache:
            del self._tokens_cache[provider]
            self._save_tokens()
            logger.info(f"Deleted token for provider: {provider}")

    def has_token(self, provider: str) -> bool:
        return provider in self._tokens_cache
