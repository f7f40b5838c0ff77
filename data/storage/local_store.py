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
Local persistence of the schedule list.

The whole list is stored as one JSON document under a versioned key.
A list found only under the legacy key is migrated once on first load.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from config.constants import LEGACY_SCHEDULES_STORAGE_KEY, SCHEDULES_STORAGE_KEY
from core.schedule.exceptions import StorageError, ValidationError
from core.schedule.models import ScheduleRecord, SyncStatus
from data.database.connection import DatabaseConnection

logger = logging.getLogger("schedulesync.storage")


class LocalStore(ABC):
    """Durable persistence of the schedule list."""

    @abstractmethod
    def load(self) -> List[ScheduleRecord]:
        """
        Load all stored records.

        Returns an empty list when nothing is stored or the stored data is
        corrupt.
        """
        pass

    @abstractmethod
    def save(self, records: Sequence[ScheduleRecord]) -> None:
        """
        Persist the full list of records.

        Raises:
            StorageError: If the storage medium fails
        """
        pass


class KeyValueLocalStore(LocalStore):
    """
    LocalStore over a string key-value backend.

    Subclasses provide ``_read``, ``_write`` and ``_remove``.
    """

    def __init__(
        self,
        current_key: str = SCHEDULES_STORAGE_KEY,
        legacy_key: Optional[str] = LEGACY_SCHEDULES_STORAGE_KEY,
    ):
        self.current_key = current_key
        self.legacy_key = legacy_key

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def _write(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def _remove(self, key: str) -> None:
        pass

    def load(self) -> List[ScheduleRecord]:
        raw = self._safe_read(self.current_key)
        if raw is not None:
            return self._decode(raw, self.current_key)

        if not self.legacy_key:
            return []

        legacy_raw = self._safe_read(self.legacy_key)
        if legacy_raw is None:
            return []

        return self._migrate_legacy(legacy_raw)

    def save(self, records: Sequence[ScheduleRecord]) -> None:
        payload = json.dumps([record.to_dict() for record in records], ensure_ascii=False)
        try:
            self._write(self.current_key, payload)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to save schedules: {e}")
            raise StorageError(f"Failed to save schedules: {e}") from e
        logger.debug(f"Saved {len(records)} schedule(s) under '{self.current_key}'")

    def _safe_read(self, key: str) -> Optional[str]:
        try:
            return self._read(key)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to read '{key}' from local store: {e}")
            return None

    def _decode(self, raw: str, key: str) -> List[ScheduleRecord]:
        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.error(f"Stored schedules under '{key}' are corrupt: {e}")
            return []

        if not isinstance(items, list):
            logger.error(f"Stored schedules under '{key}' are not a list")
            return []

        records = []
        seen_ids = set()
        for item in items:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed stored schedule: {item!r}")
                continue
            try:
                record = ScheduleRecord.from_dict(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid stored schedule: {e}")
                continue
            if record.id in seen_ids:
                logger.warning(f"Skipping duplicate stored schedule id: {record.id}")
                continue
            seen_ids.add(record.id)
            records.append(record)

        return records

    def _migrate_legacy(self, raw: str) -> List[ScheduleRecord]:
        records = self._decode(raw, self.legacy_key)
        for record in records:
            record.sync_status = SyncStatus.OFFLINE

        self.save(records)
        try:
            self._remove(self.legacy_key)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to remove legacy schedules: {e}") from e

        logger.info(
            f"Migrated {len(records)} schedule(s) from '{self.legacy_key}' "
            f"to '{self.current_key}'"
        )
        return records


class SqliteLocalStore(KeyValueLocalStore):
    """LocalStore backed by the ``kv_store`` table."""

    def __init__(
        self,
        db: DatabaseConnection,
        current_key: str = SCHEDULES_STORAGE_KEY,
        legacy_key: Optional[str] = LEGACY_SCHEDULES_STORAGE_KEY,
    ):
        super().__init__(current_key, legacy_key)
        self.db = db

    def _read(self, key: str) -> Optional[str]:
        rows = self.db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        if not rows:
            return None
        return rows[0]["value"]

    def _write(self, key: str, value: str) -> None:
        self.db.execute(
            """
            INSERT OR REPLACE INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            """,
            (key, value),
            commit=True,
        )

    def _remove(self, key: str) -> None:
        self.db.execute("DELETE FROM kv_store WHERE key = ?", (key,), commit=True)


class InMemoryLocalStore(KeyValueLocalStore):
    """Dictionary-backed LocalStore, used for tests and ephemeral sessions."""

    def __init__(
        self,
        data: Optional[Dict[str, str]] = None,
        current_key: str = SCHEDULES_STORAGE_KEY,
        legacy_key: Optional[str] = LEGACY_SCHEDULES_STORAGE_KEY,
    ):
        super().__init__(current_key, legacy_key)
        self.data: Dict[str, str] = dict(data or {})

    def _read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def _write(self, key: str, value: str) -> None:
        self.data[key] = value

    def _remove(self, key: str) -> None:
        self.data.pop(key, None)
