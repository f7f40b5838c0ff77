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
SQLite database holding the ScheduleSync key-value table.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence

from config.constants import DATABASE_CONNECTION_TIMEOUT_SECONDS

logger = logging.getLogger("schedulesync.database")

IN_MEMORY = ":memory:"
SCHEMA_FILE = Path(__file__).with_name("schema.sql")


class DatabaseConnection:
    """
    Per-thread SQLite connections to one database file.

    ``:memory:`` gives each thread its own private database.
    """

    def __init__(self, db_path: str):
        self.in_memory = db_path == IN_MEMORY
        self.db_path = Path(db_path) if self.in_memory else Path(db_path).expanduser()
        self._local = threading.local()

        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using schedule database %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=DATABASE_CONNECTION_TIMEOUT_SECONDS,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            logger.debug("Opened connection on %s", threading.current_thread().name)
        return conn

    @contextmanager
    def get_cursor(self, commit: bool = False):
        """
        Yield a cursor; roll back if the block raises.

        With ``commit`` the transaction is committed when the block succeeds.
        """
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except Exception:
            conn.rollback()
            raise
        else:
            if commit:
                conn.commit()
        finally:
            cursor.close()

    def execute(
        self, query: str, params: Sequence = (), commit: bool = False
    ) -> List[sqlite3.Row]:
        """Run one statement and return its rows."""
        with self.get_cursor(commit=commit) as cursor:
            cursor.execute(query, params)
            return cursor.fetchall()

    def initialize_schema(self, schema_path: Optional[str] = None):
        """
        Create missing tables from ``schema.sql`` (or ``schema_path``).

        Raises:
            FileNotFoundError: If the schema file does not exist
        """
        path = Path(schema_path) if schema_path else SCHEMA_FILE
        script = path.read_text(encoding="utf-8")

        conn = self._get_connection()
        conn.executescript(script)
        conn.commit()
        logger.debug("Schema applied from %s", path)

    def close(self):
        """Close this thread's connection, if open."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None
