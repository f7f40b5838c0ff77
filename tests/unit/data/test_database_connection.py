# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for DatabaseConnection class.

Tests connection management, transactions, and schema operations.
"""

import sqlite3
import threading

import pytest

from data.database.connection import DatabaseConnection


class TestDatabaseConnectionInitialization:
    """Test database connection initialization."""

    def test_init_creates_directory(self, tmp_path):
        db_path = tmp_path / "subdir" / "test.db"
        db = DatabaseConnection(str(db_path))

        assert db_path.parent.exists()
        assert db.db_path == db_path

    def test_in_memory_database(self):
        db = DatabaseConnection(":memory:")
        db.initialize_schema()

        assert db.in_memory
        assert db.execute("SELECT count(*) AS n FROM kv_store")[0]["n"] == 0
        db.close()


class TestDatabaseConnectionManagement:
    """Test connection lifecycle management."""

    def test_get_connection_reuses_thread_local(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))

        conn1 = db._get_connection()
        conn2 = db._get_connection()

        assert conn1 is conn2
        assert conn1.row_factory == sqlite3.Row
        db.close()

    def test_connections_are_per_thread(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))
        main_conn = db._get_connection()
        other = {}

        def worker():
            other["conn"] = db._get_connection()
            db.close()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert other["conn"] is not main_conn
        db.close()

    def test_close_resets_connection(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))
        db._get_connection()

        db.close()

        assert db._local.connection is None


class TestTransactions:
    """Test cursor transactions."""

    def test_commit_persists(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))
        db.initialize_schema()

        with db.get_cursor(commit=True) as cursor:
            cursor.execute("INSERT INTO kv_store (key, value) VALUES ('k', 'v')")

        db.close()
        rows = db.execute("SELECT value FROM kv_store WHERE key = 'k'")
        assert rows[0]["value"] == "v"
        db.close()

    def test_error_rolls_back(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))
        db.initialize_schema()

        with pytest.raises(sqlite3.IntegrityError):
            with db.get_cursor(commit=True) as cursor:
                cursor.execute("INSERT INTO kv_store (key, value) VALUES ('k', 'v')")
                cursor.execute("INSERT INTO kv_store (key, value) VALUES ('k', 'dup')")

        assert db.execute("SELECT * FROM kv_store") == []
        db.close()

    def test_missing_schema_file(self, tmp_path):
        db = DatabaseConnection(str(tmp_path / "test.db"))

        with pytest.raises(FileNotFoundError):
            db.initialize_schema(str(tmp_path / "missing.sql"))
