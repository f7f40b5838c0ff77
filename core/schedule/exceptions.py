# SPDX-License-Identifier: Apache-2.0
"""
Exceptions for schedule management.

Defines the error taxonomy used by the reconciliation engine and its
collaborators.
"""

from typing import List, Optional


class ScheduleError(Exception):
    """Base exception for schedule operations."""

    pass


class ValidationError(ScheduleError):
    """Raised when required record fields are missing or invalid."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class RemoteError(ScheduleError):
    """Raised when a remote calendar call fails (network, auth, quota)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code in (404, 410)


class StorageError(ScheduleError):
    """Raised when the local persistence medium fails."""

    pass


class RecordNotFoundError(ScheduleError):
    """Raised when an operation references a record that no longer exists."""

    def __init__(self, record_id: str):
        super().__init__(f"Schedule record not found: {record_id}")
        self.record_id = record_id
