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
Data models for schedule records.

Provides the record dataclass, its priority and sync status enumerations,
and the field validation applied before any state mutation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from core.schedule.exceptions import ValidationError
from utils.time_utils import DATE_FORMAT, TIME_FORMAT, current_iso_timestamp

logger = logging.getLogger("schedulesync.schedule.models")

EDITABLE_FIELDS = ("title", "description", "date", "time", "priority")
REQUIRED_FIELDS = ("title", "date", "time")


def normalize_date(value: str) -> str:
    """Return ``value`` as zero-padded ``YYYY-MM-DD``; raises ValueError."""
    return datetime.strptime(value.strip(), DATE_FORMAT).strftime(DATE_FORMAT)


def normalize_time(value: str) -> str:
    """Return ``value`` as zero-padded ``HH:MM``; raises ValueError."""
    return datetime.strptime(value.strip(), TIME_FORMAT).strftime(TIME_FORMAT)


def _normalized_or_raw(normalizer, value: str) -> str:
    try:
        return normalizer(value)
    except ValueError:
        # stored values that do not parse are kept as they are
        return value


class Priority(Enum):
    """Schedule priority levels."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any, default: Optional["Priority"] = None) -> "Priority":
        """
        Convert a raw value into a Priority.

        Unknown values fall back to ``default`` (MEDIUM when omitted).
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.MEDIUM

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


class SyncStatus(Enum):
    """
    Reconciliation state of a record.

    OFFLINE: no remote collaborator configured
    PENDING: local change awaiting remote confirmation
    SYNCED: local and remote agreed as of the last successful call
    FAILED: last remote attempt errored, local data is authoritative
    """

    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"
    OFFLINE = "offline"

    @property
    def needs_push(self) -> bool:
        """Whether bulk sync should push the record."""
        return self is not SyncStatus.SYNCED


def generate_record_id() -> str:
    """Generate a new local record identifier."""
    return uuid.uuid4().hex


@dataclass
class ScheduleRecord:
    """A single schedule item."""

    title: str
    date: str
    time: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    id: str = field(default_factory=generate_record_id)
    remote_id: Optional[str] = None
    created_at: str = field(default_factory=current_iso_timestamp)
    sync_status: SyncStatus = SyncStatus.PENDING

    @property
    def sort_key(self):
        # dates and times are stored zero-padded, so string order is chronological
        return (self.date, self.time)

    def starts_at(self) -> datetime:
        """Return the naive local start datetime."""
        return datetime.strptime(f"{self.date} {self.time}", f"{DATE_FORMAT} {TIME_FORMAT}")

    def apply_changes(self, changes: Mapping[str, Any]) -> None:
        """
        Merge validated editable fields into this record.

        ``id``, ``remote_id`` and ``created_at`` are never touched here.
        """
        for name in EDITABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name == "priority":
                value = Priority.parse(value)
            elif name == "description":
                value = (value or "").strip()
            elif name == "date":
                value = normalize_date(value)
            elif name == "time":
                value = normalize_time(value)
            elif isinstance(value, str):
                value = value.strip()
            setattr(self, name, value)

    def editable_values(self) -> tuple:
        return tuple(getattr(self, name) for name in EDITABLE_FIELDS)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the persisted field names."""
        return {
            "id": self.id,
            "remoteId": self.remote_id,
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "time": self.time,
            "priority": self.priority.value,
            "createdAt": self.created_at,
            "syncStatus": self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduleRecord":
        """
        Build a record from its persisted form.

        Raises:
            ValidationError: If required fields are missing
        """
        if not data.get("id"):
            raise ValidationError("Stored record has no id", ["id"])
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(
                f"Stored record {data.get('id')} is missing: {', '.join(missing)}",
                missing,
            )

        raw_status = data.get("syncStatus")
        try:
            status = SyncStatus(raw_status)
        except ValueError:
            status = SyncStatus.OFFLINE

        # legacy records stored only the google id under this name
        remote_id = data.get("remoteId") or data.get("googleEventId")

        return cls(
            id=str(data["id"]),
            remote_id=remote_id or None,
            title=str(data["title"]),
            description=data.get("description") or "",
            date=_normalized_or_raw(normalize_date, str(data["date"])),
            time=_normalized_or_raw(normalize_time, str(data["time"])),
            priority=Priority.parse(data.get("priority")),
            created_at=data.get("createdAt") or current_iso_timestamp(),
            sync_status=status,
        )


def validate_fields(fields: Mapping[str, Any], partial: bool = False) -> None:
    """
    Validate raw record fields.

    Args:
        fields: Field mapping as captured from the user
        partial: When True only the provided fields are checked

    Raises:
        ValidationError: On a missing required field or an invalid value
    """
    names = [name for name in REQUIRED_FIELDS if not partial or name in fields]
    missing = [
        name for name in names
        if not isinstance(fields.get(name), str) or not fields.get(name).strip()
    ]
    if missing:
        raise ValidationError(
            f"Missing required schedule fields: {', '.join(missing)}", missing
        )

    if "date" in fields:
        try:
            normalize_date(fields["date"])
        except ValueError as exc:
            raise ValidationError(
                f"Invalid date {fields['date']!r}, expected YYYY-MM-DD", ["date"]
            ) from exc

    if "time" in fields:
        try:
            normalize_time(fields["time"])
        except ValueError as exc:
            raise ValidationError(
                f"Invalid time {fields['time']!r}, expected HH:MM", ["time"]
            ) from exc

    priority = fields.get("priority")
    if priority is not None and not isinstance(priority, Priority):
        if str(priority).strip().lower() not in Priority.values():
            raise ValidationError(
                f"Priority must be one of {Priority.values()}", ["priority"]
            )
