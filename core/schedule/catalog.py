# SPDX-License-Identifier: Apache-2.0
"""
Schedule catalog.

Ordered in-memory collection of schedule records plus the pure view
helpers used for display (priority filter, stable chronological sort).
"""

import logging
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Set, Union

from core.schedule.exceptions import RecordNotFoundError
from core.schedule.models import Priority, ScheduleRecord

logger = logging.getLogger("schedulesync.schedule.catalog")

ALL_PRIORITIES = "all"

PRIORITY_LABELS = {
    Priority.HIGH: "High",
    Priority.MEDIUM: "Medium",
    Priority.LOW: "Low",
}


class ScheduleCatalog:
    """
    Insertion-ordered collection of schedule records.

    Mutation is reserved for the reconciliation engine; the view methods
    never modify the collection.
    """

    def __init__(self, records: Optional[Iterable[ScheduleRecord]] = None):
        self._records: List[ScheduleRecord] = []
        for record in records or []:
            self.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ScheduleRecord]:
        return iter(list(self._records))

    def __contains__(self, record_id: object) -> bool:
        return any(record.id == record_id for record in self._records)

    @property
    def records(self) -> List[ScheduleRecord]:
        """Records in insertion order (shallow copy of the list)."""
        return list(self._records)

    def append(self, record: ScheduleRecord) -> None:
        """
        Append a record.

        Raises:
            ValueError: If a record with the same id already exists
        """
        if record.id in self:
            raise ValueError(f"Duplicate schedule record id: {record.id}")
        self._records.append(record)

    def get(self, record_id: str) -> ScheduleRecord:
        """
        Return the record with ``record_id``.

        Raises:
            RecordNotFoundError: If no such record exists
        """
        record = self.find(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def find(self, record_id: str) -> Optional[ScheduleRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def remove(self, record_id: str) -> ScheduleRecord:
        record = self.get(record_id)
        self._records.remove(record)
        return record

    def clear(self) -> None:
        self._records.clear()

    def replace_all(self, records: Iterable[ScheduleRecord]) -> None:
        self._records.clear()
        for record in records:
            self.append(record)

    def known_remote_ids(self) -> Set[str]:
        return {record.remote_id for record in self._records if record.remote_id}

    def filter_by_priority(
        self, priority: Union[str, Priority] = ALL_PRIORITIES
    ) -> List[ScheduleRecord]:
        """
        Return records matching ``priority`` exactly, or all for ``"all"``.

        Unknown priority strings match nothing.
        """
        if isinstance(priority, str) and priority.strip().lower() == ALL_PRIORITIES:
            return list(self._records)

        if isinstance(priority, Priority):
            wanted = priority
        else:
            if str(priority).strip().lower() not in Priority.values():
                return []
            wanted = Priority(str(priority).strip().lower())

        return [record for record in self._records if record.priority is wanted]

    def sorted_records(
        self, records: Optional[Iterable[ScheduleRecord]] = None
    ) -> List[ScheduleRecord]:
        """
        Sort by (date, time) ascending.

        ``sorted`` is stable, so equal timestamps keep insertion order.
        """
        source = self._records if records is None else records
        return sorted(source, key=lambda record: record.sort_key)

    def view(self, priority: Union[str, Priority] = ALL_PRIORITIES) -> List[ScheduleRecord]:
        """Filtered, chronologically sorted records for display."""
        return self.sorted_records(self.filter_by_priority(priority))


def is_overdue(record: ScheduleRecord, now: Optional[datetime] = None) -> bool:
    """Return whether the record's start lies in the past (local time)."""
    reference = now or datetime.now()
    if reference.tzinfo is not None:
        reference = reference.astimezone().replace(tzinfo=None)
    return record.starts_at() < reference


def priority_label(priority: Union[str, Priority]) -> str:
    """Human-readable label, defaulting to the medium label."""
    return PRIORITY_LABELS[Priority.parse(priority)]
