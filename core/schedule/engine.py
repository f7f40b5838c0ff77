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
Reconciliation engine for ScheduleSync.

Keeps the local schedule catalog consistent with an optional remote
calendar. Local state always wins: remote failures only downgrade a
record's sync status, while storage failures propagate to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional

from core.schedule.catalog import ScheduleCatalog
from core.schedule.models import (
    Priority,
    ScheduleRecord,
    SyncStatus,
    generate_record_id,
    normalize_date,
    normalize_time,
    validate_fields,
)
from utils.time_utils import current_iso_timestamp

if TYPE_CHECKING:
    from data.storage.local_store import LocalStore
    from engines.calendar_sync.base import RemoteCalendarClient, RemoteEventView


logger = logging.getLogger('schedulesync.schedule.engine')


class OperationOutcome(Enum):
    """Result of a mutating operation that reached local storage."""

    SYNCED = "synced"
    LOCAL_ONLY = "local_only"


@dataclass
class OperationResult:
    """Record affected by an operation and how far it got."""

    record: ScheduleRecord
    outcome: OperationOutcome
    error: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.outcome is OperationOutcome.SYNCED


@dataclass
class SyncReport:
    """Summary of one bulk sync pass."""

    pushed: int = 0
    failed: int = 0
    pulled: int = 0
    failed_ids: List[str] = field(default_factory=list)


class ReconciliationEngine:
    """
    Orchestrates schedule mutations against local storage and a remote calendar.

    Responsibilities:
    - create/update/delete with best-effort remote mirroring
    - clear-all with an all-settled remote delete batch
    - single-flight bidirectional bulk sync
    """

    def __init__(
        self,
        store: 'LocalStore',
        client: Optional['RemoteCalendarClient'] = None,
        render_callback: Optional[Callable[[], Any]] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Local persistence for the schedule list
            client: Remote calendar client, None for offline mode
            render_callback: Called after every catalog mutation
        """
        self.store = store
        self.client = client
        self.render_callback = render_callback
        self.catalog = ScheduleCatalog()
        self.sync_in_progress = False

        if self.client is not None:
            self.client.add_auth_listener(self._on_auth_state_changed)

        logger.info(
            "ReconciliationEngine initialized (%s)",
            f"remote: {self.client.get_name()}" if self.client else "offline",
        )

    def load(self) -> List[ScheduleRecord]:
        """Load the persisted catalog, replacing anything held in memory."""
        records = self.store.load()
        self.catalog.replace_all(records)
        logger.info(f"Loaded {len(records)} schedule(s)")
        self._render()
        return self.catalog.records

    def close(self) -> None:
        if self.client is not None:
            self.client.remove_auth_listener(self._on_auth_state_changed)

    def is_remote_connected(self) -> bool:
        return self.client is not None and self.client.is_connected()

    async def create(self, fields: Mapping[str, Any]) -> OperationResult:
        """
        Create a schedule record.

        The record is always kept locally; a failed remote create leaves it
        marked ``failed`` for a later bulk sync.

        Raises:
            ValidationError: If required fields are missing or invalid
            StorageError: If the catalog cannot be persisted
        """
        validate_fields(fields)

        record = ScheduleRecord(
            id=generate_record_id(),
            title=fields['title'].strip(),
            date=normalize_date(fields['date']),
            time=normalize_time(fields['time']),
            description=(fields.get('description') or '').strip(),
            priority=Priority.parse(fields.get('priority')),
            created_at=current_iso_timestamp(),
            sync_status=SyncStatus.PENDING,
        )

        error = None
        if self.is_remote_connected():
            try:
                record.remote_id = await self.client.create_event(record)
                record.sync_status = SyncStatus.SYNCED
            except Exception as e:
                record.sync_status = SyncStatus.FAILED
                error = str(e)
                logger.warning(f"Remote create failed for {record.id}, kept locally: {e}")
        else:
            record.sync_status = self._local_only_status()

        self.catalog.append(record)
        self._persist()
        self._render()

        logger.info(f"Created schedule {record.id} ({record.sync_status.value})")
        return self._result(record, error)

    async def update(
        self, record_id: str, changes: Mapping[str, Any]
    ) -> Optional[OperationResult]:
        """
        Update a schedule record.

        A missing id is a silent no-op returning None. Records without a
        remote id are only updated locally; bulk sync creates them remotely.

        Raises:
            ValidationError: If a provided field is invalid
            StorageError: If the catalog cannot be persisted
        """
        record = self.catalog.find(record_id)
        if record is None:
            logger.warning(f"Update ignored, schedule not found: {record_id}")
            return None

        validate_fields(changes, partial=True)
        record.apply_changes(changes)
        record.sync_status = SyncStatus.PENDING

        error = None
        if self.is_remote_connected() and record.remote_id:
            try:
                remote_id = await self.client.update_event(record.remote_id, record)
                if remote_id:
                    record.remote_id = remote_id
                record.sync_status = SyncStatus.SYNCED
            except Exception as e:
                record.sync_status = SyncStatus.FAILED
                error = str(e)
                logger.warning(f"Remote update failed for {record.id}: {e}")
        else:
            record.sync_status = self._local_only_status()

        self._persist()
        self._render()

        logger.info(f"Updated schedule {record.id} ({record.sync_status.value})")
        return self._result(record, error)

    async def delete(self, record_id: str) -> Optional[OperationResult]:
        """
        Delete a schedule record.

        The remote delete is best effort; the record is removed locally
        whatever its outcome. A missing id is a silent no-op returning None.

        Raises:
            StorageError: If the catalog cannot be persisted
        """
        record = self.catalog.find(record_id)
        if record is None:
            logger.warning(f"Delete ignored, schedule not found: {record_id}")
            return None

        outcome = OperationOutcome.SYNCED
        error = None
        if record.remote_id:
            if self.is_remote_connected():
                try:
                    await self.client.delete_event(record.remote_id)
                except Exception as e:
                    outcome = OperationOutcome.LOCAL_ONLY
                    error = str(e)
                    logger.warning(
                        f"Remote delete failed for {record.id} ({record.remote_id}): {e}"
                    )
            else:
                outcome = OperationOutcome.LOCAL_ONLY
                logger.info(f"Remote event {record.remote_id} left in place (offline)")

        if record.id in self.catalog:
            self.catalog.remove(record.id)
        self._persist()
        self._render()

        logger.info(f"Deleted schedule {record.id}")
        return OperationResult(record, outcome, error)

    async def clear_all(self) -> OperationOutcome:
        """
        Remove every record.

        Remote deletes run concurrently and are all awaited before the local
        catalog is emptied; their failures never prevent the clear.

        Raises:
            StorageError: If the empty catalog cannot be persisted
        """
        remote_ids = [record.remote_id for record in self.catalog if record.remote_id]
        failures = 0

        if remote_ids and self.is_remote_connected():
            results = await asyncio.gather(
                *(self.client.delete_event(remote_id) for remote_id in remote_ids),
                return_exceptions=True,
            )
            for remote_id, result in zip(remote_ids, results):
                if isinstance(result, BaseException):
                    failures += 1
                    logger.warning(f"Remote delete failed for {remote_id}: {result}")
        else:
            failures = len(remote_ids)

        count = len(self.catalog)
        self.catalog.clear()
        self._persist()
        self._render()

        logger.info(
            f"Cleared {count} schedule(s); {failures} remote delete(s) not completed"
        )
        return OperationOutcome.LOCAL_ONLY if failures else OperationOutcome.SYNCED

    async def sync(self) -> Optional[SyncReport]:
        """
        Run a bidirectional sync with the remote calendar.

        Returns None without side effects when the client is not connected
        or another sync is already running.

        Raises:
            RemoteError: If the remote event list cannot be fetched
            StorageError: If the catalog cannot be persisted
        """
        if not self.is_remote_connected():
            logger.info("Sync skipped: remote calendar not connected")
            return None

        if self.sync_in_progress:
            logger.info("Sync skipped: already in progress")
            return None

        self.sync_in_progress = True
        try:
            remote_events = await self.client.list_events()
            report = SyncReport()

            candidates = [record for record in self.catalog if record.sync_status.needs_push]
            self._adopt_remote_ids(candidates, remote_events)
            pushed_values = {record.id: record.editable_values() for record in candidates}

            results = await asyncio.gather(
                *(self._push(record) for record in candidates),
                return_exceptions=True,
            )
            for record, result in zip(candidates, results):
                if record.editable_values() != pushed_values[record.id]:
                    # edited while the push was in flight; the edit set its own status
                    logger.info(
                        f"Schedule {record.id} changed during sync, "
                        f"left {record.sync_status.value}"
                    )
                    continue
                if isinstance(result, BaseException):
                    record.sync_status = SyncStatus.FAILED
                    report.failed += 1
                    report.failed_ids.append(record.id)
                    logger.warning(f"Sync push failed for {record.id}: {result}")
                else:
                    record.sync_status = SyncStatus.SYNCED
                    report.pushed += 1

            report.pulled = self._merge_remote_events(remote_events)

            self._persist()
            self._render()

            logger.info(
                f"Sync finished: pushed={report.pushed}, failed={report.failed}, "
                f"pulled={report.pulled}"
            )
            return report
        finally:
            self.sync_in_progress = False

    async def _push(self, record: ScheduleRecord) -> str:
        if record.remote_id:
            remote_id = await self.client.update_event(record.remote_id, record)
        else:
            remote_id = await self.client.create_event(record)

        if remote_id:
            record.remote_id = remote_id
        return record.remote_id

    def _adopt_remote_ids(
        self, candidates: List[ScheduleRecord], remote_events: List['RemoteEventView']
    ) -> None:
        """
        Attach remote ids to candidates the remote side already knows.

        A previous create may have succeeded remotely without its response
        reaching us; pushing it again would duplicate the event.
        """
        by_app_id = {event.app_id: event for event in remote_events if event.app_id}
        for record in candidates:
            event = by_app_id.get(record.id)
            if not record.remote_id and event is not None:
                record.remote_id = event.remote_id
                logger.debug(f"Adopted remote id {event.remote_id} for {record.id}")

    def _merge_remote_events(self, remote_events: List['RemoteEventView']) -> int:
        """Append remote-origin events. Returns the number added."""
        known = self.catalog.known_remote_ids()
        added = 0

        for event in remote_events:
            if event.remote_id in known:
                continue

            if event.app_id:
                existing = self.catalog.find(event.app_id)
                if existing is not None:
                    if not existing.remote_id:
                        existing.remote_id = event.remote_id
                    known.add(event.remote_id)
                    continue

            record = self._record_from_remote(event)
            self.catalog.append(record)
            known.add(event.remote_id)
            added += 1
            logger.debug(f"Pulled remote event {event.remote_id} as {record.id}")

        return added

    def _record_from_remote(self, event: 'RemoteEventView') -> ScheduleRecord:
        record_id = generate_record_id()
        for candidate in (event.app_id, event.remote_id):
            if candidate and candidate not in self.catalog:
                record_id = candidate
                break

        return ScheduleRecord(
            id=record_id,
            remote_id=event.remote_id,
            title=event.title,
            description=event.description or '',
            date=event.date,
            time=event.time,
            priority=event.priority,
            created_at=event.created_at or current_iso_timestamp(),
            sync_status=SyncStatus.SYNCED,
        )

    def _local_only_status(self) -> SyncStatus:
        return SyncStatus.PENDING if self.client is not None else SyncStatus.OFFLINE

    def _result(self, record: ScheduleRecord, error: Optional[str]) -> OperationResult:
        outcome = (
            OperationOutcome.SYNCED
            if record.sync_status is SyncStatus.SYNCED
            else OperationOutcome.LOCAL_ONLY
        )
        return OperationResult(record, outcome, error)

    def _persist(self) -> None:
        self.store.save(self.catalog.records)

    def _render(self) -> None:
        if self.render_callback is None:
            return
        try:
            self.render_callback()
        except Exception as e:
            logger.error(f"Render callback failed: {e}", exc_info=True)

    def _on_auth_state_changed(self, connected: bool) -> None:
        logger.info(f"Remote calendar {'connected' if connected else 'disconnected'}")
        self._render()
