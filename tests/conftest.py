# SPDX-License-Identifier: Apache-2.0
"""
Pytest configuration and shared fakes for ScheduleSync tests.
"""

import asyncio
from typing import Dict, List, Optional, Set

import pytest

from core.schedule.exceptions import RemoteError
from core.schedule.models import Priority, ScheduleRecord
from data.storage.local_store import InMemoryLocalStore
from engines.calendar_sync.base import RemoteCalendarClient, RemoteEventView


class FakeRemoteClient(RemoteCalendarClient):
    """In-memory remote calendar that records every call."""

    def __init__(self, connected: bool = True):
        super().__init__()
        self._connected = connected
        self.events: Dict[str, RemoteEventView] = {}
        self.calls: List[tuple] = []
        self.fail_ops: Set[str] = set()
        self.fail_record_ids: Set[str] = set()
        self.list_gate: Optional[asyncio.Event] = None
        self.push_gate: Optional[asyncio.Event] = None
        self._counter = 0

    def get_name(self) -> str:
        return "fake"

    async def sign_in(self, access_token=None, expires_in=None) -> bool:
        self._set_connected(True)
        return True

    async def sign_out(self) -> None:
        self._set_connected(False)

    async def create_event(self, record: ScheduleRecord) -> str:
        self.calls.append(("create", record.id))
        await asyncio.sleep(0)
        if self.push_gate is not None:
            await self.push_gate.wait()
        if "create" in self.fail_ops or record.id in self.fail_record_ids:
            raise RemoteError("create failed", status_code=503)

        self._counter += 1
        remote_id = f"remote-{self._counter}"
        self.events[remote_id] = self._view(remote_id, record)
        return remote_id

    async def update_event(self, remote_id: str, record: ScheduleRecord) -> str:
        self.calls.append(("update", remote_id))
        await asyncio.sleep(0)
        if "update" in self.fail_ops or record.id in self.fail_record_ids:
            raise RemoteError("update failed", status_code=503)
        if remote_id not in self.events:
            raise RemoteError("not found", status_code=404)

        self.events[remote_id] = self._view(remote_id, record)
        return remote_id

    async def delete_event(self, remote_id: str) -> None:
        self.calls.append(("delete", remote_id))
        await asyncio.sleep(0)
        if "delete" in self.fail_ops:
            raise RemoteError("delete failed", status_code=500)
        self.events.pop(remote_id, None)

    async def list_events(self) -> List[RemoteEventView]:
        self.calls.append(("list", None))
        if self.list_gate is not None:
            await self.list_gate.wait()
        if "list" in self.fail_ops:
            raise RemoteError("list failed", status_code=503)
        return sorted(self.events.values(), key=lambda event: (event.date, event.time))

    def add_remote_event(
        self,
        remote_id: str,
        title: str = "Remote meeting",
        date: str = "2030-01-15",
        time: str = "10:00",
        priority: Priority = Priority.MEDIUM,
        app_id: Optional[str] = None,
        description: str = "",
    ) -> RemoteEventView:
        event = RemoteEventView(
            remote_id=remote_id,
            title=title,
            date=date,
            time=time,
            description=description,
            priority=priority,
            app_id=app_id,
            created_at="2029-12-01T08:00:00Z",
        )
        self.events[remote_id] = event
        return event

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    @staticmethod
    def _view(remote_id: str, record: ScheduleRecord) -> RemoteEventView:
        return RemoteEventView(
            remote_id=remote_id,
            title=record.title,
            date=record.date,
            time=record.time,
            description=record.description,
            priority=record.priority,
            app_id=record.id,
            created_at=record.created_at,
        )


@pytest.fixture
def fake_client():
    """Connected fake remote client."""
    return FakeRemoteClient(connected=True)


@pytest.fixture
def memory_store():
    """Empty in-memory local store."""
    return InMemoryLocalStore()


@pytest.fixture
def client_factory():
    """Build fake remote clients with a chosen connection state."""
    return FakeRemoteClient
