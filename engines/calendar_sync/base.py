"""
Base class for remote calendar clients.

Defines the interface the reconciliation engine depends on, plus the
auth-state observer plumbing shared by every implementation.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

from core.schedule.models import Priority, ScheduleRecord

AuthListener = Callable[[bool], None]


@dataclass(frozen=True)
class RemoteEventView:
    """Remote event as seen by the engine, already mapped to local fields."""

    remote_id: str
    title: str
    date: str
    time: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    app_id: Optional[str] = None
    created_at: Optional[str] = None


class RemoteCalendarClient(ABC):
    """
    Abstract base class for remote calendar clients.

    Implementations raise ``RemoteError`` for every failed remote call.
    Auth listeners are called with the new connected state, once per
    transition.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._connected = False
        self._auth_listeners: List[AuthListener] = []
        self.logger = logger or logging.getLogger(
            f"schedulesync.calendar_sync.{self.get_name()}"
        )

    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    async def sign_in(
        self, access_token: Optional[str] = None, expires_in: Optional[int] = None
    ) -> bool:
        """
        Connect to the remote calendar.

        Args:
            access_token: Fresh credential; implementations may fall back
                          to a stored one
            expires_in: Credential lifetime in seconds, if known

        Returns:
            True when the client is connected afterwards
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    async def create_event(self, record: ScheduleRecord) -> str:
        """
        Create a remote event for ``record``.

        Returns:
            The remote event id
        """
        pass

    @abstractmethod
    async def update_event(self, remote_id: str, record: ScheduleRecord) -> str:
        """
        Overwrite the remote event ``remote_id`` with ``record``.

        Raises RemoteError (not-found included) if the event is gone.
        """
        pass

    @abstractmethod
    async def delete_event(self, remote_id: str) -> None:
        """Delete a remote event. A missing event counts as deleted."""
        pass

    @abstractmethod
    async def list_events(self) -> List[RemoteEventView]:
        """
        List upcoming events.

        Only future, non-cancelled, single events, ordered by start.
        """
        pass

    def get_name(self) -> str:
        """Provider name (e.g. 'google')."""
        return self.__class__.__name__.lower().replace('calendarclient', '')

    def add_auth_listener(self, listener: AuthListener) -> None:
        if listener not in self._auth_listeners:
            self._auth_listeners.append(listener)

    def remove_auth_listener(self, listener: AuthListener) -> None:
        if listener in self._auth_listeners:
            self._auth_listeners.remove(listener)

    def _set_connected(self, connected: bool) -> None:
        """Update the auth state, notifying listeners only on a transition."""
        if connected == self._connected:
            return

        self._connected = connected
        self.logger.info(
            "%s calendar %s", self.get_name(), "connected" if connected else "disconnected"
        )
        for listener in list(self._auth_listeners):
            try:
                listener(connected)
            except Exception as exc:
                self.logger.error("Auth listener failed: %s", exc, exc_info=True)

    async def close(self) -> None:
        """Release transport resources. Default: nothing to release."""
        pass
