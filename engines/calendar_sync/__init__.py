"""Remote calendar clients."""

import logging
from typing import Optional

from engines.calendar_sync.base import RemoteCalendarClient, RemoteEventView
from engines.calendar_sync.google_calendar import (
    GoogleCalendarClient,
    build_event_payload,
    parse_event_item,
)

logger = logging.getLogger('schedulesync.calendar_sync')


def create_remote_client(config, token_store=None) -> Optional[RemoteCalendarClient]:
    """
    Build the remote client selected by ``calendar.provider``.

    Returns None for the ``none`` provider (offline mode).
    """
    provider = config.get('calendar.provider', 'none')

    if provider == 'none':
        logger.info("No remote calendar configured; running offline")
        return None

    if provider == 'google':
        return GoogleCalendarClient(
            token_store=token_store,
            calendar_name=config.get('calendar.calendar_name'),
            calendar_description=config.get('calendar.calendar_description', ''),
            calendar_color=config.get('calendar.calendar_color'),
            time_zone=config.get('calendar.time_zone'),
            max_results=config.get('calendar.max_results', 1000),
            http_client_config={
                'timeout': config.get('http.timeout', 30.0),
                'max_retries': config.get('http.max_retries', 3),
                'base_delay': config.get('http.base_delay', 1.0),
            },
        )

    raise ValueError(f"Unsupported calendar provider: {provider}")


__all__ = [
    'GoogleCalendarClient',
    'RemoteCalendarClient',
    'RemoteEventView',
    'build_event_payload',
    'create_remote_client',
    'parse_event_item',
]
