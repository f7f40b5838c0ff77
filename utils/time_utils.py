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
"""Time utilities for ScheduleSync."""

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("schedulesync.utils.time_utils")

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


def now_utc() -> datetime:
    """Get current datetime with UTC timezone."""
    return datetime.now(timezone.utc)


def now_local() -> datetime:
    """Get current datetime in system local timezone (aware)."""
    return now_utc().astimezone()


def current_iso_timestamp() -> str:
    """Get current UTC timestamp as ISO 8601 string with 'Z' suffix."""
    return now_utc().isoformat().replace("+00:00", "Z")


def resolve_timezone(name: Optional[str] = None):
    """
    Return the tzinfo used at the remote boundary.

    A configured IANA name wins; otherwise the process-local zone is used.
    """
    if name:
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logger.warning("Unknown time zone %s; using process-local zone", name)
    return now_local().tzinfo


def combine_local(date_value: str, time_value: str, tz=None) -> datetime:
    """
    Combine ``YYYY-MM-DD`` and ``HH:MM`` strings into an aware datetime.

    Raises:
        ValueError: If either value is malformed
    """
    naive = datetime.strptime(f"{date_value} {time_value}", f"{DATE_FORMAT} {TIME_FORMAT}")
    if tz is None:
        # astimezone() on a naive value interprets it as process-local time
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO 8601 string, accepting a trailing 'Z'."""
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return datetime.fromisoformat(text)


def split_local(value: datetime, tz=None):
    """
    Split a datetime into local ``(date, time)`` strings.

    Naive values are taken as already local.
    """
    if value.tzinfo is not None:
        value = value.astimezone(tz) if tz is not None else value.astimezone()
    return value.strftime(DATE_FORMAT), value.strftime(TIME_FORMAT)
