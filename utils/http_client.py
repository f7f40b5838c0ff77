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
Retrying async HTTP transport for the remote calendar clients.

Transient failures (timeouts, dropped connections, 408/429/5xx) are retried
with exponential backoff; everything else is raised to the caller as the
original ``httpx`` exception.
"""

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx


logger = logging.getLogger("schedulesync.http")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError)


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """
    Seconds requested by a ``Retry-After`` header.

    Accepts both the delta-seconds and the HTTP-date form. Returns None when
    the header is absent or unreadable.
    """
    value = response.headers.get("Retry-After")
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable Retry-After header: %s", value)
        return None
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


class AsyncRetryableHttpClient:
    """httpx.AsyncClient wrapper that retries transient failures."""

    def __init__(
        self,
        max_retries: int = 3,
        timeout: float = 30.0,
        base_delay: float = 1.0,
        max_retry_after: Optional[float] = 60.0,
        **client_kwargs
    ):
        """
        Args:
            max_retries: Retries after the first attempt
            timeout: Per-request timeout in seconds
            base_delay: First backoff delay; doubles on every retry
            max_retry_after: Longest ``Retry-After`` wait honoured, None for no cap
            **client_kwargs: Passed to httpx.AsyncClient (``transport`` in tests)
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_retry_after = max_retry_after

        client_kwargs.setdefault("timeout", timeout)
        self.client = httpx.AsyncClient(**client_kwargs)

    async def close(self):
        await self.client.aclose()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request and return the successful response.

        Raises:
            httpx.HTTPStatusError: Non-retryable status, or retries exhausted
            httpx.TransportError: Network failure after the last retry
        """
        attempt = 0
        while True:
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError,) + TRANSIENT_ERRORS as e:
                delay = self._retry_delay(e, attempt)
                if delay is None:
                    raise
                attempt += 1
                logger.warning(
                    "%s %s failed (%s), retry %s/%s in %.1fs",
                    method, url, _describe(e), attempt, self.max_retries, delay,
                )
                await asyncio.sleep(delay)

    def _retry_delay(self, error: Exception, attempt: int) -> Optional[float]:
        """Seconds to wait before the next attempt, or None to give up."""
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status not in RETRYABLE_STATUS_CODES:
                return None
        else:
            status = None

        if attempt >= self.max_retries:
            logger.error("Giving up after %s retries: %s", attempt, _describe(error))
            return None

        if status == 429:
            retry_after = parse_retry_after(error.response)
            if retry_after is not None:
                if self.max_retry_after is not None and retry_after > self.max_retry_after:
                    logger.error(
                        "Rate limited for %.0fs, longer than the %.0fs limit",
                        retry_after, self.max_retry_after,
                    )
                    return None
                return retry_after

        return self.base_delay * (2 ** attempt)


def _describe(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    return type(error).__name__
