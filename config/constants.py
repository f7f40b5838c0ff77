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
Application-wide constants for ScheduleSync.

This module contains constants used across multiple modules to avoid
hardcoded values throughout the codebase.
"""

# ============================================================================
# Storage Constants
# ============================================================================

# Versioned keys for the persisted schedule list
SCHEDULES_STORAGE_KEY = "schedules.v2"
LEGACY_SCHEDULES_STORAGE_KEY = "schedules"

DATABASE_CONNECTION_TIMEOUT_SECONDS = 30.0
FILE_PERMISSION_OWNER_RW = 0o600  # Owner read/write only

# ============================================================================
# Calendar Constants
# ============================================================================

# Remote events always last one hour
DEFAULT_EVENT_DURATION_MINUTES = 60

DEFAULT_SYNC_INTERVAL_MINUTES = 15
MAX_SYNC_RETRY_ATTEMPTS = 3

UNTITLED_EVENT_TITLE = "Untitled"

# Google Calendar colorId per priority
PRIORITY_COLOR_IDS = {
    "high": "11",  # red
    "medium": "5",  # yellow
    "low": "2",  # green
}
FALLBACK_COLOR_ID = "1"

# Keys inside extendedProperties.private
PRIVATE_PRIORITY_KEY = "priority"
PRIVATE_APP_ID_KEY = "scheduleAppId"

# ============================================================================
# Logging Constants
# ============================================================================

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB log file size
LOG_FILE_BACKUP_COUNT = 5
