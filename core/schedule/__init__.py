"""Schedule management logic."""

from core.schedule.catalog import ScheduleCatalog
from core.schedule.engine import (
    OperationOutcome,
    OperationResult,
    ReconciliationEngine,
    SyncReport,
)
from core.schedule.models import Priority, ScheduleRecord, SyncStatus
from core.schedule.sync_scheduler import SyncScheduler

__all__ = [
    'OperationOutcome',
    'OperationResult',
    'Priority',
    'ReconciliationEngine',
    'ScheduleCatalog',
    'ScheduleRecord',
    'SyncReport',
    'SyncScheduler',
    'SyncStatus',
]
