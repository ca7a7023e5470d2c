"""
External roster reconciliation engine

Keeps the local member table consistent with the spreadsheet roster.

Components:
- Retry with exponential backoff and a circuit breaker around roster calls
- Connectivity probe choosing full or database-only runs
- Row reconciliation (pull) and approved-member push
- Duplicate removal and missing-field repair
- Run status and history for observability
"""

from .types import SyncMode, SyncOptions, SyncRun
from .health_probe import ConnectionHealthProbe, HealthProbeResult
from .reconciler import RecordReconciler, ReconcileAction, ReconcileResult, parse_row
from .integrity import IntegrityMaintainer, IntegrityReport
from .status_store import SyncStatusStore
from .orchestrator import SyncOrchestrator
from .control import SyncControl, build_sync_control

__all__ = [
    'SyncMode',
    'SyncOptions',
    'SyncRun',
    'ConnectionHealthProbe',
    'HealthProbeResult',
    'RecordReconciler',
    'ReconcileAction',
    'ReconcileResult',
    'parse_row',
    'IntegrityMaintainer',
    'IntegrityReport',
    'SyncStatusStore',
    'SyncOrchestrator',
    'SyncControl',
    'build_sync_control',
]
