from .Sync_Triggers import AppStateMonitor, ConnectivityMonitor, SyncTriggerChannel, TriggerReason
from .Sync_Engine import SyncEngine, SyncFailure, SyncPhase, SyncReport, SyncStatus, PULL_COLLECTIONS

__all__ = [
    "AppStateMonitor", "ConnectivityMonitor", "SyncTriggerChannel", "TriggerReason",
    "SyncEngine", "SyncFailure", "SyncPhase", "SyncReport", "SyncStatus", "PULL_COLLECTIONS",
]
