"""World backup, restore and retention."""
from .models import BackupRecord, BackupResult, BackupStats, RestoreResult, RetentionPolicy
from .orchestrator import BackupOrchestrator
from .retention import select_for_deletion

__all__ = [
    "BackupOrchestrator",
    "BackupRecord",
    "BackupResult",
    "BackupStats",
    "RestoreResult",
    "RetentionPolicy",
    "select_for_deletion",
]
