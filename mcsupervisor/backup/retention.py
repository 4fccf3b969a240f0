"""Retention selection. Pure: decides what to delete, never deletes."""
from __future__ import annotations

from typing import Iterable

from .models import BackupRecord, RetentionPolicy


def select_for_deletion(records: Iterable[BackupRecord], policy: RetentionPolicy) -> list[BackupRecord]:
    """Oldest first: trim to ``max_count``, then to ``max_total_bytes``.

    The newest backup always survives, even when it alone exceeds the size bound.
    """
    survivors = sorted(records, key=lambda r: r.created_at)
    doomed: list[BackupRecord] = []

    while len(survivors) > max(policy.max_count, 1):
        doomed.append(survivors.pop(0))

    total = sum(r.size_bytes for r in survivors)
    while total > policy.max_total_bytes and len(survivors) > 1:
        oldest = survivors.pop(0)
        total -= oldest.size_bytes
        doomed.append(oldest)
    return doomed
