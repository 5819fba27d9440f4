"""
Snapshot Merger - Delta Merge Against the Previous Snapshot

merge_snapshot() applies a fetched batch to the previous snapshot:
- ids new to the snapshot count as added
- ids whose serialized record changed count as updated
- with prune=True, ids absent from the batch are removed and counted

The engine merges intermediate batches with prune=False and removes the ids
never seen during the run at the end (prune_unseen), which gives the same
full-replacement result while holding only a few pages of new records.
SyncBatch and SyncProgress are the explicit values threaded through the
engine loop.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import orjson

from utils.schemas import Checkpoint, RecordId
from utils.storage import id_sort_key, order_by_id

Snapshot = dict[RecordId, dict[str, Any]]


@dataclass
class MergeStats:
    """Change counts of one merge (or of a whole run)."""

    added: int = 0
    updated: int = 0
    removed: int = 0

    @property
    def changed(self) -> int:
        return self.added + self.updated + self.removed

    def __add__(self, other: "MergeStats") -> "MergeStats":
        return MergeStats(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            removed=self.removed + other.removed,
        )


@dataclass
class MergeResult:
    records: Snapshot
    stats: MergeStats


def record_fingerprint(record: Mapping[str, Any]) -> bytes:
    """Key-order independent serialization used to detect updates."""
    return orjson.dumps(record, option=orjson.OPT_SORT_KEYS)


def merge_snapshot(
    previous: Mapping[RecordId, dict[str, Any]],
    batch: Mapping[RecordId, dict[str, Any]],
    prune: bool = True,
) -> MergeResult:
    """
    Merge a fetched batch into the previous snapshot.

    Args:
        previous: Snapshot before the merge (id -> record); not mutated
        batch: Newly fetched records (id -> record)
        prune: Remove ids of previous that are absent from batch

    Returns:
        MergeResult with records ordered by ascending id
    """
    merged: Snapshot = dict(previous)
    stats = MergeStats()

    for record_id, record in batch.items():
        if record_id not in previous:
            stats.added += 1
        elif record_fingerprint(previous[record_id]) != record_fingerprint(record):
            stats.updated += 1
        merged[record_id] = record

    if prune:
        for record_id in previous:
            if record_id not in batch:
                del merged[record_id]
                stats.removed += 1

    return MergeResult(records=order_by_id(merged), stats=stats)


def prune_unseen(snapshot: Mapping[RecordId, dict[str, Any]], seen_ids: Iterable[RecordId]) -> MergeResult:
    """
    Drop every id of snapshot that was not fetched during the run.

    Returns:
        MergeResult whose stats only carry the removed count
    """
    seen = set(seen_ids)
    kept = {record_id: record for record_id, record in snapshot.items() if record_id in seen}
    return MergeResult(
        records=order_by_id(kept),
        stats=MergeStats(removed=len(snapshot) - len(kept)),
    )


@dataclass
class SyncBatch:
    """Records fetched since the last flush."""

    records: Snapshot = field(default_factory=dict)
    page_count: int = 0
    last_page: int = 0

    def add_page(self, page_number: int, records: Mapping[RecordId, dict[str, Any]]) -> "SyncBatch":
        self.records.update(records)
        self.page_count += 1
        self.last_page = page_number
        return self

    @property
    def empty(self) -> bool:
        return self.page_count == 0


@dataclass
class SyncProgress:
    """Run-level progress, persisted in the checkpoint between flushes."""

    last_completed_page: int = 0
    seen_ids: set[RecordId] = field(default_factory=set)
    stats: MergeStats = field(default_factory=MergeStats)
    filter_value: str | None = None
    # False when resuming from a checkpoint that did not record its ids
    ids_complete: bool = True

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "SyncProgress":
        return cls(
            last_completed_page=checkpoint.last_completed_page,
            seen_ids=set(checkpoint.seen_ids or ()),
            stats=MergeStats(added=checkpoint.added, updated=checkpoint.updated),
            filter_value=checkpoint.filter_value,
            ids_complete=checkpoint.seen_ids is not None or checkpoint.last_completed_page == 0,
        )

    def to_checkpoint(self) -> Checkpoint:
        return Checkpoint(
            last_completed_page=self.last_completed_page,
            seen_ids=sorted(self.seen_ids, key=id_sort_key) if self.ids_complete else None,
            added=self.stats.added,
            updated=self.stats.updated,
            filter_value=self.filter_value,
        )

    def absorb(self, batch: SyncBatch, stats: MergeStats) -> None:
        """Record a flushed batch."""
        self.last_completed_page = batch.last_page
        self.seen_ids.update(batch.records)
        self.stats = self.stats + stats
