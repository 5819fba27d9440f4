"""
Sync Engine - Incremental Snapshot Synchronization

Runs one synchronization pass:
1. Load the checkpoint (resume point) and the previous snapshot (merge base)
2. Iterate pages from lastCompletedPage + 1, normalizing each page into the batch
3. Every flush_every pages: merge the batch, write snapshot, advance checkpoint
4. At the end: merge the rest, remove ids not seen this run, write snapshot,
   clear the checkpoint

A FatalFetchError aborts the run and leaves the last flushed
snapshot/checkpoint pair on disk. A stop_event set by the caller is honored
at page boundaries only: the pending batch is flushed, then SyncInterrupted
is raised.

Usage:
    from apps.syncer.engine import run_sync

    report = await run_sync()
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from apps.syncer.client import ScorecardClient
from apps.syncer.merger import Snapshot, SyncBatch, SyncProgress, merge_snapshot, prune_unseen
from apps.syncer.normalizer import normalize_page, requested_fields
from apps.syncer.paginator import PageQuery, Paginator
from apps.syncer.retrier import BackoffRetrier
from utils.config import Settings, settings as default_settings
from utils.errors import SyncInterrupted
from utils.storage import CheckpointStore, SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of a completed run."""

    snapshot_path: Path
    start_page: int
    pages_fetched: int = 0
    records_fetched: int = 0
    records_dropped: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    total_records: int = 0
    pruned: bool = False
    truncated: bool = False
    elapsed: float = 0.0

    @property
    def resumed(self) -> bool:
        return self.start_page > 1

    @property
    def changed(self) -> bool:
        return (self.added + self.updated + self.removed) > 0


class SyncEngine:
    """Sequential fetch -> normalize -> accumulate -> merge/persist pipeline."""

    def __init__(
        self,
        paginator: Paginator,
        snapshot_store: SnapshotStore,
        checkpoint_store: CheckpointStore,
        flush_every: int = 10,
        prune: bool = True,
        filter_value: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initialize engine.

        Args:
            paginator: Page source
            snapshot_store: Snapshot file
            checkpoint_store: Checkpoint file
            flush_every: Pages accumulated between intermediate flushes
            prune: Remove ids not fetched during a complete run
            filter_value: Active remote filter, recorded in the checkpoint
            stop_event: Cancellation signal checked between pages
        """
        self.paginator = paginator
        self.snapshot_store = snapshot_store
        self.checkpoint_store = checkpoint_store
        self.flush_every = max(flush_every, 1)
        self.prune = prune
        self.filter_value = filter_value
        self.stop_event = stop_event

    def _load_progress(self) -> SyncProgress:
        checkpoint = self.checkpoint_store.load()

        if checkpoint.last_completed_page and checkpoint.filter_value != self.filter_value:
            logger.warning(
                "Checkpoint was written with filter=%r but current filter=%r, restarting from page 1",
                checkpoint.filter_value, self.filter_value,
            )
            return SyncProgress(filter_value=self.filter_value)

        progress = SyncProgress.from_checkpoint(checkpoint)
        progress.filter_value = self.filter_value
        return progress

    def _flush(self, snapshot: Snapshot, batch: SyncBatch, progress: SyncProgress) -> Snapshot:
        """Merge an intermediate batch, persist it and advance the checkpoint."""
        result = merge_snapshot(snapshot, batch.records, prune=False)
        progress.absorb(batch, result.stats)

        self.snapshot_store.save(result.records)
        self.checkpoint_store.save(progress.to_checkpoint())

        logger.info(
            "Flushed batch: pages=%d, last_completed_page=%d, records=%d, added=%d, updated=%d",
            batch.page_count, progress.last_completed_page, len(batch.records),
            result.stats.added, result.stats.updated,
        )
        return result.records

    async def run(self) -> SyncReport:
        """
        Run one synchronization pass.

        Returns:
            SyncReport with change counts for the whole logical run

        Raises:
            FatalFetchError: A page could not be fetched
            SyncInterrupted: stop_event was set; state flushed first
        """
        started = time.monotonic()
        progress = self._load_progress()
        snapshot, snapshot_found = self.snapshot_store.read()

        # pages covered by the checkpoint live only in the snapshot file
        if progress.last_completed_page and not snapshot_found:
            logger.warning(
                "Checkpoint at page %d has no readable snapshot, restarting from page 1",
                progress.last_completed_page,
            )
            self.checkpoint_store.clear()
            progress = SyncProgress(filter_value=self.filter_value)

        start_page = progress.last_completed_page + 1

        report = SyncReport(snapshot_path=self.snapshot_store.path, start_page=start_page)
        logger.info(
            "Starting sync: start_page=%d, snapshot_records=%d, filter=%r",
            start_page, len(snapshot), self.filter_value,
        )

        batch = SyncBatch()
        exhausted = False

        async with aclosing(self.paginator.pages(start_page)) as pages:
            async for page in pages:
                records, dropped = normalize_page(page.records)
                batch = batch.add_page(page.number, records)

                report.pages_fetched += 1
                report.records_fetched += len(records)
                report.records_dropped += dropped

                if page.is_last:
                    exhausted = not page.truncated
                    report.truncated = page.truncated
                    break

                if batch.page_count >= self.flush_every:
                    snapshot = self._flush(snapshot, batch, progress)
                    batch = SyncBatch()

                if self.stop_event is not None and self.stop_event.is_set():
                    if not batch.empty:
                        snapshot = self._flush(snapshot, batch, progress)
                    logger.warning(
                        "Stop requested, leaving checkpoint at page %d",
                        progress.last_completed_page,
                    )
                    raise SyncInterrupted(progress.last_completed_page)

        if not batch.empty:
            final = merge_snapshot(snapshot, batch.records, prune=False)
            progress.absorb(batch, final.stats)
            snapshot = final.records

        stats = progress.stats
        if not self.prune:
            logger.info("Filtered run: keeping records outside this run's result set")
        elif not exhausted:
            logger.warning("Source not fully fetched, skipping removal of unseen records")
        elif not progress.ids_complete:
            logger.warning("Resumed from a checkpoint without seen ids, skipping removal of unseen records")
        else:
            pruned = prune_unseen(snapshot, progress.seen_ids)
            snapshot = pruned.records
            stats = stats + pruned.stats
            report.pruned = True

        self.snapshot_store.save(snapshot)
        self.checkpoint_store.clear()

        report.added = stats.added
        report.updated = stats.updated
        report.removed = stats.removed
        report.total_records = len(snapshot)
        report.elapsed = time.monotonic() - started

        logger.info(
            "Sync complete: pages=%d, fetched=%d, dropped=%d, added=%d, updated=%d, removed=%d, total=%d, elapsed=%.3fs",
            report.pages_fetched, report.records_fetched, report.records_dropped,
            report.added, report.updated, report.removed, report.total_records, report.elapsed,
        )
        return report


def build_engine(
    client: ScorecardClient,
    config: Optional[Settings] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> SyncEngine:
    """Wire a SyncEngine from settings."""
    config = config or default_settings

    query = PageQuery(
        fields=tuple(requested_fields()),
        page_size=config.PAGE_SIZE,
        first_page_index=config.FIRST_PAGE_INDEX,
        filter_field=config.FILTER_FIELD,
        filter_value=config.filter_value,
    )
    retrier = BackoffRetrier(
        max_attempts=config.FETCH_MAX_ATTEMPTS,
        base_delay=config.RATE_LIMIT_BASE_DELAY,
        max_delay=config.RATE_LIMIT_MAX_DELAY,
        error_delay=config.ERROR_RETRY_DELAY,
    )
    paginator = Paginator(
        fetch_page=client.fetch_page,
        retrier=retrier,
        query=query,
        max_pages=config.MAX_PAGES,
        page_delay=config.PAGE_DELAY_SECONDS,
    )

    return SyncEngine(
        paginator=paginator,
        snapshot_store=SnapshotStore(config.SNAPSHOT_FILE),
        checkpoint_store=CheckpointStore(config.CHECKPOINT_FILE),
        flush_every=config.FLUSH_EVERY_PAGES,
        prune=config.prune_removed,
        filter_value=config.filter_value,
        stop_event=stop_event,
    )


async def run_sync(
    config: Optional[Settings] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> SyncReport:
    """
    Run one sync pass with a client built from settings.

    Raises:
        ConfigError: If the API key is missing
        FatalFetchError: If a page could not be fetched
        SyncInterrupted: If stop_event was set mid-run
    """
    config = config or default_settings
    api_key = config.require_api_key()

    async with ScorecardClient(
        api_key=api_key,
        base_url=config.SCORECARD_API_BASE,
        timeout=config.API_TIMEOUT,
    ) as client:
        engine = build_engine(client, config=config, stop_event=stop_event)
        return await engine.run()
