"""
Syncer App - Incremental Snapshot Synchronization

Responsibilities:
- Scheduled execution (weekly cron via APScheduler) or RUN_ONCE
- Sequential pagination over the College Scorecard schools API
- Rate-limit-aware retry with backoff (tenacity)
- Normalization of each school into a flat, null-complete record
- Delta merge against the previous snapshot (added / updated / removed)
- Checkpointed resumption of interrupted runs
- Optional Redis Pub/Sub event when the snapshot changed

Output:
- data/filtered_data.json (JSON array ordered by id)
- data/state/checkpoint.json while a run is in flight or was interrupted
- Redis event: channel=snapshot.updated, payload={type, path, ts, added, updated, removed, total}
"""
