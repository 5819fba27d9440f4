"""
Event Publisher for Syncer Service

Publishes a snapshot_updated event to Redis Pub/Sub after a run that changed
the snapshot, so downstream steps (commit, reload) only act on real changes.

Usage:
    from apps.syncer.publisher import publish_sync_event

    await publish_sync_event(report)
"""

import logging

from apps.syncer.engine import SyncReport
from utils.config import settings
from utils.mq import RedisPublisher
from utils.schemas import SyncEvent

logger = logging.getLogger(__name__)


async def publish_sync_event(report: SyncReport, publisher: RedisPublisher | None = None) -> None:
    """
    Publish a snapshot_updated event for a completed run.

    Args:
        report: Report of the completed run
        publisher: Publisher to use; a new one is created and closed if omitted

    Raises:
        redis.RedisError: If publishing fails
    """
    owns_publisher = publisher is None
    publisher = publisher or RedisPublisher()

    event = SyncEvent(
        path=str(report.snapshot_path),
        added=report.added,
        updated=report.updated,
        removed=report.removed,
        total=report.total_records,
    )

    try:
        await publisher.publish(settings.REDIS_CHANNEL_SYNC, event.model_dump(mode="json"))

        logger.info(
            "Published sync event",
            extra={
                "channel": settings.REDIS_CHANNEL_SYNC,
                "file_path": event.path,
                "message_type": event.type,
            },
        )

    except Exception as e:
        logger.error(
            "Failed to publish event",
            extra={
                "channel": settings.REDIS_CHANNEL_SYNC,
                "file_path": event.path,
                "error": str(e),
            },
        )
        raise

    finally:
        if owns_publisher:
            await publisher.close()
