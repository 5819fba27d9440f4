"""
Pydantic Schemas - Data Validation Models

Defines the Pydantic schemas used throughout the sync pipeline:
- API page responses
- Checkpoint state file
- Redis Pub/Sub messages

Usage:
    from utils.schemas import PageResult

    page = PageResult.model_validate(response.json())
    total = page.metadata.total
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RecordId = Union[int, str]


def is_record_id(value: Any) -> bool:
    """True for a usable record id: an int (not bool) or a non-blank str."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and bool(value.strip())


class PageMetadata(BaseModel):
    """Paging metadata returned alongside each page of results."""

    model_config = ConfigDict(extra="ignore")

    total: Optional[int] = Field(default=None, ge=0, description="Total matching records")
    page: Optional[int] = Field(default=None, description="Remote page index")
    per_page: Optional[int] = Field(default=None, description="Page size")


class PageResult(BaseModel):
    """One page of the remote response.

    Example:
    {
        "metadata": {"total": 6543, "page": 0, "per_page": 100},
        "results": [{"id": 100654, "school.name": "Alabama A & M University", ...}]
    }

    Entries of results are kept untyped; malformed ones are dropped by the
    normalizer rather than failing the whole page.
    """

    model_config = ConfigDict(extra="ignore")

    results: list[Any] = Field(default_factory=list, description="Raw records")
    metadata: PageMetadata = Field(default_factory=PageMetadata)


class Checkpoint(BaseModel):
    """Checkpoint file contents.

    Format:
    {
        "lastCompletedPage": 20,
        "seenIds": [100654, 100663, ...],
        "added": 12,
        "updated": 3,
        "filterValue": null
    }

    Only lastCompletedPage is required; the remaining keys carry the
    interrupted run's progress so a resumed run finishes it exactly.
    seenIds is null when the ids of the completed pages are unknown.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    last_completed_page: int = Field(default=0, ge=0, alias="lastCompletedPage")
    seen_ids: Optional[list[RecordId]] = Field(default=None, alias="seenIds")
    added: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    filter_value: Optional[str] = Field(default=None, alias="filterValue")


class SyncEvent(BaseModel):
    """Redis Pub/Sub event payload published after a run changed the snapshot.

    {
        "type": "snapshot_updated",
        "path": "data/filtered_data.json",
        "ts": "2025-01-19T03:15:02Z",
        "added": 4, "updated": 17, "removed": 1, "total": 6543
    }
    """

    type: str = Field(default="snapshot_updated", description="Event type")
    path: str = Field(..., description="Snapshot file path")
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp")
    added: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
