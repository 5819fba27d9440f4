"""
Persistence Utilities - Snapshot and Checkpoint Files

Reads and writes the two pieces of persistent state the syncer owns:
- the snapshot file: JSON array of canonical records ordered by id
- the checkpoint file: JSON object recording the last completed page

Every write replaces the whole file (temp file in the same directory, then
os.replace), so readers see either the previous or the new content.
Reads never raise for a missing or corrupt file; they fall back to the
empty default and log it.
"""

import logging
import os
import tempfile
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any

import orjson
from pydantic import ValidationError

from utils.errors import ParseError
from utils.schemas import Checkpoint, RecordId, is_record_id

logger = logging.getLogger(__name__)

SNAPSHOT_JSON_OPTIONS = orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE


def id_sort_key(record_id: RecordId) -> tuple[int, Any]:
    """Sort key placing numeric ids first (numerically), then string ids."""
    if isinstance(record_id, int) and not isinstance(record_id, bool):
        return (0, record_id)
    return (1, str(record_id))


def order_by_id(records: Mapping[RecordId, dict[str, Any]]) -> dict[RecordId, dict[str, Any]]:
    """Return a new mapping with keys in ascending id order."""
    return {record_id: records[record_id] for record_id in sorted(records, key=id_sort_key)}


def write_atomic(path: Path, payload: bytes) -> None:
    """
    Replace the file at path with payload in a single rename.

    Args:
        path: Destination file
        payload: Complete file contents

    Raises:
        OSError: If the temp file cannot be written or renamed
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def _read_json(path: Path) -> Any:
    try:
        return orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path}: {e}", path=str(path)) from e
    except OSError as e:
        raise ParseError(f"Failed to read {path}: {e}", path=str(path)) from e


class SnapshotStore:
    """Loads and saves the full snapshot file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> tuple[dict[RecordId, dict[str, Any]], bool]:
        """
        Load the snapshot and report whether a readable file backed it.

        Returns:
            Tuple of (mapping ordered by id, found). found is False when the
            file is missing or unreadable and the mapping is the empty default.
        """
        if not self.path.exists():
            logger.info("No snapshot found, starting fresh: path=%s", self.path)
            return {}, False

        try:
            data = _read_json(self.path)
            if not isinstance(data, list):
                raise ParseError(
                    f"Snapshot must be a JSON array, got {type(data).__name__}",
                    path=str(self.path),
                )
        except ParseError as e:
            logger.warning("Discarding unreadable snapshot, starting fresh: %s", e)
            return {}, False

        records: dict[RecordId, dict[str, Any]] = {}
        skipped = 0
        for entry in data:
            if not isinstance(entry, dict) or not is_record_id(entry.get("id")):
                skipped += 1
                continue
            records[entry["id"]] = entry

        if skipped:
            logger.warning("Skipped %d snapshot entries without a usable id: path=%s", skipped, self.path)

        logger.info("Loaded snapshot: path=%s, records=%d", self.path, len(records))
        return order_by_id(records), True

    def load(self) -> dict[RecordId, dict[str, Any]]:
        """Load the snapshot as an id -> record mapping; empty if missing or unreadable."""
        records, _ = self.read()
        return records

    def save(self, records: Mapping[RecordId, dict[str, Any]]) -> Path:
        """
        Write the snapshot as a pretty-printed JSON array ordered by id.

        Args:
            records: id -> record mapping

        Returns:
            Path of the written file
        """
        ordered = order_by_id(records)
        write_atomic(self.path, orjson.dumps(list(ordered.values()), option=SNAPSHOT_JSON_OPTIONS))
        logger.debug("Snapshot written: path=%s, records=%d", self.path, len(ordered))
        return self.path


class CheckpointStore:
    """Loads, advances and clears the checkpoint file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Checkpoint:
        """
        Load the checkpoint.

        Returns:
            Stored checkpoint, or Checkpoint() (page 0) if missing or unreadable
        """
        if not self.path.exists():
            return Checkpoint()

        try:
            checkpoint = Checkpoint.model_validate(_read_json(self.path))
        except ParseError as e:
            logger.warning("Discarding unreadable checkpoint: %s", e)
            return Checkpoint()
        except ValidationError as e:
            logger.warning(
                "Discarding invalid checkpoint: path=%s, error=%s",
                self.path, str(e).split("\n")[0],
            )
            return Checkpoint()

        logger.info(
            "Found checkpoint from interrupted run: path=%s, last_completed_page=%d",
            self.path, checkpoint.last_completed_page,
        )
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        write_atomic(self.path, orjson.dumps(checkpoint.model_dump(by_alias=True)))
        logger.debug(
            "Checkpoint advanced: path=%s, last_completed_page=%d",
            self.path, checkpoint.last_completed_page,
        )

    def clear(self) -> None:
        """Remove the checkpoint file; a missing file is not an error."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Checkpoint cleared: path=%s", self.path)
