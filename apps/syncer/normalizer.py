"""
Record Normalizer - Raw School -> Canonical Record

Flattens one raw Scorecard result into the canonical record shape:
- every canonical field is present; missing remote values become None
- remote paths resolve against dotted flat keys ("school.name", which is how
  the API answers a fields= request) as well as nested objects
- program entries are projected field by field, deduplicated, falsy values dropped

Records without an id are rejected with RecordShapeError; normalize_page
drops those and keeps the rest of the page.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from utils.errors import RecordShapeError
from utils.schemas import RecordId, is_record_id

logger = logging.getLogger(__name__)

ID_FIELD = "id"

# canonical field -> remote path
SCALAR_FIELDS: dict[str, str] = {
    "name": "school.name",
    "city": "school.city",
    "state": "school.state",
    "school_url": "school.school_url",
    "ownership": "school.ownership",
    "size": "latest.student.size",
    "admission_rate": "latest.admissions.admission_rate.overall",
    "tuition_in_state": "latest.cost.tuition.in_state",
    "tuition_out_of_state": "latest.cost.tuition.out_of_state",
    "median_earnings": "latest.earnings.10_yrs_after_entry.median",
}

PROGRAMS_PATH = "latest.programs.cip_4_digit"

# canonical field -> path inside one program entry
PROGRAM_FIELDS: dict[str, str] = {
    "program_codes": "code",
    "program_titles": "title",
    "credential_levels": "credential.title",
}

CANONICAL_FIELDS: tuple[str, ...] = (ID_FIELD, *SCALAR_FIELDS, *PROGRAM_FIELDS)

_SCALAR_TYPES = (str, int, float, bool)


def requested_fields() -> list[str]:
    """Remote paths to request through the fields= query parameter."""
    return [ID_FIELD, *SCALAR_FIELDS.values(), PROGRAMS_PATH]


def resolve_path(data: Any, path: str) -> Any:
    """
    Resolve a dotted path with short-circuit null propagation.

    The longest dotted prefix present as a literal key wins, so
    {"latest.student": {"size": 3}} and {"latest": {"student": {"size": 3}}}
    both resolve "latest.student.size" to 3.

    Args:
        data: Object to resolve against
        path: Dotted path

    Returns:
        The value, or None when any segment is missing or not an object
    """
    if not isinstance(data, Mapping):
        return None

    parts = path.split(".")
    for split in range(len(parts), 0, -1):
        key = ".".join(parts[:split])
        if key not in data:
            continue
        if split == len(parts):
            return data[key]
        return resolve_path(data[key], ".".join(parts[split:]))

    return None


def unique_truthy(values: Iterable[Any]) -> list[Any]:
    """Deduplicate, drop falsy and non-scalar values, keep first-seen order."""
    result: list[Any] = []
    for value in values:
        if not value or not isinstance(value, _SCALAR_TYPES):
            continue
        if value not in result:
            result.append(value)
    return result


def normalize_record(raw: Any) -> dict[str, Any]:
    """
    Map one raw remote record to a canonical record.

    Args:
        raw: Raw result entry

    Returns:
        Flat dict with every canonical field, id first

    Raises:
        RecordShapeError: If raw is not an object or has no usable id
    """
    if not isinstance(raw, Mapping):
        raise RecordShapeError(f"Record is not an object: {type(raw).__name__}", record=raw)

    record_id = raw.get(ID_FIELD)
    if not is_record_id(record_id):
        raise RecordShapeError(f"Record has no usable id: {record_id!r}", record=raw)

    record: dict[str, Any] = {ID_FIELD: record_id}

    for field, path in SCALAR_FIELDS.items():
        value = resolve_path(raw, path)
        # nested objects are not scalars; treat them as missing
        record[field] = value if value is None or isinstance(value, _SCALAR_TYPES) else None

    programs = resolve_path(raw, PROGRAMS_PATH)
    for field, path in PROGRAM_FIELDS.items():
        if isinstance(programs, list):
            record[field] = unique_truthy(resolve_path(entry, path) for entry in programs)
        else:
            record[field] = None

    return record


def normalize_page(raw_records: Iterable[Any]) -> tuple[dict[RecordId, dict[str, Any]], int]:
    """
    Normalize every record of a page, dropping malformed ones.

    Args:
        raw_records: Page results

    Returns:
        Tuple of (id -> canonical record, number of dropped records)
    """
    records: dict[RecordId, dict[str, Any]] = {}
    dropped = 0

    for position, raw in enumerate(raw_records):
        try:
            record = normalize_record(raw)
        except RecordShapeError as e:
            dropped += 1
            logger.warning("Dropping record at position=%d: %s", position, e)
            continue
        records[record[ID_FIELD]] = record

    return records, dropped
