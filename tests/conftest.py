"""Shared fixtures for syncer tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from apps.syncer.client import ScorecardClient
from apps.syncer.engine import SyncEngine
from apps.syncer.normalizer import requested_fields
from apps.syncer.paginator import PageQuery, Paginator
from apps.syncer.retrier import BackoffRetrier
from utils.storage import CheckpointStore, SnapshotStore

BASE_URL = "https://api.test/v1/schools"


def make_school(
    school_id: int,
    name: str | None = None,
    size: int | None = 1000,
    programs: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Raw school as the API returns it for a fields= request."""
    if programs is None:
        programs = [
            {"code": "1101", "title": "Computer Science.", "credential": {"title": "Bachelor's Degree"}},
            {"code": "2701", "title": "Mathematics.", "credential": {"title": "Bachelor's Degree"}},
        ]
    return {
        "id": school_id,
        "school.name": name or f"School {school_id}",
        "school.city": "Springfield",
        "school.state": "IL",
        "latest.student.size": size,
        "latest.programs.cip_4_digit": programs,
    }


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeScorecardApi:
    """In-memory schools endpoint served through httpx.MockTransport.

    Pages are 0-based like the real API. failures maps a 0-based page index
    to a list of (status, headers) answered, in order, before the page succeeds.
    """

    def __init__(
        self,
        records: list[dict[str, Any]],
        page_size: int = 2,
        report_total: bool = True,
    ) -> None:
        self.records = records
        self.page_size = page_size
        self.report_total = report_total
        self.failures: dict[int, list[tuple[int, dict[str, str]]]] = {}
        self.always_fail: dict[int, int] = {}
        self.requests: list[httpx.Request] = []
        self.on_page: Callable[[int], None] | None = None

    @property
    def requested_pages(self) -> list[int]:
        return [int(request.url.params["page"]) for request in self.requests]

    def fail(self, page_index: int, *statuses: int, retry_after: str | None = None) -> None:
        headers = {"Retry-After": retry_after} if retry_after else {}
        self.failures.setdefault(page_index, []).extend((status, headers) for status in statuses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        page_index = int(request.url.params["page"])
        per_page = int(request.url.params["per_page"])

        if page_index in self.always_fail:
            return httpx.Response(self.always_fail[page_index], text="upstream error")

        pending = self.failures.get(page_index)
        if pending:
            status, headers = pending.pop(0)
            return httpx.Response(status, headers=headers, text="failure")

        start = page_index * per_page
        results = self.records[start:start + per_page]
        metadata: dict[str, Any] = {"page": page_index, "per_page": per_page}
        if self.report_total:
            metadata["total"] = len(self.records)

        if self.on_page is not None:
            self.on_page(page_index)

        return httpx.Response(200, json={"metadata": metadata, "results": results})

    def client(self) -> ScorecardClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ScorecardClient(api_key="test-key", base_url=BASE_URL, http_client=http_client)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "filtered_data.json"


@pytest.fixture
def checkpoint_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "state" / "checkpoint.json"


@pytest.fixture
def make_engine(
    snapshot_path: Path,
    checkpoint_path: Path,
    sleep_recorder: SleepRecorder,
) -> Callable[..., SyncEngine]:
    """Factory building a SyncEngine wired to a FakeScorecardApi."""

    def factory(
        api: FakeScorecardApi,
        *,
        flush_every: int = 10,
        max_pages: int = 100,
        max_attempts: int = 3,
        prune: bool = True,
        filter_value: str | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> SyncEngine:
        query = PageQuery(
            fields=tuple(requested_fields()),
            page_size=api.page_size,
            filter_field="latest.programs.cip_4_digit.title",
            filter_value=filter_value,
        )
        retrier = BackoffRetrier(
            max_attempts=max_attempts,
            base_delay=1.0,
            max_delay=60.0,
            error_delay=2.0,
            sleep=sleep_recorder,
        )
        paginator = Paginator(
            fetch_page=api.client().fetch_page,
            retrier=retrier,
            query=query,
            max_pages=max_pages,
            page_delay=0.5,
            sleep=sleep_recorder,
        )
        return SyncEngine(
            paginator=paginator,
            snapshot_store=SnapshotStore(snapshot_path),
            checkpoint_store=CheckpointStore(checkpoint_path),
            flush_every=flush_every,
            prune=prune,
            filter_value=filter_value,
            stop_event=stop_event,
        )

    return factory
