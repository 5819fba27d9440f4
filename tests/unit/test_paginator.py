"""Unit tests for page iteration and termination."""

from __future__ import annotations

import pytest

from apps.syncer.paginator import PageQuery, Paginator, is_last_page
from apps.syncer.retrier import BackoffRetrier
from tests.conftest import FakeScorecardApi, make_school
from utils.errors import FatalFetchError
from utils.schemas import PageMetadata, PageResult


def make_paginator(api: FakeScorecardApi, sleep_recorder, max_pages: int = 100, **query) -> Paginator:
    return Paginator(
        fetch_page=api.client().fetch_page,
        retrier=BackoffRetrier(max_attempts=3, error_delay=2.0, sleep=sleep_recorder),
        query=PageQuery(page_size=api.page_size, **query),
        max_pages=max_pages,
        page_delay=0.5,
        sleep=sleep_recorder,
    )


async def collect(paginator: Paginator, start_page: int = 1):
    return [page async for page in paginator.pages(start_page)]


class TestIsLastPage:
    def test_empty_page_is_last(self):
        assert is_last_page(3, 100, PageResult(results=[]))

    def test_total_reached(self):
        result = PageResult(results=[{"id": 1}], metadata=PageMetadata(total=250))
        assert not is_last_page(2, 100, result)
        assert is_last_page(3, 100, result)

    def test_no_total_continues_until_empty(self):
        assert not is_last_page(50, 100, PageResult(results=[{"id": 1}]))


class TestPageQuery:
    def test_params_shift_to_remote_index_and_include_filter(self):
        query = PageQuery(
            fields=("id", "school.name"),
            page_size=100,
            first_page_index=0,
            filter_field="latest.programs.cip_4_digit.title",
            filter_value="Nursing",
        )

        assert query.params_for(1) == {
            "page": 0,
            "per_page": 100,
            "fields": "id,school.name",
            "latest.programs.cip_4_digit.title": "Nursing",
        }

    def test_one_based_remote_pages(self):
        assert PageQuery(first_page_index=1).params_for(1)["page"] == 1

    def test_no_filter_param_without_value(self):
        params = PageQuery(filter_field="school.name").params_for(1)
        assert "school.name" not in params


class TestPaginator:
    """Test sequential pagination."""

    @pytest.mark.asyncio
    async def test_full_page_then_empty_page_issues_two_requests(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(100)], page_size=100, report_total=False)

        pages = await collect(make_paginator(api, sleep_recorder))

        assert len(api.requests) == 2
        assert [len(page.records) for page in pages] == [100, 0]
        assert pages[-1].is_last and not pages[-1].truncated
        assert sleep_recorder.delays == [0.5]

    @pytest.mark.asyncio
    async def test_stops_when_total_is_reached(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(5)], page_size=2)

        pages = await collect(make_paginator(api, sleep_recorder))

        assert [page.number for page in pages] == [1, 2, 3]
        assert api.requested_pages == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_starts_at_given_page(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(6)], page_size=2)

        pages = await collect(make_paginator(api, sleep_recorder), start_page=3)

        assert [page.number for page in pages] == [3]
        assert api.requested_pages == [2]

    @pytest.mark.asyncio
    async def test_page_ceiling_truncates(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(10)], page_size=2)

        pages = await collect(make_paginator(api, sleep_recorder, max_pages=2))

        assert [page.number for page in pages] == [1, 2]
        assert pages[-1].is_last and pages[-1].truncated

    @pytest.mark.asyncio
    async def test_start_beyond_ceiling_fetches_nothing(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(10)], page_size=2)

        assert await collect(make_paginator(api, sleep_recorder, max_pages=2), start_page=3) == []
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_misreported_total_is_bounded_by_ceiling(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(4)], page_size=2)
        api.records = api.records * 50  # total now claims far more than a sane run

        pages = await collect(make_paginator(api, sleep_recorder, max_pages=5))

        assert len(pages) == 5

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_without_losing_records(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(4)], page_size=2)
        api.fail(1, 500, 503)

        pages = await collect(make_paginator(api, sleep_recorder))

        assert [record["id"] for page in pages for record in page.records] == [0, 1, 2, 3]
        assert api.requested_pages == [0, 1, 1, 1]
        # one inter-page delay plus two backoff delays
        assert sleep_recorder.delays == [0.5, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhausted_page_raises_fatal(self, sleep_recorder):
        api = FakeScorecardApi([make_school(i) for i in range(4)], page_size=2)
        api.always_fail[1] = 500

        with pytest.raises(FatalFetchError):
            await collect(make_paginator(api, sleep_recorder))

        assert api.requested_pages == [0, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_api_key_and_fields_are_sent(self, sleep_recorder):
        api = FakeScorecardApi([make_school(1)], page_size=2)

        await collect(make_paginator(api, sleep_recorder, fields=("id", "school.name")))

        params = api.requests[0].url.params
        assert params["api_key"] == "test-key"
        assert params["fields"] == "id,school.name"
        assert params["per_page"] == "2"
