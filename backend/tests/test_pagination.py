"""Tests for page requests, paginated results and cross-source paging."""

import pytest

from app.errors import ValidationError
from app.services.pagination import (
    PageRequest,
    paginate,
    split_page,
    total_pages,
)


# ── PageRequest ───────────────────────────────────

class TestPageRequest:
    def test_defaults(self):
        request = PageRequest.from_query(default_limit=10, max_limit=100)
        assert request.page == 1
        assert request.limit == 10
        assert request.skip is False
        assert request.offset == 0
        assert request.take == 10

    def test_offset(self):
        request = PageRequest.from_query(3, 20, max_limit=100)
        assert request.offset == 40

    def test_skip_returns_everything(self):
        request = PageRequest.from_query(3, 20, True, max_limit=100)
        assert request.offset == 0
        assert request.take is None

    def test_page_below_one_rejected(self):
        with pytest.raises(ValidationError):
            PageRequest.from_query(0, 10, max_limit=100)

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            PageRequest.from_query(1, limit, max_limit=100)


# ── paginate ──────────────────────────────────────

class TestPaginate:
    def test_meta(self):
        result = paginate(["a", "b"], 5, PageRequest(page=2, limit=2))
        assert result.data == ["a", "b"]
        assert result.meta.total == 5
        assert result.meta.total_pages == 3
        assert result.meta.has_next_page is True
        assert result.meta.has_previous_page is True

    def test_empty(self):
        result = paginate([], 0, PageRequest(page=1, limit=10))
        assert result.meta.total_pages == 0
        assert result.meta.has_next_page is False

    def test_page_past_last_rejected(self):
        with pytest.raises(ValidationError):
            paginate([], 5, PageRequest(page=4, limit=2))

    def test_skip_single_page(self):
        result = paginate(list(range(7)), 7, PageRequest(skip=True))
        assert result.meta.page == 1
        assert result.meta.total_pages == 1
        assert result.meta.limit == 7

    def test_total_pages(self):
        assert total_pages(0, 10) == 0
        assert total_pages(10, 10) == 1
        assert total_pages(11, 10) == 2


# ── split_page ────────────────────────────────────

class TestSplitPage:
    def test_page_inside_first_source(self):
        assert split_page([25, 10], PageRequest(page=1, limit=10)) == [(0, 10), (0, 0)]

    def test_page_straddles_sources(self):
        assert split_page([25, 10], PageRequest(page=3, limit=10)) == [(20, 5), (0, 5)]

    def test_page_inside_second_source(self):
        assert split_page([25, 10], PageRequest(page=4, limit=10)) == [(25, 0), (5, 5)]

    def test_first_source_empty(self):
        assert split_page([0, 10], PageRequest(page=1, limit=10)) == [(0, 0), (0, 10)]

    def test_skip_takes_all(self):
        assert split_page([3, 4], PageRequest(skip=True)) == [(0, None), (0, None)]

    def test_skip_with_empty_source(self):
        assert split_page([0, 4], PageRequest(skip=True)) == [(0, 0), (0, None)]
