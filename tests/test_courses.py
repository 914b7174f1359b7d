"""Tests for courses: Udemy mapping, caching and the scraper proxy."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

import courses
from courses import CourseSearchError, UpstreamError, normalize_udemy_course

UDEMY_RESULT = {
    "id": 123,
    "title": " Python Bootcamp ",
    "headline": "Learn Python",
    "is_paid": True,
    "rating": 4.567,
    "url": "/course/python-bootcamp/",
    "image_480x270": "https://img.test/python.jpg",
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestNormalizeUdemyCourse:
    def test_maps_fields(self):
        assert normalize_udemy_course(UDEMY_RESULT) == {
            "id": "123",
            "title": "Python Bootcamp",
            "description": "Learn Python",
            "price": "Paid",
            "rating": 4.6,
            "courseUrl": "https://www.udemy.com/course/python-bootcamp/",
            "image": "https://img.test/python.jpg",
            "platform": "Udemy",
        }

    def test_free_without_image(self):
        course = normalize_udemy_course({"id": 1, "title": "Free", "url": "https://x.test/c", "is_paid": False})
        assert course["price"] == "Free"
        assert course["image"] == courses.PLACEHOLDER_IMAGE
        assert course["courseUrl"] == "https://x.test/c"

    def test_incomplete(self):
        assert normalize_udemy_course({"id": 1, "title": "No url"}) is None


class TestFetchUdemyCourses:
    @pytest.mark.asyncio()
    async def test_results_capped(self):
        def handler(request):
            assert request.url.params["search"] == "python"
            return httpx.Response(200, json={"results": [dict(UDEMY_RESULT, id=i) for i in range(20)]})

        async with _client(handler) as client:
            found = await courses.fetch_udemy_courses("python", client=client)
        assert len(found) == courses.MAX_COURSES

    @pytest.mark.asyncio()
    async def test_http_error(self):
        async with _client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(CourseSearchError):
                await courses.fetch_udemy_courses("python", client=client)

    @pytest.mark.asyncio()
    async def test_bad_shape(self):
        async with _client(lambda request: httpx.Response(200, json=["x"])) as client:
            with pytest.raises(CourseSearchError, match="Invalid API response format"):
                await courses.fetch_udemy_courses("python", client=client)


class TestSearchCourses:
    @pytest.mark.asyncio()
    async def test_cache_hit_skips_api(self, monkeypatch):
        monkeypatch.setattr(courses, "_cache_enabled", lambda: True)
        monkeypatch.setattr(courses, "_cached_courses", MagicMock(return_value=[{"id": "udemy_1"}]))
        fetch = AsyncMock()
        monkeypatch.setattr(courses, "fetch_udemy_courses", fetch)

        assert await courses.search_courses("  Python ") == [{"id": "udemy_1"}]
        courses._cached_courses.assert_called_once_with("python")
        fetch.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_cache_failure_is_not_fatal(self, monkeypatch):
        monkeypatch.setattr(courses, "_cache_enabled", lambda: True)
        monkeypatch.setattr(courses, "_cached_courses", MagicMock(side_effect=RuntimeError("db down")))
        monkeypatch.setattr(courses, "_cache_courses", MagicMock(side_effect=RuntimeError("db down")))
        monkeypatch.setattr(courses, "fetch_udemy_courses", AsyncMock(return_value=[{"id": "1"}]))

        assert await courses.search_courses("python") == [{"id": "1"}]

    @pytest.mark.asyncio()
    async def test_without_supabase(self, monkeypatch):
        monkeypatch.setattr(courses, "_cache_enabled", lambda: False)
        monkeypatch.setattr(courses, "fetch_udemy_courses", AsyncMock(return_value=[]))
        assert await courses.search_courses("python") == []


class TestProxy:
    @pytest.mark.asyncio()
    async def test_forwards_topic(self, monkeypatch):
        monkeypatch.setattr(courses.config, "COURSE_FETCHER_URL", "http://fetcher.test/")

        def handler(request):
            assert str(request.url) == "http://fetcher.test/api/courses"
            return httpx.Response(200, json=[{"title": "C1"}])

        async with _client(handler) as client:
            assert await courses.proxy_course_search("ml", client=client) == [{"title": "C1"}]

    @pytest.mark.asyncio()
    async def test_upstream_status_mirrored(self):
        async with _client(lambda request: httpx.Response(502, text="bad gateway")) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await courses.proxy_course_search("ml", client=client)
        assert exc_info.value.status_code == 502
        assert str(exc_info.value) == "Backend error: 502"
