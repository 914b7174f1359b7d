"""
Course Search
=============

Finds courses for a topic: first from the `courses` cache table, then from
the Udemy public API. A separate scraper service can also be reached through
`proxy_course_search`.

Author: EduGenie Team
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx

from config import config
from database import service_client

UDEMY_SEARCH_URL = "https://www.udemy.com/api-2.0/courses/"
UDEMY_IMAGE_URL = "https://img-c.udemycdn.com/course/240x135/{}.jpg"
PLACEHOLDER_IMAGE = UDEMY_IMAGE_URL.format("placeholder")
MAX_COURSES = 12
REQUEST_TIMEOUT = 20.0

_BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://www.udemy.com/courses/search/",
}


class CourseSearchError(RuntimeError):
    pass


class UpstreamError(RuntimeError):
    """The course-fetcher service answered with an error status"""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Backend error: {status_code}")
        self.status_code = status_code
        self.body = body


def normalize_udemy_course(raw: dict) -> Optional[dict]:
    """Map one Udemy API result to the course card shape; None if incomplete"""
    if not raw.get("id") or not raw.get("title") or not raw.get("url"):
        return None

    image = raw.get("image_480x270") or raw.get("image_750x422")
    if image and not str(image).startswith("http"):
        image = UDEMY_IMAGE_URL.format(image)

    try:
        rating = round(float(raw.get("rating") or 0), 1)
    except (TypeError, ValueError):
        rating = 0.0

    url = raw["url"]
    return {
        "id": str(raw["id"]),
        "title": raw["title"].strip(),
        "description": (raw.get("headline") or raw.get("description") or "No description available").strip(),
        "price": "Paid" if raw.get("is_paid") is True else "Free",
        "rating": rating,
        "courseUrl": url if url.startswith("http") else f"https://www.udemy.com{url}",
        "image": image or PLACEHOLDER_IMAGE,
        "platform": "Udemy",
    }


async def fetch_udemy_courses(query: str, client: Optional[httpx.AsyncClient] = None) -> list:
    """
    Fetch up to MAX_COURSES courses from the Udemy public API

    Raises:
        CourseSearchError: Upstream failure or no usable results
    """
    params = {"search": query, "ordering": "-popularity", "page_size": 20}
    print(f"[courses] Fetching Udemy courses for '{query}'")

    async def _get(c: httpx.AsyncClient) -> httpx.Response:
        return await c.get(UDEMY_SEARCH_URL, params=params, headers=_BROWSER_HEADERS, timeout=REQUEST_TIMEOUT)

    try:
        if client is None:
            async with httpx.AsyncClient() as c:
                response = await _get(c)
        else:
            response = await _get(client)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as e:
        raise CourseSearchError(f"Udemy API request failed: {e}") from e

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        raise CourseSearchError("Invalid API response format")

    courses = []
    for raw in results:
        course = normalize_udemy_course(raw) if isinstance(raw, dict) else None
        if course:
            courses.append(course)
        if len(courses) >= MAX_COURSES:
            break

    print(f"[courses] Extracted {len(courses)} courses from {len(results)} results")
    return courses


def _cached_courses(query: str) -> list:
    result = (
        service_client()
        .table("courses")
        .select("*")
        .ilike("search_query", f"%{query}%")
        .limit(MAX_COURSES)
        .execute()
    )
    return result.data or []


def _cache_courses(query: str, courses: list):
    now = datetime.now(timezone.utc).isoformat()
    rows = [{
        "id": f"udemy_{c['id']}",
        "title": c["title"],
        "description": c["description"],
        "price": c["price"],
        "rating": c["rating"],
        "course_url": c["courseUrl"],
        "image": c["image"],
        "platform": c["platform"],
        "search_query": query,
        "created_at": now,
    } for c in courses]
    service_client().table("courses").insert(rows).execute()


def _cache_enabled() -> bool:
    return bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE_KEY)


async def search_courses(query: str) -> list:
    """
    Cached course search

    The cache is best-effort: lookup or insert failures are logged and the
    search carries on against the live API.
    """
    normalized = query.lower().strip()
    loop = asyncio.get_event_loop()

    if _cache_enabled():
        try:
            cached = await loop.run_in_executor(None, _cached_courses, normalized)
            if cached:
                print(f"[courses] Found {len(cached)} cached courses")
                return cached
        except Exception as e:
            print(f"[courses] Cache lookup failed, fetching fresh courses: {e}")
    else:
        print("[courses] Supabase not configured, skipping cache lookup")

    courses = await fetch_udemy_courses(normalized)

    if courses and _cache_enabled():
        try:
            await loop.run_in_executor(None, _cache_courses, normalized, courses)
            print(f"[courses] Cached {len(courses)} courses")
        except Exception as e:
            print(f"[courses] Could not cache courses: {e}")

    return courses


async def proxy_course_search(topic: str, client: Optional[httpx.AsyncClient] = None):
    """
    Forward a search to the course-fetcher service

    Raises:
        UpstreamError: The service answered with a non-2xx status
    """
    url = f"{config.COURSE_FETCHER_URL.rstrip('/')}/api/courses"
    print(f"[proxy] Forwarding course search for '{topic}' to {url}")

    if client is None:
        async with httpx.AsyncClient() as c:
            response = await c.post(url, json={"topic": topic}, timeout=60.0)
    else:
        response = await client.post(url, json={"topic": topic}, timeout=60.0)

    if response.is_error:
        print(f"[proxy] Backend error: {response.status_code} {response.text[:200]}")
        raise UpstreamError(response.status_code, response.text)

    data = response.json()
    print(f"[proxy] Received {len(data) if isinstance(data, list) else 0} courses from backend")
    return data
