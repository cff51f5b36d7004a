"""HTTP endpoints: news discovery stream, geocoding and social search."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from newsglobe.api.deps import client_ip, get_context
from newsglobe.config import ServiceContext
from newsglobe.data import GeocodeResult
from newsglobe.errors import MissingCredentialsError
from newsglobe.geo import GeocodingError
from newsglobe.pipeline import authors_with_location, locate_authors
from newsglobe.stream import StreamRelay

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

GEO_MAX_RESULTS = 10
DEFAULT_SEARCH_QUERY = "Indigo"


def _track(request: Request, coro: Coroutine[Any, Any, Any]) -> None:
    """Run a stream writer in the background until it finishes or shutdown."""
    task = asyncio.create_task(coro)
    tasks: set[asyncio.Task] = request.app.state.stream_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


@router.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/api/news/stream")
async def stream_news(
    request: Request,
    query: str = "",
    context: ServiceContext = Depends(get_context),
):
    """Discover breaking news for ``query`` as a server-sent event stream."""
    try:
        context.require_llm_key()
    except MissingCredentialsError as e:
        logger.error(str(e))
        return JSONResponse({"error": str(e)}, status_code=500)

    relay = StreamRelay()
    _track(request, context.create_engine().run(query, relay))

    return StreamingResponse(
        relay.frames(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _geocode_body(location: str, result: GeocodeResult) -> dict:
    return {
        "success": True,
        "location": location,
        "coordinates": list(result.coordinates),
        "display_name": result.display_name,
        "cached": result.cached,
    }


@router.get("/api/geocode")
async def geocode(
    request: Request,
    location: str | None = None,
    context: ServiceContext = Depends(get_context),
):
    """Geocode a place name to ``[lon, lat]``.

    Cache hits are served before the per-client rate limit is applied.
    """
    if not location or not location.strip():
        return JSONResponse({"error": "location parameter is required"}, status_code=400)

    hit = await context.resolver.cached(location)
    if hit is not None:
        return _geocode_body(location, hit)

    decision = await context.rate_limiter.check(client_ip(request))
    if not decision.allowed:
        return JSONResponse(
            {
                "error": "Rate limit exceeded",
                "message": (
                    f"Too many requests. Please try again in {decision.retry_after} seconds."
                ),
                "retryAfter": decision.retry_after,
            },
            status_code=429,
            headers={"Retry-After": str(decision.retry_after)},
        )

    try:
        result = await context.resolver.resolve(location)
    except GeocodingError as e:
        logger.warning(f"Geocoding failed for {location!r}: {e}")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    if result is None:
        return JSONResponse({"success": False, "error": "Location not found"}, status_code=404)
    return _geocode_body(location, result)


def _upstream_error(e: httpx.HTTPStatusError) -> JSONResponse:
    status = e.response.status_code
    return JSONResponse(
        {"error": f"X API error: {status}", "details": e.response.text},
        status_code=status,
    )


@router.get("/api/x/search")
async def search_posts(
    query: str | None = None,
    max_results: int = Query(default=100, alias="maxResults"),
    context: ServiceContext = Depends(get_context),
):
    """Raw recent search, reporting which posts carry location data."""
    query = (query or "").strip() or DEFAULT_SEARCH_QUERY
    try:
        page = await context.fetcher.search_recent(query, max_results=min(max_results, 100))
    except MissingCredentialsError as e:
        return JSONResponse({"error": str(e)}, status_code=500)
    except httpx.HTTPStatusError as e:
        return _upstream_error(e)
    except httpx.HTTPError as e:
        logger.warning(f"X search failed for {query!r}: {e}")
        return JSONResponse({"error": "Failed to search X API", "message": str(e)}, status_code=500)

    located = page.with_location
    return {
        "success": True,
        "query": page.query,
        "total": page.total,
        "withLocation": len(located),
        "posts": located[:50],
        "rateLimit": {"remaining": page.rate_limit.remaining, "reset": page.rate_limit.reset},
    }


@router.get("/api/x/geo")
async def geo_posts(
    request: Request,
    query: str | None = None,
    context: ServiceContext = Depends(get_context),
):
    """Place the authors of matching posts on the map by their profile location.

    Each uncached lookup spends the caller's geocoding quota; authors over
    the quota are left out.
    """
    if not query or not query.strip():
        return JSONResponse({"error": "query parameter is required"}, status_code=400)

    try:
        page = await context.fetcher.search_recent(query, max_results=GEO_MAX_RESULTS * 5)
    except MissingCredentialsError as e:
        return JSONResponse({"error": str(e)}, status_code=500)
    except httpx.HTTPStatusError as e:
        return _upstream_error(e)
    except httpx.HTTPError as e:
        logger.warning(f"X geo search failed for {query!r}: {e}")
        return JSONResponse(
            {"error": "Failed to fetch geo data", "message": str(e)}, status_code=500
        )

    authors = authors_with_location(page.posts)
    geo_data = await locate_authors(
        authors[: GEO_MAX_RESULTS * 2],
        resolver=context.resolver,
        rate_limiter=context.rate_limiter,
        client_key=client_ip(request),
        concurrency=context.config.geocoding.batch_concurrency,
    )
    geo_data = geo_data[:GEO_MAX_RESULTS]

    logger.info(f"Placed {len(geo_data)} of {len(authors)} users with a location for {query!r}")
    return {
        "success": True,
        "query": query,
        "count": len(geo_data),
        "geoData": geo_data,
        "usersProcessed": len(authors),
        "rateLimit": {"remaining": page.rate_limit.remaining, "reset": page.rate_limit.reset},
    }


@router.get("/api/x/geo-stream")
async def geo_stream(
    request: Request,
    query: str | None = None,
    context: ServiceContext = Depends(get_context),
):
    """Stream authors of new matching posts as they are located, polling X."""
    if not context.fetcher.configured:
        return JSONResponse(
            {"error": "X_BEARER_TOKEN or BEARER_TOKEN not found"}, status_code=500
        )
    if not query or not query.strip():
        return JSONResponse({"error": "query parameter is required"}, status_code=400)

    relay = StreamRelay()
    _track(request, context.create_geo_stream().run(query, client_ip(request), relay))
    return StreamingResponse(
        relay.frames(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
