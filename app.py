#  app.py
import logging
import platform
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.responses import JSONResponse
from httpx import AsyncClient
from starlette.exceptions import HTTPException as StarletteHTTPException

from cache import TTLCache
from config import Settings, get_settings
from exceptions import ScraperError, ValidationError
from models import AnimeListResponse, AnimeResponse, EpisodeResponse, ErrorResponse, SearchResponse
from ratelimit import RateLimiter
from scraper import (
    create_http_client,
    get_anime_details,
    get_completed_anime,
    get_episode_streaming,
    get_http_client,
    get_ongoing_anime,
    search_anime,
)
from utils import generate_cache_key, handle_error, sanitize_query, validate_slug

# Configure logging
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid slug or query"},
    404: {"model": ErrorResponse, "description": "Content not found on the source site"},
    408: {"model": ErrorResponse, "description": "Source site timed out"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
    502: {"model": ErrorResponse, "description": "Failed to fetch data from source"},
    503: {"model": ErrorResponse, "description": "Network error"},
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_cache(request: Request) -> TTLCache:
    return request.app.state.cache


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_app(settings: Optional[Settings] = None, transport=None) -> FastAPI:
    """
    Build the API with its process-wide collaborators.

    ``transport`` is handed to the shared httpx client, which lets tests
    replace the upstream site with ``httpx.MockTransport``.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.http_client = create_http_client(settings, transport=transport)
        try:
            yield
        finally:
            await app.state.http_client.aclose()

    app = FastAPI(
        title="Otakudesu REST API",
        description="API to scrape anime listings, details and episode streaming links from otakudesu.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.cache = TTLCache(std_ttl=settings.cache.std_ttl, check_period=settings.cache.check_period)
    app.state.started_at = time.monotonic()

    limiter = RateLimiter(settings.rate_limit)
    app.middleware("http")(limiter.middleware)

    @app.exception_handler(ScraperError)
    async def scraper_error_handler(request: Request, exc: ScraperError):
        info = handle_error(exc)
        if info["status"] >= 500:
            logger.error(f"Error in route handler for {request.url.path}: {exc}")
        else:
            logger.warning(f"Request to {request.url.path} failed with {info['status']}: {exc}")
        return JSONResponse(
            status_code=info["status"],
            content={"success": False, "error": info["message"], "timestamp": now_iso()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "Not Found",
                    "message": f"The requested URL {request.url.path} was not found on this server.",
                },
            )
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def global_error_handler(request: Request, exc: Exception):
        logger.exception(f"Global error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "message": str(exc) or "An unexpected error occurred.",
            },
        )

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root(settings: Settings = Depends(get_app_settings)):
        return {
            "message": "Welcome to Otakudesu REST API!",
            "health": f"{settings.base_url}/health",
            "routes": [
                "/search?q={query}",
                "/ongoing",
                "/completed",
                "/anime/{slug}",
                "/episode/{slug}",
            ],
            "documentation": "/docs",
        }

    @app.get("/health", tags=["Service"], summary="Service health")
    async def health(
        request: Request,
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        return {
            "status": "healthy",
            "timestamp": now_iso(),
            "uptime": f"{time.monotonic() - request.app.state.started_at:.2f}s",
            "pythonVersion": platform.python_version(),
            "cache": {
                "keys": len(cache.keys()),
                "stats": cache.stats(),
            },
            "config": {
                "baseUrl": settings.base_url,
                "cacheTTL": settings.cache.route_ttl.model_dump(),
                "rateLimitMax": settings.rate_limit.max_requests,
            },
        }

    # Search endpoint
    @app.get(
        "/search",
        response_model=SearchResponse,
        responses=ERROR_RESPONSES,
        tags=["Anime"],
        summary="Search for anime",
        description="Search anime by title on the source site. Example: `?q=kusuriya`",
    )
    async def search(
        q: Optional[str] = Query(None, description="Search term, at least 2 characters"),
        client: AsyncClient = Depends(get_http_client),
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        query = sanitize_query(q)
        if len(query) < 2:
            raise ValidationError("Invalid or short query: search query must be at least 2 characters.")

        async def produce():
            results = await search_anime(query, client, settings)
            return {
                "success": True,
                "query": query,
                "data": [r.model_dump() for r in results],
                "timestamp": now_iso(),
            }

        key = generate_cache_key("search", query)
        return await cache.get_or_compute(key, settings.cache.route_ttl.search, produce)

    # Ongoing anime endpoint
    @app.get(
        "/ongoing",
        response_model=AnimeListResponse,
        responses=ERROR_RESPONSES,
        tags=["Anime"],
        summary="Currently airing anime",
    )
    async def ongoing(
        client: AsyncClient = Depends(get_http_client),
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        async def produce():
            results = await get_ongoing_anime(client, settings)
            return {"success": True, "data": [r.model_dump() for r in results], "timestamp": now_iso()}

        key = generate_cache_key("ongoing")
        return await cache.get_or_compute(key, settings.cache.route_ttl.ongoing, produce)

    # Completed anime endpoint
    @app.get(
        "/completed",
        response_model=AnimeListResponse,
        responses=ERROR_RESPONSES,
        tags=["Anime"],
        summary="Completed anime",
    )
    async def completed(
        client: AsyncClient = Depends(get_http_client),
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        async def produce():
            results = await get_completed_anime(client, settings)
            return {"success": True, "data": [r.model_dump() for r in results], "timestamp": now_iso()}

        key = generate_cache_key("completed")
        return await cache.get_or_compute(key, settings.cache.route_ttl.completed, produce)

    # Anime details endpoint
    @app.get(
        "/anime/{slug}",
        response_model=AnimeResponse,
        responses=ERROR_RESPONSES,
        tags=["Anime"],
        summary="Get anime detail",
        description="Info table, episode list and recommendations for one anime. Example: `/anime/kusuriya-sub-indo`",
    )
    async def anime_detail(
        slug: str = Path(..., description="Anime slug identifier"),
        client: AsyncClient = Depends(get_http_client),
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        validate_slug(slug, "anime")

        async def produce():
            details = await get_anime_details(slug, client, settings)
            return {"success": True, "slug": slug, "data": details.model_dump(), "timestamp": now_iso()}

        key = generate_cache_key("anime", slug)
        return await cache.get_or_compute(key, settings.cache.route_ttl.anime, produce)

    # Episode streaming endpoint
    @app.get(
        "/episode/{slug}",
        response_model=EpisodeResponse,
        responses=ERROR_RESPONSES,
        tags=["Episode"],
        summary="Get episode streaming links",
        description="Resolve the mirrors of every quality tier and list download links for one episode. Example: `/episode/ksr-episode-1-sub-indo`",
    )
    async def episode_streaming(
        slug: str = Path(..., description="Episode slug identifier"),
        client: AsyncClient = Depends(get_http_client),
        cache: TTLCache = Depends(get_cache),
        settings: Settings = Depends(get_app_settings),
    ):
        validate_slug(slug, "episode")

        async def produce():
            streaming = await get_episode_streaming(slug, client, settings)
            return {"success": True, "slug": slug, "data": streaming.model_dump(), "timestamp": now_iso()}

        key = generate_cache_key("episode", slug)
        return await cache.get_or_compute(key, settings.cache.route_ttl.episode, produce)

    # Cache management endpoints
    @app.get("/cache/stats", tags=["Service"])
    async def cache_stats(cache: TTLCache = Depends(get_cache)):
        return cache.stats()

    @app.delete("/cache/clear", tags=["Service"])
    async def cache_clear(cache: TTLCache = Depends(get_cache)):
        cache.flush_all()
        return {"success": True, "message": "Cache cleared successfully"}


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
