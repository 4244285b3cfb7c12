"""Iconforge - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, the error envelope, and
the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`iconforge.core.config.config`
  (``ICONFORGE_*`` environment variables).
- **Image generation** is delegated to Replicate through
  :class:`~iconforge.core.replicate_client.ReplicateImageClient`, with
  results cached in Redis when a Redis URL is configured.
- **Persistence** is a single SQLAlchemy table of generation records written
  by :class:`~iconforge.core.generation_service.GenerationService`.
- **Rate limiting** caps each client at
  ``ICONFORGE_RATE_LIMIT_MAX_REQUESTS`` ``/api`` requests per
  ``ICONFORGE_RATE_LIMIT_WINDOW_SECONDS`` through
  :class:`~iconforge.api.rate_limit.RateLimitMiddleware`.
- **Icon sets** are produced by
  :class:`~iconforge.core.icon_set.IconSetGenerator`, which runs four
  sequential generations with a pause between them.

Every response uses the envelope ``{"success": bool, ...}``; errors carry
``{"error": {"message": str, "status_code": int}}``.

Endpoints
---------
========  ====================================  ================================
Method    Path                                  Purpose
========  ====================================  ================================
GET       ``/health``                           Liveness check
GET       ``/api/health``                       API health check
GET       ``/api/styles``                       Presets and accepted options
POST      ``/api/generate-image``               Generate and record one image
POST      ``/api/icons/generate``               Generate a four-icon set
GET       ``/api/generations``                  Paginated, filtered records
GET       ``/api/generations/{id}``             Single record
GET       ``/api/generations/{id}/download``    Download the PNG
DELETE    ``/api/generations/{id}``             Delete a record
GET       ``/api/stats``                        Generation statistics
========  ====================================  ================================

Usage
-----
CLI (installed entry point)::

    iconforge

Direct invocation::

    python -m iconforge.api.main
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from iconforge import __version__
from iconforge.api.models import GenerateImageRequest, IconSetRequest
from iconforge.api.rate_limit import RateLimitMiddleware, SlidingWindowLimiter
from iconforge.core.cache import ImageCache
from iconforge.core.config import config
from iconforge.core.database import create_session_factory
from iconforge.core.db_models import GenerationStatus
from iconforge.core.errors import AppError, ValidationError
from iconforge.core.generation_service import GenerationService
from iconforge.core.icon_prompts import (
    MAX_COLORS,
    PRESET_STYLES,
    STYLE_PROMPTS,
    filter_colors,
)
from iconforge.core.icon_set import IconSetGenerator
from iconforge.core.replicate_client import (
    IMAGE_STYLES,
    QUALITIES,
    SIZE_DIMENSIONS,
    GenerateImageParams,
    ReplicateImageClient,
)
from iconforge.core.repository import GenerationFilters, GenerationRepository

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application lifecycle - cache, API client and database setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Connects the Redis cache (optional), creates the Replicate client,
        ensures the database schema exists, and stores the resulting
        :class:`GenerationService` and :class:`IconSetGenerator` on
        ``app.state``.

    On shutdown:
        Closes the HTTP client and the Redis connection.

    Raises:
        ConfigurationError: If no Replicate API token is configured.
    """
    # --- Startup -----------------------------------------------------------
    cache = await ImageCache.connect(config.redis_url, config.cache_ttl_seconds)
    client = ReplicateImageClient(
        config.replicate_api_token,
        base_url=config.replicate_base_url,
        model_version=config.replicate_model_version,
        cache=cache,
        poll_interval=config.replicate_poll_interval,
        timeout_seconds=config.replicate_timeout_seconds,
        max_prompt_length=config.max_prompt_length,
    )
    repository = GenerationRepository(create_session_factory(config.resolved_database_url))
    service = GenerationService(client, repository)

    app.state.generation_service = service
    app.state.icon_set_generator = IconSetGenerator(
        service,
        icon_count=config.icon_count,
        delay_seconds=config.icon_delay_seconds,
    )
    logger.info(f"Iconforge {__version__} started")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    await client.aclose()
    await cache.close()
    logger.info("Iconforge shut down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Iconforge",
    description="Generate AI icon sets in preset styles and brand colours.",
    version=__version__,
    lifespan=lifespan,
)

rate_limiter = SlidingWindowLimiter(
    config.rate_limit_max_requests,
    config.rate_limit_window_seconds,
)
app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request logging.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request and its completion under a per-request id."""
    request_id = str(uuid.uuid4())
    start = time.monotonic()
    logger.info(
        f"Incoming request {request_id}: {request.method} {request.url.path} "
        f"client={request.client.host if request.client else None}"
    )

    request.state.request_id = request_id

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"Request completed {request_id}: {request.method} {request.url.path} "
            f"-> 500 in {duration_ms}ms"
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"Request completed {request_id}: {request.method} {request.url.path} "
        f"-> {response.status_code} in {duration_ms}ms"
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Error envelope.
# ---------------------------------------------------------------------------


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"message": message, "status_code": status_code},
        },
    )


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _error_response(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query"))
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return _error_response(", ".join(messages), 400)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if exc.status_code != 404 else f"Route {request.url.path} not found"
    return _error_response(str(message), exc.status_code)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    response = _error_response("Internal server error", 500)
    # Unhandled errors are answered outside the logging middleware.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_icon_set_generator(request: Request) -> IconSetGenerator:
    return request.app.state.icon_set_generator


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict:
    """Liveness check for load balancers."""
    return {"status": "ok", "timestamp": _utc_timestamp()}


@app.get("/api/health")
async def api_health() -> dict:
    return {
        "success": True,
        "message": "API is running",
        "timestamp": _utc_timestamp(),
    }


@app.get("/api/styles")
async def get_styles() -> dict:
    """Return the preset icon styles and accepted generation options.

    Returns:
        Dictionary with ``version``, ``preset_styles`` (name and prompt
        enhancement), ``sizes``, ``qualities``, ``image_styles``,
        ``max_colors`` and ``icon_count``.
    """
    return {
        "success": True,
        "data": {
            "version": __version__,
            "preset_styles": [
                {"name": name, "enhancement": STYLE_PROMPTS[name]} for name in PRESET_STYLES
            ],
            "sizes": list(SIZE_DIMENSIONS),
            "qualities": list(QUALITIES),
            "image_styles": list(IMAGE_STYLES),
            "max_colors": MAX_COLORS,
            "icon_count": config.icon_count,
        },
    }


@app.post("/api/generate-image", status_code=201)
async def generate_image(
    req: GenerateImageRequest,
    x_user_id: str | None = Header(default=None),
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    """Generate one image and return its stored record.

    The attempt is recorded whether or not it succeeds.

    Args:
        req: Validated :class:`GenerateImageRequest` payload.
        x_user_id: Optional caller identifier from the ``X-User-Id`` header.

    Returns:
        Envelope whose ``data`` holds the record's id, prompt, image URL,
        revised prompt, options, generation time and creation timestamp.

    Raises:
        AppError: 400 for an invalid prompt, 429 when rate limited, 502 when
            the image provider fails.
    """
    record = await service.generate_and_save(
        GenerateImageParams(
            prompt=req.prompt,
            size=req.size,
            quality=req.quality,
            style=req.style,
        ),
        user_id=x_user_id,
    )
    data = record.to_dict()
    return {
        "success": True,
        "data": {
            key: data[key]
            for key in (
                "id",
                "prompt",
                "image_url",
                "revised_prompt",
                "size",
                "quality",
                "style",
                "generation_time_ms",
                "created_at",
            )
        },
    }


@app.post("/api/icons/generate", status_code=201)
async def generate_icon_set(
    req: IconSetRequest,
    x_user_id: str | None = Header(default=None),
    generator: IconSetGenerator = Depends(get_icon_set_generator),
) -> dict:
    """Generate a full icon set for a subject, style and colour palette.

    Icons are generated sequentially with a pause between calls to stay
    under the provider's rate limit, so this request takes several seconds.

    Returns:
        Envelope whose ``data`` holds ``style``, ``colors`` and ``icons``
        (each with ``id``, ``url`` and ``prompt``).
    """
    icons = await generator.generate(req.prompt, req.style, req.colors, user_id=x_user_id)
    return {
        "success": True,
        "data": {
            "style": req.style,
            "colors": filter_colors(req.colors),
            "icons": [{"id": icon.id, "url": icon.url, "prompt": icon.prompt} for icon in icons],
        },
    }


@app.get("/api/generations")
async def list_generations(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: Literal["success", "failed", "pending"] | None = None,
    user_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    """Return a page of generation records, newest first.

    Args:
        page: Page number (1-indexed).
        page_size: Records per page (1-100).
        status: Only records with this status.
        user_id: Only records for this user.
        start_date: Only records created at or after this time.
        end_date: Only records created at or before this time.

    Returns:
        Envelope with ``data`` and ``pagination`` (``page``, ``page_size``,
        ``total``, ``total_pages``).
    """
    result = service.list_generations(
        GenerationFilters(
            user_id=user_id.strip() if user_id else None,
            status=status,
            start_date=start_date,
            end_date=end_date,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
    )
    return {
        "success": True,
        "data": [record.to_dict() for record in result.data],
        "pagination": {
            "page": result.page,
            "page_size": result.page_size,
            "total": result.total,
            "total_pages": result.total_pages,
        },
    }


@app.get("/api/generations/{generation_id}")
async def get_generation(
    generation_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    record = service.get_generation(generation_id)
    return {"success": True, "data": record.to_dict()}


@app.get("/api/generations/{generation_id}/download")
async def download_generation(
    generation_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> Response:
    """Download a generated image as a PNG attachment.

    Raises:
        AppError: 404 if the record does not exist, 400 if the generation
            failed and has no image, 502 if the download fails.
    """
    record = service.get_generation(generation_id)
    if record.status != GenerationStatus.SUCCESS.value or not record.image_url:
        raise ValidationError(f"Image generation {generation_id} has no image to download")

    content = await service.image_client.fetch_image(record.image_url)
    return Response(
        content=content,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="icon-{generation_id}.png"'},
    )


@app.delete("/api/generations/{generation_id}")
async def delete_generation(
    generation_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    service.delete_generation(generation_id)
    return {"success": True, "message": "Generation deleted successfully"}


@app.get("/api/stats")
async def get_stats(service: GenerationService = Depends(get_generation_service)) -> dict:
    """Return record counts per status and the average generation time."""
    return {"success": True, "data": service.stats()}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~iconforge.core.config.config`
    (``ICONFORGE_SERVER_HOST``, ``ICONFORGE_SERVER_PORT``,
    ``ICONFORGE_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``iconforge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    uvicorn.run(
        "iconforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
