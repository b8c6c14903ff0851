"""CutMatch gateway: FastAPI application.

This module is the single HTTP entry point of the backend.  It builds the
FastAPI ``app``, wires its dependencies, registers the routes and the error
handlers, and provides the ``main()`` CLI function that launches uvicorn.

Architecture
------------
The gateway is stateless apart from the rate limiter's per-client windows:

- **Style data** comes from a :class:`~cutmatch.core.catalog.StyleCatalog`
  loaded once at startup.
- **Image generation** is delegated to
  :class:`~cutmatch.core.generation.GenerationClient`, which talks to
  Replicate.  The gateway adds no retries.
- **Errors** of every kind are converted to ``{error, message}`` JSON by the
  handlers registered in :func:`create_app`.  Internal detail is only
  included when ``NODE_ENV=development``.

Dependencies are built by :func:`create_app` and stored on ``app.state``;
route handlers reach them through the small ``get_*`` dependency functions,
so tests can build an app around a stub generation client.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/health``                   Liveness
GET       ``/api``                      API description
GET       ``/api/styles``               Style catalog listing
POST      ``/api/generate-hairstyle``   Generate a hairstyle preview
========  ============================  ====================================

Middleware (outermost first): security headers, CORS, rate limiting on
``/api``, optional request logging, then the catch-all that turns unexpected
exceptions into a JSON 500.  Because it sits innermost, 500 responses
still carry the security and CORS headers.

Usage
-----
CLI (installed entry point)::

    cutmatch

Direct invocation::

    python -m cutmatch.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cutmatch import __version__
from cutmatch.api.middleware import (
    ErrorHandler,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    SlidingWindowRateLimiter,
    UnhandledErrorMiddleware,
)
from cutmatch.api.models import (
    AVAILABLE_ENDPOINTS,
    ENDPOINT_DESCRIPTIONS,
    ApiInfoResponse,
    HealthResponse,
    NotFoundResponse,
    StylesResponse,
)
from cutmatch.core.catalog import StyleCatalog, load_catalog
from cutmatch.core.config import CutMatchConfig, config
from cutmatch.core.errors import CutMatchError, ValidationError
from cutmatch.core.generation import GenerationClient
from cutmatch.core.models import GenerationRequest

logger = logging.getLogger(__name__)

SERVICE_NAME = "CutMatch AI Backend"
API_NAME = "CutMatch AI API"
DOCUMENTATION_URL = "https://docs.cutmatch.app/api"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_catalog(request: Request) -> StyleCatalog:
    return request.app.state.catalog


def get_generator(request: Request) -> GenerationClient:
    return request.app.state.generator


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> dict:
    """Liveness check.  Succeeds even when generation is not configured."""
    return {
        "status": "healthy",
        "timestamp": _timestamp(),
        "version": __version__,
        "service": SERVICE_NAME,
    }


@router.get("/api", response_model=ApiInfoResponse)
async def api_info() -> dict:
    return {
        "name": API_NAME,
        "version": __version__,
        "description": "AI-powered hairstyle generation for CutMatch",
        "endpoints": dict(ENDPOINT_DESCRIPTIONS),
        "documentation": DOCUMENTATION_URL,
    }


@router.get("/api/styles", response_model=StylesResponse, response_model_exclude_none=True)
async def list_styles(
    category: str | None = None,
    cultural_background: str | None = Query(default=None, alias="culturalBackground"),
    catalog: StyleCatalog = Depends(get_catalog),
) -> dict:
    """Return the full style catalog.

    ``totalStyles`` is the number of distinct style ids in ``prompts``.
    When ``category`` or ``culturalBackground`` is given, ``recommended``
    lists three to five matching style ids.

    Returns:
        Dictionary with ``success``, ``data`` and ``metadata`` keys.
    """
    prompts = catalog.prompts()
    data: dict = {
        "prompts": prompts,
        "categories": catalog.categories(),
        "totalStyles": len(prompts),
    }
    if category or cultural_background:
        data["recommended"] = catalog.recommend(category, cultural_background)

    return {
        "success": True,
        "data": data,
        "metadata": {"version": __version__, "timestamp": _timestamp()},
    }


@router.post("/api/generate-hairstyle")
async def generate_hairstyle(
    req: GenerationRequest,
    catalog: StyleCatalog = Depends(get_catalog),
    generator: GenerationClient = Depends(get_generator),
) -> dict:
    """Generate a hairstyle preview for the uploaded photo.

    The style selector is checked against the catalog before anything is
    sent to the provider.

    Args:
        req: Validated :class:`GenerationRequest` body.

    Returns:
        The :class:`~cutmatch.core.models.GenerationResult` as camelCase
        JSON (``resultImageURI``, ``styleId``, ``status``).

    Raises:
        ValidationError: 400 for an unknown ``styleId``.
        ConfigurationError: 503 when no Replicate token is configured.
        UpstreamProviderError: 502 when the provider fails or times out.
    """
    style = catalog.get(req.style_id)
    if style is None:
        raise ValidationError(f"Unknown style: {req.style_id}")

    result = await generator.generate(req, style)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Error handlers.
# ---------------------------------------------------------------------------


def _register_error_handlers(app: FastAPI, app_config: CutMatchConfig) -> ErrorHandler:
    """Register the JSON error handlers and return the catch-all handler.

    Starlette runs the ``Exception`` handler outside every user middleware,
    so :func:`create_app` also installs the returned handler innermost via
    :class:`~cutmatch.api.middleware.UnhandledErrorMiddleware`.  The
    registration below then only covers failures inside the middleware
    itself, and those 500s carry no security or CORS headers.
    """

    @app.exception_handler(CutMatchError)
    async def handle_cutmatch_error(request: Request, exc: CutMatchError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error}: {exc.detail}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")

        content = {"error": exc.error, "message": exc.message, "timestamp": _timestamp()}
        if app_config.is_development and exc.detail:
            content["details"] = exc.detail
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        logger.warning(f"{request.method} {request.url.path} invalid body: {details}")
        message = "; ".join(d["message"] for d in details) or ValidationError.default_message
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={
                "error": ValidationError.error,
                "message": message,
                "timestamp": _timestamp(),
                "details": details,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Express-style routing: a wrong method is just another unknown endpoint.
        if exc.status_code in (404, 405):
            body = NotFoundResponse(
                message=f"Endpoint {request.method} {request.url.path} not found",
                available_endpoints=list(AVAILABLE_ENDPOINTS),
            )
            return JSONResponse(status_code=404, content=body.model_dump(by_alias=True))
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        message = str(exc) if app_config.is_development else "Something went wrong"
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": message,
                "timestamp": _timestamp(),
            },
        )

    return handle_unexpected_error

# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    app_config: CutMatchConfig | None = None,
    *,
    catalog: StyleCatalog | None = None,
    generator: GenerationClient | None = None,
    limiter: SlidingWindowRateLimiter | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        app_config: Configuration; defaults to the global ``config``.
        catalog: Style catalog; defaults to ``STYLE_CATALOG_PATH`` or the
            packaged catalog.
        generator: Generation client; defaults to a Replicate-backed client.
        limiter: Rate limiter; defaults to ``RATE_LIMIT_PER_MINUTE`` per
            ``RATE_LIMIT_WINDOW_SECONDS``.

    Returns:
        Configured :class:`FastAPI` instance.
    """
    app_config = app_config or config
    if catalog is None:
        catalog = load_catalog(app_config.style_catalog_path)
    if generator is None:
        generator = GenerationClient(app_config)
    if limiter is None:
        limiter = SlidingWindowRateLimiter(
            app_config.rate_limit_per_minute, app_config.rate_limit_window_seconds
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            f"{SERVICE_NAME} starting on port {app_config.port} "
            f"(environment={app_config.environment}, styles={len(catalog)})"
        )
        if generator.configured:
            logger.info("Replicate API token configured")
        else:
            logger.warning("Replicate API token not configured - set REPLICATE_API_TOKEN in .env")

        yield

        logger.info(f"{SERVICE_NAME} shutting down")

    app = FastAPI(
        title=API_NAME,
        description="AI-powered hairstyle generation for CutMatch",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = app_config
    app.state.catalog = catalog
    app.state.generator = generator
    app.state.limiter = limiter

    handle_unexpected_error = _register_error_handlers(app, app_config)

    # Starlette runs the last-added middleware first, so these are added
    # innermost to outermost.
    app.add_middleware(UnhandledErrorMiddleware, handler=handle_unexpected_error)
    if app_config.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host and port come from :data:`~cutmatch.core.config.config` (``HOST``
    and ``PORT``).  SIGINT/SIGTERM stop the server after at most one second;
    in-flight generation jobs are not drained.

    This function is registered as the ``cutmatch`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(
        "cutmatch.api.main:app",
        host=config.host,
        port=config.port,
        reload=False,
        timeout_graceful_shutdown=1,
    )


if __name__ == "__main__":
    main()
