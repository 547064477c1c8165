"""FastAPI application for the storefront AI assistant."""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse, Response

from shop_assistant.admin import admin_router
from shop_assistant.catalog import CatalogCache, ProductCatalog
from shop_assistant.chat_service import ChatService
from shop_assistant.clock import Clock
from shop_assistant.config import Config, load_config
from shop_assistant.errors import AssistantError, UpstreamError
from shop_assistant.gemini_client import GeminiClient
from shop_assistant.history import HistoryStore
from shop_assistant.key_manager import KeyManager
from shop_assistant.rate_limiter import RateLimiter
from shop_assistant.routes import CHAT_PATHS, chat_router, method_not_allowed
from shop_assistant.storage import KVStore, create_store

logger = logging.getLogger(__name__)


def cors_headers(config: Optional[Config]) -> Dict[str, str]:
    origin = config.cors_origin if config else "http://localhost:5500"
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET,HEAD,POST,PUT,DELETE,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
    }


def configure_app(
    app: FastAPI,
    config: Config,
    http_client: httpx.AsyncClient,
    history_store: Optional[KVStore],
    usage_store: Optional[KVStore],
    clock: Clock,
) -> None:
    """Wire stores, clients and services onto ``app.state``."""
    history = None
    rate_limiter = None
    if history_store is not None:
        history = HistoryStore(history_store, config.max_history_length)
        rate_limiter = RateLimiter(history_store, clock)
    key_manager = KeyManager(usage_store, clock) if usage_store is not None else None
    catalog = ProductCatalog(
        http_client,
        config.products_json_url,
        CatalogCache(config.catalog_cache_seconds),
    )

    app.state.config = config
    app.state.http_client = http_client
    app.state.history_store = history_store
    app.state.usage_store = usage_store
    app.state.key_manager = key_manager
    app.state.catalog = catalog
    app.state.chat_service = ChatService(
        history=history,
        rate_limiter=rate_limiter,
        key_manager=key_manager,
        chat_client=GeminiClient(http_client, config.gemini_model),
        catalog=catalog,
        api_keys=config.api_keys,
        daily_rate_limit=config.daily_rate_limit,
        daily_key_limit=config.daily_key_limit,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: startup and shutdown."""
    config = load_config()

    logging.basicConfig(level=getattr(logging, config.log_level))

    http_client = httpx.AsyncClient(
        base_url=config.gemini_base_url,
        timeout=httpx.Timeout(10.0, read=60.0, write=30.0),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    )
    history_store = create_store(config.history_store_url)
    usage_store = create_store(config.usage_store_url)

    configure_app(
        app,
        config,
        http_client,
        history_store,
        usage_store,
        Clock(config.quota_timezone),
    )

    logger.info("Shop assistant started with %d API keys", len(config.api_keys))

    yield

    for store in (history_store, usage_store):
        if store is not None:
            await store.close()
    await http_client.aclose()
    logger.info("Shop assistant stopped")


app = FastAPI(title="Storefront AI Assistant", lifespan=lifespan)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Answer preflight requests and attach CORS headers to every response."""
    headers = cors_headers(getattr(request.app.state, "config", None))

    if request.method == "OPTIONS":
        return Response(status_code=204, headers=headers)

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error for %s %s", request.method, request.url.path)
        response = JSONResponse(
            content={"error": "Internal Server Error"}, status_code=500
        )

    response.headers.update(headers)
    return response


@app.exception_handler(AssistantError)
async def assistant_error_handler(
    request: Request, exc: AssistantError
) -> JSONResponse:
    return JSONResponse(
        content={"error": exc.message},
        status_code=exc.status_code,
        headers=exc.headers,
    )


# Include routers BEFORE catch-all route
app.include_router(chat_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check(request: Request) -> Dict[str, object]:
    """Health check endpoint with key usage summary."""
    config = request.app.state.config
    key_manager = request.app.state.key_manager
    if key_manager is None:
        return {
            "status": "degraded",
            "keys_available": 0,
            "total_keys": len(config.api_keys),
        }
    status = await key_manager.get_status(config.api_keys, config.daily_key_limit)
    return {
        "status": "healthy",
        "keys_available": status["available_keys"],
        "total_keys": status["total_keys"],
    }


async def catalog_or_not_found(request: Request) -> Response:
    """Serve the product catalog passthrough; everything else is 404."""
    config = request.app.state.config
    path = "/" + request.path_params["path"]
    # methods the chat routes do not declare fall through to here
    if path in CHAT_PATHS:
        return method_not_allowed()
    if request.method != "GET" or path != config.catalog_path:
        return JSONResponse(content={"error": "Not Found"}, status_code=404)

    try:
        upstream = await request.app.state.catalog.fetch_raw()
    except httpx.HTTPError as exc:
        logger.error("Error fetching product catalog: %s", exc)
        raise UpstreamError("Failed to fetch product catalog.") from exc

    if upstream.status_code != 200:
        return JSONResponse(
            content={"error": "Failed to fetch product catalog."},
            status_code=upstream.status_code,
        )
    return Response(content=upstream.content, media_type="application/json")


# Any method, so unknown paths are 404 regardless of verb
app.add_route("/{path:path}", catalog_or_not_found, include_in_schema=False)
