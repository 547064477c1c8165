"""Admin endpoints for key usage."""

from typing import Dict

from fastapi import APIRouter, Request

from shop_assistant.errors import ConfigurationError

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/status")
async def get_all_status(request: Request) -> Dict[str, object]:
    """Get today's usage of every configured API key."""
    key_manager = request.app.state.key_manager
    if key_manager is None:
        raise ConfigurationError("Key usage store is not configured.")
    config = request.app.state.config
    return await key_manager.get_status(config.api_keys, config.daily_key_limit)
