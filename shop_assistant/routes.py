"""Chat endpoints used by the storefront."""

from typing import Any, Dict

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from shop_assistant.errors import ValidationError
from shop_assistant.models import ChatRequest

chat_router = APIRouter(tags=["chat"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH"]

CHAT_PATHS = ("/ai-assistant", "/chat-history")


def method_not_allowed() -> JSONResponse:
    return JSONResponse(content={"error": "Method Not Allowed"}, status_code=405)


async def _read_chat_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


@chat_router.api_route("/ai-assistant", methods=ALL_METHODS)
async def ai_assistant(request: Request) -> JSONResponse:
    """Answer a shopper's chat message."""
    if request.method != "POST":
        return method_not_allowed()

    body = await _read_chat_body(request)
    cart_items = body.get("cartItems") or []
    if not isinstance(cart_items, list) or not all(
        isinstance(item, dict) for item in cart_items
    ):
        raise ValidationError("cartItems must be a list of objects.")

    chat_request = ChatRequest(
        user_id=str(body.get("userId") or ""),
        message=str(body.get("message") or ""),
        cart_items=cart_items,
        ai_structured_input=body.get("aiStructuredInput"),
    )

    reply = await request.app.state.chat_service.chat(chat_request)
    return JSONResponse(content={"reply": reply})


@chat_router.api_route("/chat-history", methods=ALL_METHODS)
async def chat_history(request: Request) -> JSONResponse:
    """Read or clear a shopper's stored conversation."""
    if request.method not in ("GET", "DELETE"):
        return method_not_allowed()

    chat_service = request.app.state.chat_service
    user_id = request.query_params.get("userId", "")

    if request.method == "DELETE":
        await chat_service.delete_history(user_id)
        return JSONResponse(content={"message": "Chat history deleted successfully."})

    history = await chat_service.get_history(user_id)
    return JSONResponse(content={"history": history})
