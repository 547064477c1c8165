"""Chat workflow: rate limit, history, key selection, upstream call."""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from shop_assistant.errors import (
    CapacityExhaustedError,
    ConfigurationError,
    RateLimitedError,
    StorageError,
    UpstreamError,
    ValidationError,
)
from shop_assistant.history import HistoryStore
from shop_assistant.key_manager import KeyManager
from shop_assistant.models import ChatRequest, key_prefix
from shop_assistant.prompts import build_conversation, build_system_prompt
from shop_assistant.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ChatClient(Protocol):
    async def generate(
        self,
        api_key: str,
        system_prompt: str,
        conversation: List[Dict[str, str]],
    ) -> str: ...


class Catalog(Protocol):
    async def get_products(self) -> List[Dict[str, Any]]: ...


class ChatService:
    """Runs one chat turn.

    Steps run strictly in order and stop at the first failure:

    1. validate the user id
    2. consume one unit of the user's daily allowance
    3. load history (a read failure falls back to an empty conversation)
    4. pick an API key with quota left
    5. call the upstream model
    6. charge the key, append the turn and persist the history

    An upstream failure leaves both the history and the key usage untouched.
    """

    def __init__(
        self,
        history: Optional[HistoryStore],
        rate_limiter: Optional[RateLimiter],
        key_manager: Optional[KeyManager],
        chat_client: ChatClient,
        catalog: Catalog,
        api_keys: Sequence[str],
        daily_rate_limit: int,
        daily_key_limit: int,
    ):
        self.history = history
        self.rate_limiter = rate_limiter
        self.key_manager = key_manager
        self.chat_client = chat_client
        self.catalog = catalog
        self.api_keys = list(api_keys)
        self.daily_rate_limit = daily_rate_limit
        self.daily_key_limit = daily_key_limit

    async def chat(self, request: ChatRequest) -> str:
        if not request.user_id:
            raise ValidationError("User ID is required.")

        if self.history is None or self.rate_limiter is None:
            raise ConfigurationError("Chat history store is not configured.")
        if self.key_manager is None:
            raise ConfigurationError("Key usage store is not configured.")
        if not self.api_keys:
            raise ConfigurationError("No Gemini API keys configured.")

        allowed = await self.rate_limiter.check_and_consume(
            request.user_id, self.daily_rate_limit
        )
        if not allowed:
            raise RateLimitedError(
                f"You have reached the daily chat limit ({self.daily_rate_limit} "
                "messages). Please try again tomorrow."
            )

        try:
            history = await self.history.load(request.user_id)
        except Exception:
            logger.exception("Error fetching chat history for %s", request.user_id)
            history = []

        api_key = await self.key_manager.select_key(self.api_keys, self.daily_key_limit)
        if api_key is None:
            raise CapacityExhaustedError(
                "All AI capacity for today is used up. Please try again later."
            )

        products = await self.catalog.get_products()
        system_prompt = build_system_prompt(products, request.cart_items)
        conversation = build_conversation(
            history, request.message, request.ai_structured_input
        )

        try:
            reply = await self.chat_client.generate(
                api_key, system_prompt, conversation
            )
        except UpstreamError:
            raise
        except Exception as exc:
            logger.exception("Error during AI response generation")
            raise UpstreamError(f"AI Error: {exc}") from exc

        await self.key_manager.record_usage(api_key)
        logger.info(
            "Chat reply for %s via key %s", request.user_id, key_prefix(api_key)
        )

        try:
            await self.history.append(request.user_id, history, request.message, reply)
        except Exception as exc:
            logger.exception("Error saving chat history for %s", request.user_id)
            raise StorageError("Failed to save chat history.") from exc

        return reply

    async def get_history(self, user_id: str) -> List[Dict[str, str]]:
        history = self._require_history(user_id)
        try:
            return await history.load(user_id)
        except Exception as exc:
            logger.exception("Error fetching chat history for %s", user_id)
            raise StorageError("Failed to fetch chat history.") from exc

    async def delete_history(self, user_id: str) -> None:
        history = self._require_history(user_id)
        try:
            await history.delete(user_id)
        except Exception as exc:
            logger.exception("Error deleting chat history for %s", user_id)
            raise StorageError("Failed to delete chat history.") from exc

    def _require_history(self, user_id: str) -> HistoryStore:
        if not user_id:
            raise ValidationError("User ID is required.")
        if self.history is None:
            raise ConfigurationError("Chat history store is not configured.")
        return self.history
