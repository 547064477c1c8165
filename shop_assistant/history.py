"""Conversation history persistence."""

from typing import Any, Dict, List

from shop_assistant.models import append_turn
from shop_assistant.storage import KVStore, get_json, put_json


def _is_turn(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and isinstance(entry.get("role"), str)
        and isinstance(entry.get("text"), str)
    )


class HistoryStore:
    """Bounded per-user chat history stored as a JSON list."""

    def __init__(self, store: KVStore, max_length: int = 20):
        self.store = store
        self.max_length = max_length

    async def load(self, user_id: str) -> List[Dict[str, str]]:
        data = await get_json(self.store, user_id)
        if not isinstance(data, list):
            return []
        return [entry for entry in data if _is_turn(entry)]

    async def append(
        self,
        user_id: str,
        history: List[Dict[str, str]],
        user_text: str,
        ai_text: str,
    ) -> List[Dict[str, str]]:
        updated = append_turn(history, user_text, ai_text, self.max_length)
        await put_json(self.store, user_id, updated)
        return updated

    async def delete(self, user_id: str) -> None:
        await self.store.delete(user_id)
