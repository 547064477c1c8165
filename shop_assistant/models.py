"""Data models for key usage, rate counters and chat history."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ROLE_USER = "user"
ROLE_AI = "ai"

STATUS_ACTIVE = "active"
STATUS_EXHAUSTED = "exhausted"


@dataclass
class UsageRecord:
    """Daily usage counter for a single API key."""

    count: int = 0
    date: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UsageRecord":
        if not isinstance(data, dict):
            return cls()
        return cls(count=int(data.get("count", 0)), date=str(data.get("date", "")))

    def to_dict(self) -> Dict[str, object]:
        return {"count": self.count, "date": self.date}

    def rolled_over(self, today: str) -> "UsageRecord":
        """Return this record as seen on ``today``; a stale date means zero usage."""
        if self.date != today:
            return UsageRecord(count=0, date=today)
        return self


@dataclass
class ChatRequest:
    """A single chat message from a shopper."""

    user_id: str
    message: str = ""
    cart_items: List[Dict[str, Any]] = field(default_factory=list)
    ai_structured_input: Optional[Any] = None


def key_prefix(api_key: str) -> str:
    if len(api_key) <= 11:
        return api_key
    return f"{api_key[:8]}...{api_key[-3:]}"


def append_turn(
    history: List[Dict[str, str]], user_text: str, ai_text: str, max_length: int
) -> List[Dict[str, str]]:
    """Append a user/AI pair and keep only the newest ``max_length`` entries."""
    updated = list(history)
    updated.append({"role": ROLE_USER, "text": user_text})
    updated.append({"role": ROLE_AI, "text": ai_text})
    if len(updated) > max_length:
        updated = updated[-max_length:]
    return updated
