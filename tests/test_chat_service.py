import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from shop_assistant.chat_service import ChatService
from frozen_clock import FixedClock
from shop_assistant.errors import (
    CapacityExhaustedError,
    ConfigurationError,
    RateLimitedError,
    StorageError,
    UpstreamError,
    ValidationError,
)
from shop_assistant.history import HistoryStore
from shop_assistant.key_manager import USAGE_KEY_PREFIX, KeyManager
from shop_assistant.models import ROLE_AI, ROLE_USER, ChatRequest
from shop_assistant.rate_limiter import RateLimiter
from shop_assistant.storage import InMemoryKVStore

TODAY = "2026-02-14"


class FakeChatClient:
    def __init__(self, reply: str = "Hello from the store!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Tuple[str, str, List[Dict[str, str]]]] = []

    async def generate(
        self, api_key: str, system_prompt: str, conversation: List[Dict[str, str]]
    ) -> str:
        self.calls.append((api_key, system_prompt, conversation))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeCatalog:
    def __init__(self, products: Optional[List[Dict[str, Any]]] = None):
        self.products = products or [{"title": "Canvas Tote", "discount": 15600}]

    async def get_products(self) -> List[Dict[str, Any]]:
        return self.products


class BrokenReadStore(InMemoryKVStore):
    async def get(self, key):
        if key.startswith("rate_limit:"):
            return await super().get(key)
        raise ConnectionError("storage unavailable")


class BrokenWriteStore(InMemoryKVStore):
    async def put(self, key, value, ttl_seconds=None):
        if key.startswith("rate_limit:"):
            await super().put(key, value, ttl_seconds=ttl_seconds)
            return
        raise ConnectionError("storage unavailable")


def make_service(
    history_store: Optional[InMemoryKVStore] = None,
    usage_store: Optional[InMemoryKVStore] = None,
    chat_client: Optional[FakeChatClient] = None,
    api_keys: Optional[List[str]] = None,
    daily_rate_limit: int = 50,
    daily_key_limit: int = 10000,
    max_history_length: int = 20,
) -> ChatService:
    clock = FixedClock(datetime(2026, 2, 14, 10, 0, 0, tzinfo=timezone.utc))
    history_store = history_store if history_store is not None else InMemoryKVStore()
    usage_store = usage_store if usage_store is not None else InMemoryKVStore()
    return ChatService(
        history=HistoryStore(history_store, max_history_length),
        rate_limiter=RateLimiter(history_store, clock),
        key_manager=KeyManager(usage_store, clock),
        chat_client=chat_client or FakeChatClient(),
        catalog=FakeCatalog(),
        api_keys=api_keys if api_keys is not None else ["k1", "k2"],
        daily_rate_limit=daily_rate_limit,
        daily_key_limit=daily_key_limit,
    )


async def usage_of(store: InMemoryKVStore, api_key: str) -> Optional[Dict[str, Any]]:
    raw = await store.get(USAGE_KEY_PREFIX + api_key)
    return json.loads(raw) if raw else None


@pytest.mark.asyncio
async def test_chat_success_persists_history_and_usage():
    history_store = InMemoryKVStore()
    usage_store = InMemoryKVStore()
    client = FakeChatClient(reply="We have totes!")
    service = make_service(history_store, usage_store, client)

    reply = await service.chat(ChatRequest(user_id="u1", message="Any bags?"))

    assert reply == "We have totes!"
    assert json.loads(await history_store.get("u1")) == [
        {"role": ROLE_USER, "text": "Any bags?"},
        {"role": ROLE_AI, "text": "We have totes!"},
    ]
    assert await usage_of(usage_store, "k1") == {"count": 1, "date": TODAY}
    assert client.calls[0][0] == "k1"
    assert "Canvas Tote" in client.calls[0][1]


@pytest.mark.asyncio
async def test_chat_sends_previous_history_to_upstream():
    history_store = InMemoryKVStore()
    await history_store.put(
        "u1",
        json.dumps(
            [{"role": ROLE_USER, "text": "hi"}, {"role": ROLE_AI, "text": "hello"}]
        ),
    )
    client = FakeChatClient()
    service = make_service(history_store, chat_client=client)

    await service.chat(ChatRequest(user_id="u1", message="price?"))

    conversation = client.calls[0][2]
    assert conversation == [
        {"role": "user", "text": "hi"},
        {"role": "model", "text": "hello"},
        {"role": "user", "text": "price?"},
    ]


@pytest.mark.asyncio
async def test_chat_ignores_malformed_history_entries():
    history_store = InMemoryKVStore()
    await history_store.put("u1", '["bad"]')
    client = FakeChatClient(reply="Hi there")
    service = make_service(history_store, chat_client=client)

    reply = await service.chat(ChatRequest(user_id="u1", message="hello"))

    assert reply == "Hi there"
    assert client.calls[0][2] == [{"role": "user", "text": "hello"}]
    assert json.loads(await history_store.get("u1")) == [
        {"role": ROLE_USER, "text": "hello"},
        {"role": ROLE_AI, "text": "Hi there"},
    ]


@pytest.mark.asyncio
async def test_history_load_keeps_only_well_formed_turns():
    history_store = InMemoryKVStore()
    await history_store.put(
        "u1",
        json.dumps(
            [
                {"role": ROLE_USER, "text": "hi"},
                "bad",
                {"role": ROLE_AI, "text": 3},
                {"text": "no role"},
                {"role": ROLE_AI, "text": "hello"},
            ]
        ),
    )
    service = make_service(history_store)

    assert await service.get_history("u1") == [
        {"role": ROLE_USER, "text": "hi"},
        {"role": ROLE_AI, "text": "hello"},
    ]


@pytest.mark.asyncio
async def test_prompt_building_error_is_not_reported_as_upstream_error():
    client = FakeChatClient()
    service = make_service(chat_client=client)
    service.catalog = FakeCatalog([{"title": "Tote", "styles": "not-a-list"}])

    with pytest.raises(AttributeError):
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert client.calls == []


@pytest.mark.asyncio
async def test_chat_requires_user_id():
    history_store = InMemoryKVStore()
    service = make_service(history_store)

    with pytest.raises(ValidationError):
        await service.chat(ChatRequest(user_id="", message="hi"))

    assert history_store._data == {}


@pytest.mark.asyncio
async def test_chat_without_keys_is_configuration_error():
    history_store = InMemoryKVStore()
    service = make_service(history_store, api_keys=[])

    with pytest.raises(ConfigurationError):
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert history_store._data == {}


@pytest.mark.asyncio
async def test_chat_without_store_is_configuration_error():
    service = make_service()
    service.history = None

    with pytest.raises(ConfigurationError):
        await service.chat(ChatRequest(user_id="u1", message="hi"))


@pytest.mark.asyncio
async def test_rate_limited_user_touches_nothing():
    history_store = InMemoryKVStore()
    usage_store = InMemoryKVStore()
    await history_store.put("rate_limit:u1:" + TODAY, "50")
    client = FakeChatClient()
    service = make_service(history_store, usage_store, client)

    with pytest.raises(RateLimitedError) as exc_info:
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert exc_info.value.status_code == 429
    assert "50" in exc_info.value.message
    assert await history_store.get("rate_limit:u1:" + TODAY) == "50"
    assert await history_store.get("u1") is None
    assert usage_store._data == {}
    assert client.calls == []


@pytest.mark.asyncio
async def test_all_keys_exhausted_is_capacity_error():
    history_store = InMemoryKVStore()
    usage_store = InMemoryKVStore()
    for api_key in ("k1", "k2"):
        await usage_store.put(
            USAGE_KEY_PREFIX + api_key, json.dumps({"count": 5, "date": TODAY})
        )
    client = FakeChatClient()
    service = make_service(history_store, usage_store, client, daily_key_limit=5)

    with pytest.raises(CapacityExhaustedError) as exc_info:
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert exc_info.value.status_code == 503
    assert exc_info.value.headers == {"Retry-After": "60"}
    assert client.calls == []
    assert await history_store.get("u1") is None


@pytest.mark.asyncio
async def test_exhausted_first_key_falls_through_to_second():
    usage_store = InMemoryKVStore()
    await usage_store.put(
        USAGE_KEY_PREFIX + "k1", json.dumps({"count": 5, "date": TODAY})
    )
    client = FakeChatClient()
    service = make_service(usage_store=usage_store, chat_client=client, daily_key_limit=5)

    await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert client.calls[0][0] == "k2"
    assert await usage_of(usage_store, "k1") == {"count": 5, "date": TODAY}
    assert await usage_of(usage_store, "k2") == {"count": 1, "date": TODAY}


@pytest.mark.asyncio
async def test_upstream_failure_leaves_history_and_usage_unchanged():
    history_store = InMemoryKVStore()
    usage_store = InMemoryKVStore()
    previous = [{"role": ROLE_USER, "text": "hi"}, {"role": ROLE_AI, "text": "hello"}]
    await history_store.put("u1", json.dumps(previous))
    await usage_store.put(
        USAGE_KEY_PREFIX + "k1", json.dumps({"count": 3, "date": TODAY})
    )
    client = FakeChatClient(error=UpstreamError("AI Error: quota exceeded"))
    service = make_service(history_store, usage_store, client)

    with pytest.raises(UpstreamError, match="quota exceeded"):
        await service.chat(ChatRequest(user_id="u1", message="again"))

    assert json.loads(await history_store.get("u1")) == previous
    assert await usage_of(usage_store, "k1") == {"count": 3, "date": TODAY}


@pytest.mark.asyncio
async def test_unexpected_upstream_exception_is_wrapped():
    client = FakeChatClient(error=RuntimeError("boom"))
    service = make_service(chat_client=client)

    with pytest.raises(UpstreamError, match="AI Error: boom"):
        await service.chat(ChatRequest(user_id="u1", message="hi"))


@pytest.mark.asyncio
async def test_history_read_failure_degrades_to_empty_history():
    client = FakeChatClient(reply="fresh start")
    service = make_service(BrokenReadStore(), chat_client=client)

    reply = await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert reply == "fresh start"
    assert client.calls[0][2] == [{"role": "user", "text": "hi"}]


@pytest.mark.asyncio
async def test_history_write_failure_is_storage_error():
    usage_store = InMemoryKVStore()
    service = make_service(BrokenWriteStore(), usage_store)

    with pytest.raises(StorageError):
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    # the upstream call succeeded, so the key was charged
    assert await usage_of(usage_store, "k1") == {"count": 1, "date": TODAY}


@pytest.mark.asyncio
async def test_history_is_truncated_to_max_length():
    history_store = InMemoryKVStore()
    previous = [
        {"role": ROLE_USER if i % 2 == 0 else ROLE_AI, "text": f"msg-{i}"}
        for i in range(21)
    ]
    await history_store.put("u1", json.dumps(previous))
    service = make_service(history_store, chat_client=FakeChatClient(reply="latest"))

    await service.chat(ChatRequest(user_id="u1", message="newest"))

    stored = json.loads(await history_store.get("u1"))
    assert len(stored) == 20
    assert stored[-2:] == [
        {"role": ROLE_USER, "text": "newest"},
        {"role": ROLE_AI, "text": "latest"},
    ]
    assert stored[0] == {"role": ROLE_AI, "text": "msg-3"}


@pytest.mark.asyncio
async def test_structured_input_sent_upstream_but_message_stored():
    history_store = InMemoryKVStore()
    client = FakeChatClient()
    service = make_service(history_store, chat_client=client)
    structured = {"type": "product_detail", "data": {"title": "Canvas Tote"}}

    await service.chat(
        ChatRequest(
            user_id="u1",
            message="Tell me about Canvas Tote",
            ai_structured_input=structured,
        )
    )

    assert client.calls[0][2][-1] == {"role": "user", "text": json.dumps(structured)}
    stored = json.loads(await history_store.get("u1"))
    assert stored[0] == {"role": ROLE_USER, "text": "Tell me about Canvas Tote"}


@pytest.mark.asyncio
async def test_rate_limit_charged_even_when_upstream_fails():
    history_store = InMemoryKVStore()
    service = make_service(
        history_store, chat_client=FakeChatClient(error=UpstreamError("AI Error: down"))
    )

    with pytest.raises(UpstreamError):
        await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert await history_store.get("rate_limit:u1:" + TODAY) == "1"


@pytest.mark.asyncio
async def test_get_and_delete_history():
    history_store = InMemoryKVStore()
    service = make_service(history_store)
    await service.chat(ChatRequest(user_id="u1", message="hi"))

    assert len(await service.get_history("u1")) == 2
    assert await service.get_history("someone-else") == []

    await service.delete_history("u1")

    assert await service.get_history("u1") == []


@pytest.mark.asyncio
async def test_history_operations_require_user_id():
    service = make_service()

    with pytest.raises(ValidationError):
        await service.get_history("")
    with pytest.raises(ValidationError):
        await service.delete_history("")


@pytest.mark.asyncio
async def test_get_history_storage_failure_is_storage_error():
    service = make_service(BrokenReadStore())

    with pytest.raises(StorageError):
        await service.get_history("u1")
