"""Daily usage tracking and rotation across upstream API keys."""

import logging
from typing import Dict, Optional, Sequence

from shop_assistant.clock import Clock
from shop_assistant.models import (
    STATUS_ACTIVE,
    STATUS_EXHAUSTED,
    UsageRecord,
    key_prefix,
)
from shop_assistant.storage import KVStore, get_json, put_json

logger = logging.getLogger(__name__)

USAGE_KEY_PREFIX = "key_usage:"


class KeyManager:
    """Selects the first API key still under its daily limit.

    Counters live in the usage store as ``{"count": n, "date": "YYYY-MM-DD"}``
    and reset lazily: the first read on a new day writes a zeroed record.
    Selection and charging are separate steps, so a failed upstream call
    never consumes quota.
    """

    def __init__(self, store: KVStore, clock: Clock):
        self.store = store
        self.clock = clock

    async def select_key(self, api_keys: Sequence[str], limit: int) -> Optional[str]:
        today = self.clock.today()

        for api_key in api_keys:
            stored = await self._read(api_key)
            record = stored.rolled_over(today)
            if record is not stored:
                await self._write(api_key, record)

            if record.count < limit:
                return api_key

        logger.warning("All %d API keys reached the daily limit", len(api_keys))
        return None

    async def record_usage(self, api_key: str) -> UsageRecord:
        record = (await self._read(api_key)).rolled_over(self.clock.today())
        record = UsageRecord(count=record.count + 1, date=record.date)
        await self._write(api_key, record)
        logger.debug("Key %s used %d times today", key_prefix(api_key), record.count)
        return record

    async def get_usage(self, api_key: str) -> UsageRecord:
        return (await self._read(api_key)).rolled_over(self.clock.today())

    async def get_status(
        self, api_keys: Sequence[str], limit: int
    ) -> Dict[str, object]:
        keys = []
        for index, api_key in enumerate(api_keys, start=1):
            record = await self.get_usage(api_key)
            keys.append(self._format_key_status(f"key_{index}", api_key, record, limit))

        available_keys = sum(1 for key in keys if key["status"] == STATUS_ACTIVE)
        return {
            "total_keys": len(keys),
            "available_keys": available_keys,
            "exhausted_keys": len(keys) - available_keys,
            "date": self.clock.today(),
            "keys": keys,
        }

    def _format_key_status(
        self, key_id: str, api_key: str, record: UsageRecord, limit: int
    ) -> Dict[str, object]:
        return {
            "id": key_id,
            "key_prefix": key_prefix(api_key),
            "status": STATUS_ACTIVE if record.count < limit else STATUS_EXHAUSTED,
            "used": record.count,
            "limit": limit,
            "remaining": max(0, limit - record.count),
        }

    async def _read(self, api_key: str) -> UsageRecord:
        data = await get_json(self.store, USAGE_KEY_PREFIX + api_key)
        return UsageRecord.from_dict(data)

    async def _write(self, api_key: str, record: UsageRecord) -> None:
        await put_json(self.store, USAGE_KEY_PREFIX + api_key, record.to_dict())
