"""Daily per-user request limit."""

import logging

from shop_assistant.clock import Clock
from shop_assistant.storage import KVStore

logger = logging.getLogger(__name__)


def rate_limit_key(user_id: str, day: str) -> str:
    return f"rate_limit:{user_id}:{day}"


class RateLimiter:
    """Counts chat requests per user per calendar day.

    The counter expires at the next midnight, so no cleanup is needed. A
    rejected request is not counted.
    """

    def __init__(self, store: KVStore, clock: Clock):
        self.store = store
        self.clock = clock

    async def check_and_consume(self, user_id: str, limit: int) -> bool:
        key = rate_limit_key(user_id, self.clock.today())
        raw = await self.store.get(key)
        count = int(raw) if raw else 0

        if count >= limit:
            logger.info("User %s reached the daily limit of %d", user_id, limit)
            return False

        await self.store.put(
            key, str(count + 1), ttl_seconds=self.clock.seconds_until_midnight()
        )
        return True
