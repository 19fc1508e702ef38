"""Per-user daily message quota backed by Redis counters.

Each admitted message increments ``rag:quota:<user>:<YYYY-MM-DD>`` with an
atomic INCR, so concurrent requests from the same user cannot overshoot the
limit. Counters expire two days after their first increment.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import redis

from campus_rag.cache import get_redis
from campus_rag.config import settings
from campus_rag.errors import QuotaExceededError

logger = logging.getLogger(__name__)

QUOTA_KEY_TTL_SECONDS = 2 * 86400


@dataclass
class QuotaStatus:
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class DailyQuota:
    """Counts messages per user per calendar day.

    Args:
        client: Redis client; defaults to get_redis().
        limit: Messages allowed per user per day; defaults to settings.DAILY_MESSAGE_LIMIT.
            A limit of 0 or less disables the quota.
    """

    def __init__(self, client: Optional[redis.Redis] = None, limit: Optional[int] = None) -> None:
        self._client = client
        self.limit = settings.DAILY_MESSAGE_LIMIT if limit is None else limit

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    @staticmethod
    def _key(user_id: str, day: Optional[date] = None) -> str:
        return f"rag:quota:{user_id}:{(day or date.today()).isoformat()}"

    def consume(self, user_id: str, day: Optional[date] = None) -> QuotaStatus:
        """Admit one message for the user or raise.

        Raises:
            QuotaExceededError: When the user already used the day's allowance.
        """
        if self.limit <= 0:
            return QuotaStatus(used=0, limit=0)
        key = self._key(user_id, day)
        used = int(self.client.incr(key))
        if used == 1:
            self.client.expire(key, QUOTA_KEY_TTL_SECONDS)
        if used > self.limit:
            logger.info("Daily quota exhausted for user %s", user_id)
            raise QuotaExceededError(f"Daily limit of {self.limit} messages reached")
        return QuotaStatus(used=used, limit=self.limit)

    def status(self, user_id: str, day: Optional[date] = None) -> QuotaStatus:
        raw = self.client.get(self._key(user_id, day))
        used = min(int(raw), self.limit) if raw else 0
        return QuotaStatus(used=used, limit=self.limit)
