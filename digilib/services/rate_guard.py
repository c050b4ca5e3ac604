# digilib/services/rate_guard.py
from dataclasses import dataclass
from typing import Dict

import redis

from digilib.utils.retry import redis_retry
from digilib.utils.settings import (
    REDIS_URL,
    RATE_OTP_ISSUE_WINDOW_SECONDS,
    RATE_INITIATE_LIMIT,
    RATE_INITIATE_WINDOW_SECONDS,
    RATE_CODE_SUBMIT_LIMIT,
    RATE_CODE_SUBMIT_WINDOW_SECONDS,
    RATE_ITEM_FETCH_WINDOW_SECONDS,
)
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RatePolicy:
    limit: int
    window_seconds: int


DEFAULT_POLICIES: Dict[str, RatePolicy] = {
    "otp_issue": RatePolicy(1, RATE_OTP_ISSUE_WINDOW_SECONDS),
    "download_initiate": RatePolicy(RATE_INITIATE_LIMIT, RATE_INITIATE_WINDOW_SECONDS),
    "code_submit": RatePolicy(RATE_CODE_SUBMIT_LIMIT, RATE_CODE_SUBMIT_WINDOW_SECONDS),
    "item_fetch": RatePolicy(1, RATE_ITEM_FETCH_WINDOW_SECONDS),
}


class RateGuard:
    """
    Stałe okno czasowe na parę (identity, action).
    Tylko doradza, nic nie blokuje, decyzję podejmuje wywołujący.
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        policies: Dict[str, RatePolicy] | None = None,
        prefix: str = "rate",
    ):
        self.redis = client or redis.Redis.from_url(url or REDIS_URL, decode_responses=True)
        self.policies = dict(DEFAULT_POLICIES if policies is None else policies)
        self.prefix = prefix

    def _key(self, identity: str, action: str) -> str:
        return f"{self.prefix}:{action}:{identity}"

    @redis_retry()
    def _ensure_connection(self) -> None:
        self.redis.ping()

    def allow(self, identity: str, action: str) -> bool:
        policy = self.policies.get(action)
        if policy is None:
            return True

        #ponawiamy tylko zestawienie połączenia, INCR po EXEC nie może pójść drugi raz
        self._ensure_connection()

        key = self._key(identity, action)
        #SET key 0 NX EX window + INCR w jednej transakcji MULTI
        #okno startuje przy pierwszym żądaniu i nie przesuwa się
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(key, 0, nx=True, ex=policy.window_seconds)
        pipe.incr(key)
        _, count = pipe.execute()

        allowed = int(count) <= policy.limit
        if not allowed:
            logger.warning(f"Rate limit hit for {action} by {identity} ({count}/{policy.limit})")
        return allowed

    @redis_retry()
    def retry_after(self, identity: str, action: str) -> int:
        if action not in self.policies:
            return 0
        ttl = self.redis.ttl(self._key(identity, action))
        #-2 brak klucza, -1 brak ttl
        return max(int(ttl), 0)
