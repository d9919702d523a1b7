import json
from typing import Any, Callable

from tuckshop.observability.logging import log


class ShopCache:
    """
    Read-through JSON cache plus best-effort invalidation.
    Invalidation failures are logged and swallowed: the data mutation that triggered
    them has already committed and must not be reported as failed.
    """

    def __init__(self, redis):
        self.redis = redis

    def get_or_load(self, key: str, ttl_sec: int, loader: Callable[[], Any]) -> Any:
        try:
            raw = self.redis.get(key)
            if raw:
                return json.loads(raw)
        except Exception as e:
            log(event="cache_read_failed", key=key, error=str(e)[:200])

        value = loader()
        try:
            self.redis.set(key, json.dumps(value), ex=int(ttl_sec))
        except Exception as e:
            log(event="cache_write_failed", key=key, error=str(e)[:200])
        return value

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self.redis.delete(*keys)
        except Exception as e:
            log(event="cache_invalidate_failed", keys=list(keys), error=str(e)[:200])

    def delete_pattern(self, pattern: str) -> None:
        try:
            keys = list(self.redis.scan_iter(match=pattern))
            if keys:
                self.redis.delete(*keys)
        except Exception as e:
            log(event="cache_invalidate_failed", pattern=pattern, error=str(e)[:200])

    def invalidate_cart(self, user_id: int) -> None:
        self.delete(f"cart:{user_id}", f"cart:summary:{user_id}")

    def invalidate_products(self) -> None:
        # Category listings carry product counts
        self.delete_pattern("products:*")
        self.delete_pattern("categories:*")

    def invalidate_orders(self, user_id: int) -> None:
        self.delete(f"orders:{user_id}")
        self.delete_pattern("analytics:*")
