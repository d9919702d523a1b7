from contextlib import contextmanager
import time
import uuid

from tuckshop.core.errors import SenderBusy, SenderLockLost
from tuckshop.settings import settings

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class SenderLease:
    """Handle on a held sender lock. confirm() re-checks ownership and extends the TTL."""

    def __init__(self, redis, key: str, token: str, ttl_ms: int):
        self.redis = redis
        self.key = key
        self.token = token
        self.ttl_ms = ttl_ms

    def confirm(self):
        if not self.redis.eval(_RENEW_SCRIPT, 1, self.key, self.token, self.ttl_ms):
            raise SenderLockLost(f"Lock {self.key} expired or was taken over")


class SenderLocks:
    """
    Distributed lock table keyed by sender address.
    Guarantees at most one in-flight load -> transition -> save cycle per customer,
    which the message-id dedup guard alone does not (two taps = two message ids).
    """

    def __init__(self, redis, ttl_ms: int = None, retries: int = None, retry_sleep_sec: float = None):
        self.redis = redis
        self.ttl_ms = int(ttl_ms or settings.SENDER_LOCK_TTL_MS)
        self.retries = int(settings.SENDER_LOCK_RETRIES if retries is None else retries)
        self.retry_sleep_sec = float(
            settings.SENDER_LOCK_RETRY_SLEEP_SEC if retry_sleep_sec is None else retry_sleep_sec
        )

    @staticmethod
    def _key(sender: str) -> str:
        return f"lock:sender:{sender}"

    @contextmanager
    def hold(self, sender: str):
        r = self.redis
        key = self._key(sender)
        token = uuid.uuid4().hex
        acquired = bool(r.set(key, token, px=self.ttl_ms, nx=True))

        try:
            if not acquired:
                # Short spin: a double-tap usually finishes well inside the lock TTL.
                for _ in range(self.retries):
                    time.sleep(self.retry_sleep_sec)
                    if r.set(key, token, px=self.ttl_ms, nx=True):
                        acquired = True
                        break

                if not acquired:
                    raise SenderBusy(f"Could not acquire lock for sender {sender}")

            yield SenderLease(r, key, token, self.ttl_ms)
        finally:
            if acquired:
                # Release only if we still own it
                try:
                    r.eval(_RELEASE_SCRIPT, 1, key, token)
                except Exception:
                    pass
