from tuckshop.settings import settings

PREFIX = "msg:processed:"


class MessageDeduplicationGuard:
    """
    Admission control for inbound transport messages.

    The marker is written with SET NX in the same round-trip as the check, so two
    concurrent deliveries of one message id cannot both be admitted.
    """

    def __init__(self, redis, ttl_sec: int = None):
        self.redis = redis
        self.ttl_sec = int(ttl_sec or settings.DEDUP_TTL_SEC)

    def admit(self, message_id: str) -> bool:
        if not message_id:
            # Without an id there is nothing to dedupe on; let it through.
            return True
        return bool(self.redis.set(f"{PREFIX}{message_id}", "1", nx=True, ex=self.ttl_sec))

    def seen(self, message_id: str) -> bool:
        return bool(self.redis.exists(f"{PREFIX}{message_id}"))
