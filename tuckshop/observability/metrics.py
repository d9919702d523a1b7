"""
Operational counters
--------------------
Lightweight Redis counters for the ordering pipeline, read back by /admin/metrics.
Every write is best-effort: a metrics failure must never affect a customer's turn.
"""
from __future__ import annotations
from typing import Dict

from tuckshop.observability.logging import log

K_MSG_ADMITTED = "metrics:messages:admitted"        # INCR
K_MSG_DUPLICATE = "metrics:messages:duplicate"      # INCR
K_MSG_FAILED = "metrics:messages:failed"            # INCR (apology sent)
K_SEND_FAILED = "metrics:outbound:failed"           # INCR
K_CHECKOUT_PREFIX = "metrics:checkout:"             # INCR per outcome

CHECKOUT_OUTCOMES = (
    "success",
    "empty_cart",
    "insufficient_stock",
    "transaction_failure",
    "artifact_failure",
    "payment_link_failure",
)


class Metrics:
    def __init__(self, redis):
        self.redis = redis

    def _incr(self, key: str) -> None:
        try:
            self.redis.incr(key, 1)
        except Exception as e:
            try:
                log(event="metrics_write_failed", key=key, error=str(e)[:200])
            except Exception:
                pass

    def message_admitted(self) -> None:
        self._incr(K_MSG_ADMITTED)

    def message_duplicate(self) -> None:
        self._incr(K_MSG_DUPLICATE)

    def message_failed(self) -> None:
        self._incr(K_MSG_FAILED)

    def outbound_failed(self) -> None:
        self._incr(K_SEND_FAILED)

    def checkout_outcome(self, outcome: str) -> None:
        self._incr(f"{K_CHECKOUT_PREFIX}{outcome}")

    def snapshot(self) -> Dict[str, int]:
        def _read(key: str) -> int:
            try:
                return int(self.redis.get(key) or 0)
            except Exception:
                return 0

        return {
            "messagesAdmitted": _read(K_MSG_ADMITTED),
            "messagesDuplicate": _read(K_MSG_DUPLICATE),
            "messagesFailed": _read(K_MSG_FAILED),
            "outboundFailed": _read(K_SEND_FAILED),
            "checkout": {o: _read(f"{K_CHECKOUT_PREFIX}{o}") for o in CHECKOUT_OUTCOMES},
        }
