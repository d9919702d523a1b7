import json
import time
import inspect
from dataclasses import asdict
from typing import Optional

from tuckshop.observability.logging import log
from tuckshop.settings import settings
from tuckshop.store.models import ConversationSession, Selection, Step, SELECTION_FIELDS

PREFIX = "chat:session:"


def _key(phone: str) -> str:
    return f"{PREFIX}{phone}"


def _filter_session_kwargs(data: dict) -> dict:
    """
    Drop unknown fields so ConversationSession(**kwargs) never explodes on records
    written by an older build.
    """
    sig = inspect.signature(ConversationSession)
    allowed = set(sig.parameters.keys())
    return {k: v for k, v in data.items() if k in allowed}


def _rehydrate(data: dict) -> ConversationSession:
    sel = data.get("selection") or {}
    if not isinstance(sel, dict):
        sel = {}
    sel = {k: v for k, v in sel.items() if k in SELECTION_FIELDS}
    mapping = sel.get("list_index_map") or {}
    # JSON keeps string keys; ids must come back as ints
    sel["list_index_map"] = {str(k): int(v) for k, v in mapping.items()}
    data["selection"] = Selection(**sel)
    data["step"] = Step(data.get("step") or Step.WELCOME.value)
    return ConversationSession(**_filter_session_kwargs(data))


class ConversationStore:
    """TTL-bounded per-customer conversation state, keyed by phone number."""

    def __init__(self, redis, ttl_sec: int = None):
        self.redis = redis
        self.ttl_sec = int(ttl_sec or settings.SESSION_TTL_SEC)

    def load(self, phone: str) -> Optional[ConversationSession]:
        raw = self.redis.get(_key(phone))
        if not raw:
            return None

        try:
            session = _rehydrate(json.loads(raw))
        except (ValueError, TypeError) as e:
            # A corrupt record is treated like an expired one: the customer starts over.
            log(event="session_corrupt_dropped", phone=phone, error=str(e)[:200])
            return None

        # The key TTL normally handles this; the age check covers stores without expiry.
        if session.last_activity_at and int(time.time()) - int(session.last_activity_at) > self.ttl_sec:
            log(event="session_expired", phone=phone, step=session.step.value)
            return None
        return session

    def save(self, session: ConversationSession) -> None:
        session.last_activity_at = int(time.time())
        data = asdict(session)
        data["step"] = session.step.value
        self.redis.set(_key(session.phone), json.dumps(data), ex=self.ttl_sec)

    def delete(self, phone: str) -> None:
        self.redis.delete(_key(phone))
