import json
import time
from tuckshop.settings import settings

# Message bodies, replies and credentials never reach stdout verbatim when redaction is on
SENSITIVE_KEYS = {"text", "message", "reply", "payload", "password", "messageText", "body"}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def _mask_phone(v):
    s = str(v or "")
    if len(s) <= 4:
        return s
    return "*" * (len(s) - 4) + s[-4:]

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        clean_fields = {}
        for k, v in fields.items():
            if k in SENSITIVE_KEYS:
                clean_fields[k] = _redact_value(v)
            elif k in ("phone", "sender", "to"):
                clean_fields[k] = _mask_phone(v)
            elif isinstance(v, dict):
                clean_fields[k] = {sk: (_redact_value(sv) if sk in SENSITIVE_KEYS else sv) for sk, sv in v.items()}
            else:
                clean_fields[k] = v
        payload.update(clean_fields)
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
