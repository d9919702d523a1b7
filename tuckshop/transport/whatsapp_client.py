import hashlib
import hmac
import re
import time

import httpx

from tuckshop.observability.logging import log
from tuckshop.settings import settings

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(raw: str) -> str:
    """WhatsApp ids are bare digits; strip '+', spaces and dashes from anything else."""
    return _NON_DIGITS.sub("", str(raw or ""))


def verify_signature(secret: str, body: bytes, header_value: str) -> bool:
    """Check Meta's X-Hub-Signature-256 header ("sha256=<hex>") against the raw body."""
    if not secret:
        return True
    if not header_value or not header_value.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body or b"", hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header_value[len("sha256="):])


class WhatsAppClient:
    """
    Outbound text sender for the WhatsApp Cloud API.
    Failures are logged and reported as False; nothing is retried inline.
    """

    def __init__(self, access_token: str = None, phone_id: str = None, api_version: str = None,
                 timeout_sec: float = None):
        self.access_token = access_token or settings.WHATSAPP_ACCESS_TOKEN
        self.phone_id = phone_id or settings.WHATSAPP_PHONE_ID
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.timeout_sec = float(timeout_sec or settings.SEND_TIMEOUT_SEC)

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_id)

    @property
    def url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}/{self.phone_id}/messages"

    def send_text(self, to: str, text: str) -> bool:
        if not text:
            return True
        if not self.configured:
            log(event="whatsapp_send_skipped", to=to, reason="not_configured", text=text)
            return False

        body = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}

        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                resp = client.post(self.url, json=body, headers=headers)
            elapsed_ms = int((time.time() - start) * 1000)

            if 200 <= resp.status_code < 300:
                log(event="whatsapp_send_success", to=to, statusCode=int(resp.status_code), elapsedMs=elapsed_ms)
                return True

            log(event="whatsapp_send_failed", to=to, statusCode=int(resp.status_code), elapsedMs=elapsed_ms,
                responseText=(resp.text or "")[:500])
            return False
        except httpx.HTTPError as e:
            elapsed_ms = int((time.time() - start) * 1000)
            log(event="whatsapp_send_exception", to=to, elapsedMs=elapsed_ms, errorType=type(e).__name__,
                error=str(e)[:500])
            return False
