import time
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import httpx

from tuckshop.observability.logging import log
from tuckshop.settings import settings


class PaymentProvider:
    """
    Hosted-payment client for the prepaid flow.

    Without a configured provider URL there is no link, unless PAYMENT_TEST_MODE is on:
    then a local test link is returned so the flow can be exercised end to end.
    """

    def __init__(self, url: str = None, integration_id: str = None, integration_key: str = None,
                 timeout_sec: float = None):
        self.url = settings.PAYMENT_PROVIDER_URL if url is None else url
        self.integration_id = integration_id or settings.PAYMENT_INTEGRATION_ID
        self.integration_key = integration_key or settings.PAYMENT_INTEGRATION_KEY
        self.timeout_sec = float(timeout_sec or settings.PAYMENT_TIMEOUT_SEC)

    def create_payment_link(self, amount: Decimal, reference: str, payer_contact: str) -> Optional[str]:
        if not self.url:
            if not settings.PAYMENT_TEST_MODE:
                log(event="payment_provider_unconfigured", reference=reference)
                return None
            log(event="payment_provider_test_mode", reference=reference)
            return f"{settings.PUBLIC_BASE_URL}/api/payments/test?ref={quote(reference)}"

        body = {
            "integrationId": self.integration_id,
            "reference": reference,
            "amount": str(Decimal(amount).quantize(Decimal("0.01"))),
            "payer": payer_contact,
            "description": "Order Payment",
            "resultUrl": f"{settings.PUBLIC_BASE_URL}/api/payments/confirm",
        }
        headers = {"Authorization": f"Bearer {self.integration_key}"} if self.integration_key else {}

        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                resp = client.post(self.url, json=body, headers=headers)
            elapsed_ms = int((time.time() - start) * 1000)

            if not (200 <= resp.status_code < 300):
                log(event="payment_link_failed", reference=reference, statusCode=int(resp.status_code),
                    elapsedMs=elapsed_ms, responseText=(resp.text or "")[:300])
                return None

            data = resp.json() or {}
            link = data.get("redirectUrl") or data.get("browserurl") or data.get("url")
            if not link:
                log(event="payment_link_missing", reference=reference, elapsedMs=elapsed_ms)
                return None
            log(event="payment_link_created", reference=reference, elapsedMs=elapsed_ms)
            return link
        except (httpx.HTTPError, ValueError) as e:
            log(event="payment_link_exception", reference=reference, errorType=type(e).__name__,
                error=str(e)[:300])
            return None
