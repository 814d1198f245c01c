"""Payment-intent client for a Stripe-compatible REST API."""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import requests

from . import config
from .errors import PaymentProviderError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED_STATUSES = ("canceled", "requires_payment_method")


@dataclass
class PaymentIntent:
    id: str
    status: str
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentProvider:
    def __init__(self, api_key: str = config.PAYMENT_API_KEY, base_url: str = config.PAYMENT_API_BASE,
                 timeout: float = config.PAYMENT_TIMEOUT_SEC, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _call(self, method: str, path: str, data: dict = None, idempotency_key: str = None) -> PaymentIntent:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", data=data,
                                        headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.exceptions.RequestException as e:
            logger.error("[payments] %s %s failed: %s", method, path, e)
            raise PaymentProviderError("Payment provider request failed") from e
        except ValueError as e:
            raise PaymentProviderError("Payment provider returned invalid JSON") from e
        return PaymentIntent(
            id=body["id"],
            status=body.get("status", ""),
            client_secret=body.get("client_secret"),
            amount=body.get("amount"),
            currency=body.get("currency"),
        )

    def create_intent(self, amount: Decimal, currency: str, *, description: str = None,
                      receipt_email: str = None, metadata: dict = None,
                      idempotency_key: str = None) -> PaymentIntent:
        data = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "payment_method_types[]": "card",
        }
        if description:
            data["description"] = description
        if receipt_email:
            data["receipt_email"] = receipt_email
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        intent = self._call("POST", "/payment_intents", data, idempotency_key=idempotency_key)
        logger.info("[payments] created intent %s amount=%s %s", intent.id, data["amount"], currency)
        return intent

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        return self._call("GET", f"/payment_intents/{intent_id}")

    def cancel_intent(self, intent_id: str) -> PaymentIntent:
        intent = self._call("POST", f"/payment_intents/{intent_id}/cancel")
        logger.info("[payments] cancelled intent %s", intent_id)
        return intent
