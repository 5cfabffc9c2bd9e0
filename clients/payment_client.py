"""
Payment processor client (hosted checkout, form-encoded REST API).

Synchronous, built on requests - callers on the event loop hand it to a
worker thread. Webhook payloads are verified with HMAC-SHA256 over
"{timestamp}.{payload}" before anything inside them is trusted.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import requests

from core.models.checkout import CheckoutItem, CheckoutLineItem, CheckoutSession

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.stripe.com"
SIGNATURE_TOLERANCE_SECONDS = 300


class PaymentProcessorError(Exception):
    """Processor request failed or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class WebhookSignatureError(Exception):
    """Webhook signature missing, malformed, stale or wrong."""


def _form_line_items(items: list[CheckoutItem], currency: str) -> dict[str, Any]:
    """Flatten cart lines into the processor's bracketed form keys."""
    form: dict[str, Any] = {}
    for i, item in enumerate(items):
        prefix = f"line_items[{i}]"
        form[f"{prefix}[quantity]"] = item.quantity
        form[f"{prefix}[price_data][currency]"] = currency
        form[f"{prefix}[price_data][unit_amount]"] = item.unit_amount_cents
        form[f"{prefix}[price_data][product_data][name]"] = item.name
        # Catalog id rides along so paid lines map back to products
        form[f"{prefix}[price_data][product_data][metadata][productId]"] = item.id
        if item.image:
            form[f"{prefix}[price_data][product_data][images][0]"] = item.image
    return form


def _session_from_payload(payload: dict) -> CheckoutSession:
    line_items = []
    for line in (payload.get("line_items") or {}).get("data", []):
        product = (line.get("price") or {}).get("product") or {}
        if isinstance(product, str):
            product = {"id": product}
        line_items.append(
            CheckoutLineItem(
                product_id=(product.get("metadata") or {}).get("productId") or product.get("id", ""),
                name=product.get("name") or line.get("description") or "Unknown Product",
                quantity=line.get("quantity") or 1,
                amount_total_cents=line.get("amount_total") or 0,
            )
        )

    return CheckoutSession(
        id=payload["id"],
        status=payload.get("status"),
        payment_status=payload.get("payment_status"),
        url=payload.get("url"),
        amount_total_cents=payload.get("amount_total") or 0,
        customer_email=(payload.get("customer_details") or {}).get("email"),
        line_items=line_items,
    )


class PaymentClient:
    """Hosted checkout sessions and webhook verification."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        api_base: str = DEFAULT_API_BASE,
        currency: str = "aud",
        timeout_seconds: float = 15.0,
    ):
        """
        Raises:
            ValueError: If secret_key or webhook_secret is empty
        """
        if not secret_key:
            raise ValueError("secret_key is required")
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        self._webhook_secret = webhook_secret
        self._api_base = api_base.rstrip("/")
        self._currency = currency
        self._timeout = timeout_seconds
        self._http = requests.Session()
        self._http.headers["Authorization"] = f"Bearer {secret_key}"

    def _call(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self._api_base}{path}"
        try:
            response = self._http.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Payment processor connection failed: {e}")
            raise PaymentProcessorError(f"Connection failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Payment processor returned invalid JSON ({response.status_code})")
            raise PaymentProcessorError("Invalid response from payment processor", response.status_code) from e

        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message", "Unknown error")
            logger.error(f"Payment processor error {response.status_code}: {message}")
            raise PaymentProcessorError(message, response.status_code)
        return body

    def create_checkout_session(
        self,
        items: list[CheckoutItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a hosted payment page for the cart.

        success_url may contain {CHECKOUT_SESSION_ID}; the processor fills it in.
        """
        form = _form_line_items(items, self._currency)
        form["mode"] = "payment"
        form["success_url"] = success_url
        form["cancel_url"] = cancel_url

        session = _session_from_payload(self._call("POST", "/v1/checkout/sessions", data=form))
        logger.info(f"Checkout session {session.id} created for {len(items)} line(s)")
        return session

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Fetch a session with its paid line items and their products."""
        payload = self._call(
            "GET",
            f"/v1/checkout/sessions/{session_id}",
            params=[("expand[]", "line_items"), ("expand[]", "line_items.data.price.product")],
        )
        return _session_from_payload(payload)

    def construct_event(
        self,
        payload: bytes,
        signature_header: str | None,
        tolerance_seconds: int = SIGNATURE_TOLERANCE_SECONDS,
        now: float | None = None,
    ) -> dict:
        """Verify a webhook delivery and return the decoded event.

        Header format: "t=<unix ts>,v1=<hex sig>[,v1=<hex sig>...]".

        Raises:
            WebhookSignatureError: Signature missing, malformed, stale or wrong.
        """
        if not signature_header:
            raise WebhookSignatureError("Missing signature header")

        timestamp = None
        signatures = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if timestamp is None or not timestamp.isdigit() or not signatures:
            raise WebhookSignatureError("Malformed signature header")

        if tolerance_seconds and abs((now or time.time()) - int(timestamp)) > tolerance_seconds:
            raise WebhookSignatureError("Timestamp outside the tolerance zone")

        signed = f"{timestamp}.".encode("utf-8") + payload
        expected = hmac.new(
            self._webhook_secret.encode("utf-8"), signed, hashlib.sha256
        ).hexdigest()

        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise WebhookSignatureError("No signature matches the payload")

        try:
            return json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError("Payload is not valid JSON") from e

    def close(self) -> None:
        self._http.close()
