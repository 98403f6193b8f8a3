"""Worldpay Hosted Payment Pages client."""

from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping
from uuid import UUID

import httpx
from loguru import logger

from cloudcafe_api.core.settings import Settings, settings as default_settings

PAYMENT_PAGES_MEDIA_TYPE = "application/vnd.worldpay.payment_pages-v1.hal+json"
REDIRECT_OUTCOMES = ("success", "failure", "cancel", "pending", "error")

_REFERENCE_PATTERN = re.compile(r"^ORDER-([0-9a-fA-F]{8})-(\d+)$")


class PaymentGatewayError(RuntimeError):
    """Raised when a hosted payment session cannot be created."""

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class InvalidTransactionReferenceError(ValueError):
    def __init__(self, reference: str | None) -> None:
        super().__init__(f"Malformed transaction reference: {reference!r}")
        self.reference = reference


@dataclass(frozen=True)
class TransactionReference:
    order_prefix: str
    issued_at_ms: int

    def matches(self, order_id: UUID | str) -> bool:
        return str(order_id).lower().startswith(self.order_prefix.lower())


@dataclass(frozen=True)
class HostedPaymentSession:
    url: str
    transaction_reference: str


def build_transaction_reference(order_id: UUID | str, *, now_ms: int | None = None) -> str:
    issued = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ORDER-{str(order_id)[:8]}-{issued}"


def parse_transaction_reference(reference: str | None) -> TransactionReference:
    match = _REFERENCE_PATTERN.match(reference or "")
    if not match:
        raise InvalidTransactionReferenceError(reference)
    return TransactionReference(order_prefix=match.group(1), issued_at_ms=int(match.group(2)))


def to_minor_units(amount: Decimal) -> int:
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _extract_redirect_url(payload: Mapping[str, Any]) -> str | None:
    if payload.get("url"):
        return str(payload["url"])
    links = payload.get("_links") or {}
    for rel in ("hpp:redirect", "redirect"):
        link = links.get(rel) or {}
        if isinstance(link, Mapping) and link.get("href"):
            return str(link["href"])
    return None


class WorldpayClient:
    """Creates hosted payment sessions; one call per online checkout."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
    ) -> None:
        self._http_client = http_client
        self._config = config or default_settings

    def _credentials(self) -> str:
        config = self._config
        if config.worldpay_service_key:
            raw = config.worldpay_service_key
        elif config.worldpay_username and config.worldpay_password:
            raw = f"{config.worldpay_username}:{config.worldpay_password}"
        else:
            raise PaymentGatewayError("Worldpay credentials are not configured")
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _result_urls(self, order_id: UUID | str) -> Dict[str, str]:
        base = self._config.app_url.rstrip("/")
        return {
            f"{outcome}URL": f"{base}/payment/{outcome}?order={order_id}"
            for outcome in REDIRECT_OUTCOMES
        }

    def build_request(
        self,
        *,
        order_id: UUID | str,
        amount_minor: int,
        currency: str,
        transaction_reference: str,
    ) -> Dict[str, Any]:
        return {
            "transactionReference": transaction_reference,
            "merchant": {"entity": self._config.worldpay_merchant_entity},
            "narrative": {"line1": self._config.worldpay_narrative},
            "description": self._config.worldpay_description,
            "value": {"currency": currency, "amount": amount_minor},
            "resultURLs": self._result_urls(order_id),
        }

    async def create_payment_session(
        self,
        *,
        order_id: UUID | str,
        amount: Decimal,
        currency: str | None = None,
    ) -> HostedPaymentSession:
        """Request a hosted payment page for ``amount`` (major units)."""

        amount_minor = to_minor_units(amount)
        if amount_minor <= 0:
            raise PaymentGatewayError("Payment amount must be positive")

        reference = build_transaction_reference(order_id)
        body = self.build_request(
            order_id=order_id,
            amount_minor=amount_minor,
            currency=currency or self._config.currency,
            transaction_reference=reference,
        )
        headers = {
            "Authorization": f"Basic {self._credentials()}",
            "Content-Type": PAYMENT_PAGES_MEDIA_TYPE,
            "Accept": PAYMENT_PAGES_MEDIA_TYPE,
        }
        url = self._config.worldpay_payment_pages_url

        client = self._http_client or httpx.AsyncClient(timeout=self._config.worldpay_timeout_seconds)
        owns_client = self._http_client is None
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise PaymentGatewayError("Worldpay request timed out") from exc
        except httpx.RequestError as exc:
            raise PaymentGatewayError(f"Worldpay request failed: {exc}") from exc
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code >= 400:
            logger.error(
                "Worldpay rejected payment session",
                order_id=str(order_id),
                transaction_reference=reference,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentGatewayError(
                f"Worldpay API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise PaymentGatewayError("Worldpay returned a non-JSON response") from exc

        redirect_url = _extract_redirect_url(payload if isinstance(payload, Mapping) else {})
        if not redirect_url:
            raise PaymentGatewayError("No payment URL in Worldpay response")

        logger.info(
            "Created hosted payment session",
            order_id=str(order_id),
            transaction_reference=reference,
            amount_minor=amount_minor,
        )
        return HostedPaymentSession(url=redirect_url, transaction_reference=reference)


__all__ = [
    "HostedPaymentSession",
    "InvalidTransactionReferenceError",
    "PAYMENT_PAGES_MEDIA_TYPE",
    "PaymentGatewayError",
    "REDIRECT_OUTCOMES",
    "TransactionReference",
    "WorldpayClient",
    "build_transaction_reference",
    "parse_transaction_reference",
    "to_minor_units",
]
