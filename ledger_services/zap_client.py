"""
Payment collaborators -- send an amount to a payee.

``ZapClient`` POSTs ``{"recipientNpub", "amount", "lightningAddress",
"comment"}`` to a zap endpoint.  The reference is taken from the JSON
response (``id``, ``ref``, ``txid``, ``payment_hash``, ``invoice`` or
``message``, first present wins) or, for a non-JSON body, from a text
snippet.  ``StubPaymentClient`` always succeeds.

``pay`` never raises for a failed payment; the result says ``ok=False``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import PaymentResult
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.zap_client")

_REFERENCE_KEYS = ("id", "ref", "txid", "payment_hash", "invoice", "message")


@runtime_checkable
class PaymentClient(Protocol):
    def pay(
        self,
        payee_key: str,
        amount: int,
        destination: str | None,
        comment: str | None,
        timeout: float,
    ) -> PaymentResult: ...


class ZapClient:
    """HTTP zap endpoint client."""

    def __init__(self, endpoint: str, client: httpx.Client | None = None):
        self._endpoint = endpoint
        self._client = client or httpx.Client()

    def pay(
        self,
        payee_key: str,
        amount: int,
        destination: str | None,
        comment: str | None,
        timeout: float = 30.0,
    ) -> PaymentResult:
        if not destination:
            return PaymentResult(ok=False, error="no_destination")

        body = {
            "recipientNpub": payee_key,
            "amount": amount,
            "lightningAddress": destination,
            "comment": comment or f"Auto payout {amount} sats",
        }
        try:
            response = self._client.post(self._endpoint, json=body, timeout=timeout)
        except httpx.TimeoutException:
            return PaymentResult(ok=False, error="request_timeout")
        except httpx.HTTPError as exc:
            return PaymentResult(ok=False, error=str(exc) or type(exc).__name__)

        text = response.text
        if not response.is_success:
            return PaymentResult(ok=False, error=f"HTTP {response.status_code}: {text[:200]}")
        return PaymentResult(ok=True, external_reference=extract_reference(response))

    def close(self) -> None:
        self._client.close()


def extract_reference(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:120]
    if isinstance(data, dict):
        for key in _REFERENCE_KEYS:
            if data.get(key):
                return str(data[key])
    return ""


class StubPaymentClient:
    """Always-succeeding client for local runs and tests."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def pay(
        self,
        payee_key: str,
        amount: int,
        destination: str | None = None,
        comment: str | None = None,
        timeout: float = 30.0,
    ) -> PaymentResult:
        millis = int(self._clock.now().timestamp() * 1000)
        return PaymentResult(ok=True, external_reference=f"stub_tx_{millis}_{payee_key[:8]}")
