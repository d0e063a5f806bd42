"""
Access gate -- redeem a presented payment token for a validated amount.

Two implementations of the ``AccessGate`` protocol:

CashuwallGate
    POSTs ``{"encodedToken", "npub"}`` to the Cashuwall service.  A 2xx
    response with ``accepted: true`` grants access for ``amount``; any other
    2xx is a denial (typically below threshold); non-2xx, transport errors
    and timeouts are denials carrying the reason.

LocalAccessGate
    No network.  Decodes the token's proof amounts (falling back to
    ``min_amount``) and remembers each token as a file named by its
    fingerprint, so a token is only ever granted once per store directory.

Neither implementation raises for a rejected or unreachable token: the
decision record carries the outcome.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from ledger_config.schema import DEFAULT_MIN_AMOUNT, AccessGateConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import AccessDecision, AccessDecisionKind
from ledger_kernel.exceptions import ExternalUnavailableError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.utils.hashing import token_fingerprint

logger = get_logger("services.access_gate")

MISSING_TOKEN_REASON = "encodedToken is required (cashu... string)"

_TOKEN_PREFIX = re.compile(r"^cashu[A-Za-z]?", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s")


@runtime_checkable
class AccessGate(Protocol):
    """Redeems a token and decides whether access is granted."""

    def redeem(self, encoded_token: str, min_amount: int = DEFAULT_MIN_AMOUNT) -> AccessDecision: ...


class CashuwallGate:
    """HTTP client for the Cashuwall redemption endpoint."""

    mode = "cashuwall"

    def __init__(
        self,
        url: str,
        recipient: str,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self._url = url
        self._recipient = recipient
        self._timeout = timeout
        self._client = client or httpx.Client()

    def redeem(self, encoded_token: str, min_amount: int = DEFAULT_MIN_AMOUNT) -> AccessDecision:
        token = (encoded_token or "").strip() if isinstance(encoded_token, str) else ""
        if not token:
            return AccessDecision.denied(MISSING_TOKEN_REASON, self.mode)

        logger.debug(
            "access_gate_redeem",
            extra={"token_preview": token[:24], "min_amount": min_amount},
        )
        try:
            response = self._post({"encodedToken": token, "npub": self._recipient})
        except ExternalUnavailableError as exc:
            logger.warning("access_gate_unavailable", extra={"reason": exc.reason})
            return AccessDecision.denied(exc.reason, self.mode)

        data = _json_body(response)
        amount = data.get("amount") if isinstance(data.get("amount"), int) else 0

        if response.is_success:
            if data.get("accepted") is True:
                return AccessDecision(
                    decision=AccessDecisionKind.GRANTED,
                    amount=amount,
                    reason="accepted",
                    mode=self.mode,
                )
            reason = data.get("reason") or data.get("error") or "amount_below_threshold"
            return AccessDecision.denied(str(reason), self.mode, amount=amount)

        reason = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
        return AccessDecision.denied(str(reason), self.mode)

    def _post(self, body: dict[str, Any]) -> httpx.Response:
        try:
            return self._client.post(self._url, json=body, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise ExternalUnavailableError("cashuwall", "request_timeout") from exc
        except httpx.HTTPError as exc:
            raise ExternalUnavailableError("cashuwall", str(exc) or type(exc).__name__) from exc

    def close(self) -> None:
        self._client.close()


class LocalAccessGate:
    """Offline gate: decode the amount locally, dedupe by token file."""

    mode = "local"

    def __init__(self, store_dir: str | Path, clock: Clock | None = None):
        self._store_dir = Path(store_dir)
        self._clock = clock or SystemClock()

    def redeem(self, encoded_token: str, min_amount: int = DEFAULT_MIN_AMOUNT) -> AccessDecision:
        token = (encoded_token or "").strip() if isinstance(encoded_token, str) else ""
        if not token:
            return AccessDecision.denied(MISSING_TOKEN_REASON, self.mode)

        decoded = decode_cashu_amount(token)
        if decoded:
            amount = decoded
        else:
            amount = min_amount if min_amount > 0 else DEFAULT_MIN_AMOUNT

        try:
            self._store_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.error("local_store_unavailable", exc_info=True)
            return AccessDecision.denied("storage_unavailable", self.mode)

        token_path = self._store_dir / f"{token_fingerprint(token)}.json"
        record = {
            "token": token,
            "amount": amount,
            "storedAt": self._clock.now().isoformat(),
        }
        try:
            with open(token_path, "x", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
        except FileExistsError:
            logger.warning("local_token_reused", extra={"token_preview": token[:24]})
            return AccessDecision.denied("token_already_used", self.mode)
        except OSError:
            logger.error("local_token_write_failed", exc_info=True)
            return AccessDecision.denied("storage_write_failed", self.mode)

        return AccessDecision(
            decision=AccessDecisionKind.GRANTED,
            amount=amount,
            reason="accepted_local_mode",
            mode=self.mode,
        )


def decode_cashu_amount(encoded_token: str) -> int | None:
    """
    Sum of positive proof amounts in a V3-style ``cashuA...`` token.

    Returns None when the token cannot be decoded or carries no positive
    proofs.
    """
    payload = _TOKEN_PREFIX.sub("", encoded_token.strip(), count=1)
    normalized = _WHITESPACE.sub("", payload).replace("-", "+").replace("_", "/")
    padded = normalized + "=" * (-len(normalized) % 4)
    try:
        parsed = json.loads(base64.b64decode(padded).decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        logger.debug("token_decode_failed", extra={"error": str(exc)})
        return None

    entries = parsed.get("token") if isinstance(parsed, dict) else None
    if not isinstance(entries, list) or not entries:
        return None

    total = 0
    for entry in entries:
        proofs = entry.get("proofs") if isinstance(entry, dict) else None
        for proof in proofs or []:
            total += _proof_amount(proof)
    return total if total > 0 else None


def _proof_amount(proof: Any) -> int:
    value = proof.get("amount") if isinstance(proof, dict) else None
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value > 0 else 0
    try:
        number = int(str(value))
    except ValueError:
        return 0
    return number if number > 0 else 0


def _json_body(response: httpx.Response) -> dict[str, Any]:
    if "application/json" not in response.headers.get("content-type", ""):
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def build_access_gate(
    cfg: AccessGateConfig,
    clock: Clock | None = None,
    client: httpx.Client | None = None,
) -> AccessGate:
    """Local redemption when ``local_mode`` is set, otherwise Cashuwall."""
    if cfg.local_mode:
        logger.info("access_gate_selected", extra={"mode": LocalAccessGate.mode})
        return LocalAccessGate(cfg.local_store_dir, clock=clock)
    logger.info(
        "access_gate_selected",
        extra={"mode": CashuwallGate.mode, "url": cfg.url},
    )
    return CashuwallGate(cfg.url, cfg.recipient, cfg.timeout_seconds, client=client)
