"""
ledger_services -- external collaborators and the access-gate handler.

The kernel never talks to the network itself; everything that does lives
here behind the ``AccessGate`` and ``PaymentClient`` protocols.
"""

from ledger_services.access_gate import (
    AccessGate,
    CashuwallGate,
    LocalAccessGate,
    build_access_gate,
    decode_cashu_amount,
)
from ledger_services.access_service import AccessService
from ledger_services.zap_client import PaymentClient, StubPaymentClient, ZapClient

__all__ = [
    "AccessGate",
    "CashuwallGate",
    "LocalAccessGate",
    "build_access_gate",
    "decode_cashu_amount",
    "AccessService",
    "PaymentClient",
    "StubPaymentClient",
    "ZapClient",
]
