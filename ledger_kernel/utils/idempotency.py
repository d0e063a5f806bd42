"""
Reference id helpers for derived events.

A donation is keyed by its token fingerprint.  Each payee share of that
donation gets its own reference so that re-running the split for the same
donation can never credit a payee twice.
"""


def split_share_reference(donation_reference: str, payee_key: str) -> str:
    """
    Reference id for one payee's share of a donation.

    Format: donation_reference:payee_key
    """
    return f"{donation_reference}:{payee_key}"
