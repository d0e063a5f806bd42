"""
Typed Exception Hierarchy for the Ledger Kernel.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable) and structured attributes carrying the
data needed to act on it.

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidReferenceError
    |   +-- InvalidSubjectKeyError
    |
    +-- DuplicateReferenceError
    +-- ExternalUnavailableError
    +-- ConsistencyDriftError
    +-- StorageFailureError
    +-- ImmutabilityViolationError
    +-- ConfigurationError
    |
    +-- PayoutError
        +-- PayoutNotFoundError
        +-- PayoutAlreadyFinalizedError

Outcome vs. error
-----------------
A duplicate reference id is an idempotent *outcome*: ``EventStore.append``
returns ``accepted=False`` with the current total.  ``DuplicateReferenceError``
names that outcome in the hierarchy; no ledger write raises it.

A denied token or a failed payment is likewise an outcome (a result
dataclass).  ``ExternalUnavailableError`` is raised by collaborator
internals and caught at the boundary that issued the external call.

``ConsistencyDriftError`` describes drift found by reconciliation.  It is
logged with ``exc_info`` so the structured fields land in the log line; it
is never raised to callers because the drift is repaired in place.

Error codes
-----------

Category     | Code                       | When
-------------|----------------------------|-----------------------------------
Validation   | VALIDATION_ERROR           | Malformed input, rejected pre-write
             | INVALID_AMOUNT             | amount not a positive integer
             | INVALID_REFERENCE          | empty reference id
             | INVALID_SUBJECT_KEY        | empty key / malformed label
Idempotency  | DUPLICATE_REFERENCE        | reference id already recorded
External     | EXTERNAL_UNAVAILABLE       | collaborator unreachable / timeout
Consistency  | CONSISTENCY_DRIFT          | aggregate != recomputed sum
Storage      | STORAGE_FAILURE            | transaction failed, rolled back
Immutability | IMMUTABILITY_VIOLATION     | update to an event row
Config       | CONFIGURATION_ERROR        | invalid configuration value
Payout       | PAYOUT_NOT_FOUND           | unknown intent id
             | PAYOUT_ALREADY_FINALIZED   | intent is no longer pending
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class ValidationError(LedgerKernelError):
    """Malformed input; rejected before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Amount is not a positive integer."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer, got {amount!r}", field="amount")


class InvalidReferenceError(ValidationError):
    """Reference id is missing or empty."""

    code: str = "INVALID_REFERENCE"

    def __init__(self, reference_id: object):
        self.reference_id = reference_id
        super().__init__("reference_id is required", field="reference_id")


class InvalidSubjectKeyError(ValidationError):
    """Subject key or one of its label fields is malformed."""

    code: str = "INVALID_SUBJECT_KEY"

    def __init__(self, message: str, field: str = "subject_key"):
        super().__init__(message, field=field)


# Idempotency


class DuplicateReferenceError(LedgerKernelError):
    """
    Reference id has already been recorded.

    Kept for the error taxonomy only: write paths report a duplicate as an
    ``accepted=False`` or ``prevented_duplicate=True`` result.
    """

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, reference_id: str, current_total: int = 0):
        self.reference_id = reference_id
        self.current_total = current_total
        super().__init__(f"Reference already recorded: {reference_id}")


# External collaborators


class ExternalUnavailableError(LedgerKernelError):
    """An external collaborator was unreachable, timed out or errored."""

    code: str = "EXTERNAL_UNAVAILABLE"

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"{service} unavailable: {reason}")


# Consistency


class ConsistencyDriftError(LedgerKernelError):
    """Stored aggregate disagrees with the sum of its events."""

    code: str = "CONSISTENCY_DRIFT"

    def __init__(self, subject_key: str, stored_total: int, computed_total: int):
        self.subject_key = subject_key
        self.stored_total = stored_total
        self.computed_total = computed_total
        self.difference = computed_total - stored_total
        super().__init__(
            f"Aggregate drift for {subject_key}: stored {stored_total}, "
            f"computed {computed_total}"
        )


# Storage


class StorageFailureError(LedgerKernelError):
    """A transaction failed and was rolled back."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage failure during {operation}: {reason}")


class ImmutabilityViolationError(LedgerKernelError):
    """Attempt to modify an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} records are immutable: {entity_id}")


class ConfigurationError(LedgerKernelError):
    """Configuration value missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration for {key}: {reason}")


# Payouts


class PayoutError(LedgerKernelError):
    """Base exception for payment intent errors."""

    code: str = "PAYOUT_ERROR"


class PayoutNotFoundError(PayoutError):
    """Payment intent with given id was not found."""

    code: str = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: str):
        self.payout_id = payout_id
        super().__init__(f"Payout not found: {payout_id}")


class PayoutAlreadyFinalizedError(PayoutError):
    """Payment intent has already reached a terminal state."""

    code: str = "PAYOUT_ALREADY_FINALIZED"

    def __init__(self, payout_id: str, status: str):
        self.payout_id = payout_id
        self.status = status
        super().__init__(f"Payout {payout_id} already finalized as {status}")
