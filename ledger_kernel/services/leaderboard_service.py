"""
LeaderboardService -- cumulative sats lost per player.

Responsibility:
    The leaderboard instance of the event-ledger pattern: game results are
    appended to ``leaderboard_updates`` (deduplicated by reference id) and
    summed into ``leaderboard_entries``.  Reconciliation repairs drift; an
    advisory check compares a token amount with a player's history.

Architecture position:
    Kernel > Services.  Each public method is its own transaction via
    ``LedgerStore.session_scope()``.

Invariants enforced:
    - A reference id contributes to a player's total at most once.
    - Initials are exactly three characters, stored upper case.
"""

from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AmountValidation,
    IntegrityReport,
    LeaderboardRow,
    LeaderboardUpdateResult,
    LedgerEventRecord,
    PlayerDetails,
    ReconcileResult,
)
from ledger_kernel.exceptions import InvalidSubjectKeyError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.leaderboard import LeaderboardEntry
from ledger_kernel.selectors.leaderboard_selector import DEFAULT_TOP_LIMIT, LeaderboardSelector
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.event_store import LeaderboardEventStore
from ledger_kernel.services.reconciliation_service import LEADERBOARD, ReconciliationService

logger = get_logger("services.leaderboard")

MIN_GAME_COST = 21
DEFAULT_RECENT_LIMIT = 50

# Submissions outside [LOW, HIGH] x the player's average are flagged
AVERAGE_HIGH_FACTOR = 3.0
AVERAGE_LOW_FACTOR = 0.3


class LeaderboardService:
    """
    Contract:
        ``update()`` records one game result; a repeated reference id
        returns ``is_duplicate=True`` with the current total.

    Non-goals:
        - Does NOT authenticate the submitting player.
    """

    def __init__(self, store: LedgerStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def _events(self, session) -> LeaderboardEventStore:
        aggregates = AggregateStore(session, LeaderboardEntry, self._clock)
        return LeaderboardEventStore(session, aggregates, self._clock)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(
        self,
        player_key: str,
        initials: str,
        amount: int,
        reference_id: str,
    ) -> LeaderboardUpdateResult:
        with LogContext.bind(correlation_id=reference_id):
            with self._store.session_scope("leaderboard_update") as session:
                events = self._events(session)
                result = events.append(
                    reference_id,
                    player_key,
                    amount,
                    initials=initials,
                )
                stored_initials = initials.upper()
                if result.is_duplicate:
                    stored_initials = events.find(reference_id).initials
            return LeaderboardUpdateResult.from_append(
                result,
                initials=stored_initials,
                timestamp=self._clock.now(),
            )

    def update_with_validation(
        self,
        player_key: str,
        initials: str,
        amount: int,
        reference_id: str,
    ) -> LeaderboardUpdateResult:
        """``update()`` bracketed by a reconcile before and after."""
        pre = self.validate_player_score(player_key)
        result = self.update(player_key, initials, amount, reference_id)
        post = self.validate_player_score(player_key)
        return LeaderboardUpdateResult(
            message=result.message,
            subject_key=result.subject_key,
            initials=result.initials,
            amount=result.amount,
            total=post.new_total if post.was_inconsistent else result.total,
            reference_id=result.reference_id,
            timestamp=result.timestamp,
            is_duplicate=result.is_duplicate,
            pre_validation=pre,
            post_validation=post,
        )

    def validate_player_score(self, player_key: str) -> ReconcileResult:
        """Reconcile one player's total against their update history."""
        _require_key(player_key)
        with self._store.session_scope("leaderboard_reconcile") as session:
            return ReconciliationService(session, LEADERBOARD, self._clock).reconcile(player_key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def top(self, limit: int = DEFAULT_TOP_LIMIT) -> list[LeaderboardRow]:
        with self._store.session_scope("leaderboard_top") as session:
            return LeaderboardSelector(session).top(limit)

    def player(self, player_key: str) -> PlayerDetails | None:
        _require_key(player_key)
        with self._store.session_scope("leaderboard_player") as session:
            return LeaderboardSelector(session).player(player_key)

    def player_with_validation(self, player_key: str) -> PlayerDetails | None:
        self.validate_player_score(player_key)
        return self.player(player_key)

    def updates_for(self, player_key: str) -> list[LedgerEventRecord]:
        _require_key(player_key)
        with self._store.session_scope("leaderboard_history") as session:
            return self._events(session).history(player_key)

    def recent_updates(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[LedgerEventRecord]:
        with self._store.session_scope("leaderboard_recent") as session:
            return self._events(session).recent(limit)

    def integrity_check(self) -> IntegrityReport:
        with self._store.session_scope("leaderboard_integrity_check") as session:
            return ReconciliationService(session, LEADERBOARD, self._clock).integrity_check()

    # ------------------------------------------------------------------
    # Advisory validation
    # ------------------------------------------------------------------

    def validate_token_amount(
        self,
        player_key: str,
        token_amount: int,
        expected_score: int | None = None,
    ) -> AmountValidation:
        """
        Check a token amount against the game cost, a declared score and
        the player's historical average.  Read-only and advisory: callers
        record the donation whatever the verdict.
        """
        if token_amount <= 0:
            return AmountValidation(
                is_valid=False,
                reason="Token amount must be positive",
                recommendations=("Ensure the cashu token has a valid positive amount",),
            )
        if token_amount < MIN_GAME_COST:
            return AmountValidation(
                is_valid=False,
                reason="Token amount below minimum threshold",
                recommendations=(f"Minimum game cost is {MIN_GAME_COST} sats",),
            )

        player = self.player(player_key)
        if expected_score is not None and expected_score != token_amount:
            return AmountValidation(
                is_valid=False,
                reason="Game score mismatch with token amount",
                player=player,
                recommendations=(
                    f"Expected game score ({expected_score}) doesn't match "
                    f"token amount ({token_amount})",
                ),
            )

        recommendations: list[str] = []
        if player is not None:
            average = player.average_loss
            if average > 0 and (
                token_amount > average * AVERAGE_HIGH_FACTOR
                or token_amount < average * AVERAGE_LOW_FACTOR
            ):
                recommendations.append(
                    f"Token amount ({token_amount}) is significantly different "
                    f"from player average ({average:.1f})"
                )

        return AmountValidation(
            is_valid=True,
            reason="Token amount appears valid",
            player=player,
            recommendations=tuple(recommendations),
        )


def _require_key(player_key: str) -> None:
    if not isinstance(player_key, str) or not player_key.strip():
        raise InvalidSubjectKeyError("player key is required")
