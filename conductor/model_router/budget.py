"""Budget controller - daily USD budgets with an emergency downgrade path.

Budgets are keyed by identifier: an agent name ("DeveloperAgent") or a task
type ("code_review"). Spend is tracked per identifier over a budget window
equal to the current UTC calendar day. When a new day starts the spend
resets and emergency mode is cleared.

Emergency mode: once spend reaches ``emergency_threshold`` (90% by default)
of an identifier's daily budget, every request made for it is forced onto
the zero-cost provider and its cache TTLs are multiplied so more responses
are reused. Entering emergency mode is idempotent.

Spend only ever grows within a window; negative spend is rejected.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from conductor.persistence.documents import BudgetSpendDocument, CostConfigDocument

if TYPE_CHECKING:
    from conductor.persistence.state_store import StateStore

log = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class BudgetState:
    """Budget and spend of one identifier for the current window.

    Attributes:
        identifier: Agent name or task type
        daily_budget: USD allowed per window; None when only spend is tracked
        spent_today: USD spent in the current window
        window_date: UTC date of the current window (YYYY-MM-DD)
        downgraded: True while the identifier is in emergency mode
    """

    identifier: str
    daily_budget: float | None = None
    spent_today: float = 0.0
    window_date: str = ""
    downgraded: bool = False

    @property
    def utilization(self) -> float:
        if not self.daily_budget:
            return 0.0
        return self.spent_today / self.daily_budget

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "daily_budget": self.daily_budget,
            "spent_today": round(self.spent_today, 6),
            "window_date": self.window_date,
            "downgraded": self.downgraded,
            "utilization_pct": round(self.utilization * 100, 1),
        }


class BudgetController:
    """Tracks spend per identifier and decides when to downgrade.

    Args:
        budgets: Initial daily budgets keyed by identifier
        speed_thresholds: Initial max response times (ms) keyed by identifier
        emergency_threshold: Fraction of the budget that triggers emergency mode
        emergency_ttl_multiplier: Factor applied to cache TTLs in emergency mode
        clock: Returns the current aware UTC datetime
        store: Optional state store for ``cost_config.json``
    """

    def __init__(
        self,
        budgets: dict[str, float] | None = None,
        speed_thresholds: dict[str, int] | None = None,
        emergency_threshold: float = 0.9,
        emergency_ttl_multiplier: float = 4.0,
        clock: Callable[[], datetime] = _utc_now,
        store: StateStore | None = None,
    ) -> None:
        if not 0.0 < emergency_threshold <= 1.0:
            raise ValueError("emergency_threshold must be in (0, 1]")
        if emergency_ttl_multiplier < 1.0:
            raise ValueError("emergency_ttl_multiplier must be >= 1")
        self._threshold = emergency_threshold
        self._ttl_multiplier = emergency_ttl_multiplier
        self._clock = clock
        self._store = store
        self._states: dict[str, BudgetState] = {}
        self._speed_thresholds: dict[str, int] = {}

        for identifier, amount in (budgets or {}).items():
            self.set_budget(identifier, amount)
        for identifier, max_ms in (speed_thresholds or {}).items():
            self.set_speed_threshold(identifier, max_ms)

    @property
    def emergency_threshold(self) -> float:
        return self._threshold

    # ------------------------------------------------------------------ #
    # Administration
    # ------------------------------------------------------------------ #

    def set_budget(self, identifier: str, daily_budget: float) -> BudgetState:
        """Set (or replace) the daily USD budget for ``identifier``.

        Raises:
            ValueError: If the identifier is empty or the budget is not positive
        """
        if not identifier:
            raise ValueError("identifier must not be empty")
        if daily_budget <= 0:
            raise ValueError("daily_budget must be positive")
        state = self._state(identifier)
        state.daily_budget = float(daily_budget)
        log.info("budget.budget_set", identifier=identifier, daily_budget=daily_budget)
        self._check_threshold(state)
        return state

    def set_speed_threshold(self, identifier: str, max_response_time_ms: int) -> None:
        if not identifier:
            raise ValueError("identifier must not be empty")
        if max_response_time_ms <= 0:
            raise ValueError("max_response_time_ms must be positive")
        self._speed_thresholds[identifier] = int(max_response_time_ms)
        log.info(
            "budget.speed_threshold_set",
            identifier=identifier,
            max_response_time_ms=max_response_time_ms,
        )

    def speed_threshold(self, *identifiers: str) -> int | None:
        """Strictest speed threshold among ``identifiers``, if any is set."""
        limits = [self._speed_thresholds[i] for i in identifiers if i in self._speed_thresholds]
        return min(limits) if limits else None

    def speed_thresholds(self) -> dict[str, int]:
        return dict(self._speed_thresholds)

    # ------------------------------------------------------------------ #
    # Spend tracking
    # ------------------------------------------------------------------ #

    def record_spend(self, identifier: str, amount: float) -> BudgetState:
        """Add ``amount`` USD to the identifier's spend for today.

        Raises:
            ValueError: If ``amount`` is negative
        """
        if amount < 0:
            raise ValueError("spend amount cannot be negative")
        state = self._state(identifier)
        state.spent_today += amount
        log.debug(
            "budget.spend_recorded",
            identifier=identifier,
            amount=round(amount, 6),
            spent_today=round(state.spent_today, 6),
            daily_budget=state.daily_budget,
        )
        self._check_threshold(state)
        return state

    def get_state(self, identifier: str) -> BudgetState | None:
        state = self._states.get(identifier)
        if state is not None:
            self._maybe_reset_window(state)
        return state

    def states(self) -> list[BudgetState]:
        for state in self._states.values():
            self._maybe_reset_window(state)
        return list(self._states.values())

    def is_downgraded(self, *identifiers: str) -> bool:
        """True if any of ``identifiers`` is in emergency mode right now."""
        for identifier in identifiers:
            state = self.get_state(identifier)
            if state is not None and state.downgraded:
                return True
        return False

    def emergency_identifiers(self) -> list[str]:
        return [s.identifier for s in self.states() if s.downgraded]

    def cache_ttl_multiplier(self, *identifiers: str) -> float:
        return self._ttl_multiplier if self.is_downgraded(*identifiers) else 1.0

    def check_and_maybe_downgrade(
        self,
        current_spend: float,
        daily_budget: float,
        agents_in_scope: Iterable[str],
    ) -> bool:
        """Put every agent in scope into emergency mode if spend warrants it.

        Idempotent: calling it again while the agents are already downgraded
        changes nothing.

        Returns:
            True if the spend is at or above the emergency threshold
        """
        if daily_budget <= 0 or current_spend < daily_budget * self._threshold:
            return False
        for agent in agents_in_scope:
            self._enter_emergency(self._state(agent), current_spend, daily_budget)
        return True

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _today(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    def _state(self, identifier: str) -> BudgetState:
        state = self._states.get(identifier)
        if state is None:
            state = BudgetState(identifier=identifier, window_date=self._today())
            self._states[identifier] = state
        else:
            self._maybe_reset_window(state)
        return state

    def _maybe_reset_window(self, state: BudgetState) -> None:
        today = self._today()
        if state.window_date == today:
            return
        if state.spent_today or state.downgraded:
            log.info(
                "budget.window_reset",
                identifier=state.identifier,
                previous_window=state.window_date,
                previous_spend=round(state.spent_today, 6),
                was_downgraded=state.downgraded,
            )
        state.spent_today = 0.0
        state.downgraded = False
        state.window_date = today

    def _check_threshold(self, state: BudgetState) -> None:
        if state.daily_budget and state.spent_today >= state.daily_budget * self._threshold:
            self._enter_emergency(state, state.spent_today, state.daily_budget)

    def _enter_emergency(self, state: BudgetState, spend: float, budget: float) -> None:
        if state.downgraded:
            return
        state.downgraded = True
        log.warning(
            "budget.emergency_mode_activated",
            identifier=state.identifier,
            spent=round(spend, 6),
            daily_budget=budget,
            usage_pct=round(spend / budget * 100, 1),
        )

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def to_document(self) -> CostConfigDocument:
        return CostConfigDocument(
            budgets={
                s.identifier: s.daily_budget for s in self._states.values() if s.daily_budget
            },
            speed_thresholds=dict(self._speed_thresholds),
            spend={
                s.identifier: BudgetSpendDocument(
                    spent_today=s.spent_today,
                    window_date=s.window_date,
                    downgraded=s.downgraded,
                )
                for s in self._states.values()
            },
        )

    async def load(self) -> bool:
        """Merge ``cost_config.json`` over the current configuration.

        Persisted spend is only restored if it belongs to today's window.

        Returns:
            True if a valid document was loaded
        """
        if self._store is None:
            return False
        raw = await self._store.aread_json(self._store.cost_config_path)
        if raw is None:
            return False
        try:
            document = CostConfigDocument.model_validate(raw)
        except ValidationError as exc:
            log.warning("budget.cost_config_invalid", error_count=exc.error_count())
            return False

        for identifier, amount in document.budgets.items():
            if amount > 0:
                self._state(identifier).daily_budget = amount
        for identifier, max_ms in document.speed_thresholds.items():
            if max_ms > 0:
                self._speed_thresholds[identifier] = max_ms
        today = self._today()
        for identifier, spend in document.spend.items():
            if spend.window_date != today:
                continue
            state = self._state(identifier)
            state.spent_today = max(state.spent_today, spend.spent_today)
            state.downgraded = state.downgraded or spend.downgraded
            self._check_threshold(state)
        log.info(
            "budget.cost_config_loaded",
            budgets=len(document.budgets),
            speed_thresholds=len(document.speed_thresholds),
        )
        return True

    async def save(self) -> None:
        if self._store is None:
            return
        await self._store.awrite_json(
            self._store.cost_config_path, self.to_document().model_dump(mode="json")
        )
