"""
Subscription ledger: replays a subscription's lifecycle history into billable
active periods.

Pure functions over an already-loaded Subscription snapshot: no DB access, no
clock. "now" is always passed in by the caller.

Both replays are left folds over the ascending history:
    state = reduce(step, history, initial_state)
The state records are frozen, so every step function can be tested on its own.
"""
import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from functools import reduce

from opsdesk.domain.subscription import (
    ACTION_CANCELLED, ACTION_REACTIVATED, ACTION_REASSIGNED,
    BILLING_CYCLES, ONE_TIME, STATUS_ACTIVE, ZERO,
    ActivePeriod, CostBreakdown, HistoryEntry, Subscription,
    add_cycles, charge_for, cycles_between, months_for_cycles,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Shared helpers
# ============================================================================


def _cancellation_end(sub: Subscription, entry: HistoryEntry) -> date:
    """
    End date for a CANCELLED entry.

    The entry's own cancellation_date wins. Rows written without one fall back
    to sub.cancelled_at, which is a snapshot of the most recent cancellation
    and so only applies to the last CANCELLED entry, then to created_at.
    """
    if entry.cancellation_date is not None:
        return entry.cancellation_date
    if sub.cancelled_at is not None:
        for candidate in reversed(sub.history):
            if candidate.action == ACTION_CANCELLED:
                if candidate is entry:
                    return sub.cancelled_at
                break
    return entry.created_at


def _build_period(
    sub: Subscription,
    start: date,
    end: date | None,
    charge_from: date,
    renewal: date,
    now: date,
    carries_fee: bool = True,
) -> ActivePeriod:
    """
    Price one period. end=None means open: cycles are counted through now.

    carries_fee only matters for ONE_TIME: the fee is charged on the first
    period of the replay and later periods cost nothing.
    """
    if end is None:
        cycles = cycles_between(charge_from, now, renewal, sub.billing_cycle)
    else:
        cycles = cycles_between(charge_from, end, renewal, sub.billing_cycle, include_end=False)

    if sub.billing_cycle == ONE_TIME and not carries_fee:
        cost = ZERO
    else:
        cost = charge_for(cycles, sub.rate)

    return ActivePeriod(
        start_date=start,
        end_date=end,
        renewal_date=renewal,
        cycles=cycles,
        months=months_for_cycles(cycles, sub.billing_cycle),
        cost=cost,
    )


def summarize_periods(periods: list[ActivePeriod]) -> tuple[Decimal, int]:
    """(total_cost, total_months) over a list of periods."""
    total_cost = sum((p.cost for p in periods), ZERO)
    total_months = sum(p.months for p in periods)
    return total_cost, total_months


# ============================================================================
# Subscription-level replay
# ============================================================================


@dataclass(frozen=True)
class LedgerState:
    period_start: date | None
    renewal_cursor: date
    last_charged: date
    periods: tuple[ActivePeriod, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.period_start is not None


def initial_ledger_state(sub: Subscription) -> LedgerState:
    anchor = sub.anchor_date
    return LedgerState(period_start=anchor, renewal_cursor=anchor, last_charged=anchor)


def apply_history_entry(
    sub: Subscription, state: LedgerState, entry: HistoryEntry, now: date,
) -> LedgerState:
    """Fold step: CANCELLED closes the open period, REACTIVATED opens a new one."""
    if entry.action == ACTION_CANCELLED:
        if not state.is_open:
            return state
        end = _cancellation_end(sub, entry)
        renewal = entry.old_renewal_date or state.renewal_cursor
        period = _build_period(
            sub, state.period_start, end, state.last_charged, renewal, now,
            carries_fee=not state.periods,
        )
        return replace(
            state,
            period_start=None,
            last_charged=add_cycles(state.last_charged, period.cycles, sub.billing_cycle),
            periods=state.periods + (period,),
        )

    if entry.action == ACTION_REACTIVATED:
        start = entry.effective_reactivation_date
        return replace(
            state,
            period_start=start,
            last_charged=start,
            renewal_cursor=entry.new_renewal_date or state.renewal_cursor,
        )

    return state


def active_periods(sub: Subscription, now: date) -> list[ActivePeriod]:
    """
    All periods the subscription was in force, in chronological order.

    The last period is open (end_date=None) when the subscription is ACTIVE.
    """
    if sub.billing_cycle not in BILLING_CYCLES:
        logger.debug("Subscription %s has unknown billing cycle %r, charging base cycle only",
                     sub.id, sub.billing_cycle)

    state = reduce(
        lambda s, e: apply_history_entry(sub, s, e, now),
        sub.history,
        initial_ledger_state(sub),
    )
    periods = list(state.periods)

    if sub.status == STATUS_ACTIVE and state.is_open:
        renewal = sub.renewal_date or state.renewal_cursor
        periods.append(
            _build_period(
                sub, state.period_start, None, state.last_charged, renewal, now,
                carries_fee=not periods,
            )
        )
    return periods


def build_cost_breakdown(sub: Subscription, now: date, base_currency: str) -> CostBreakdown:
    periods = active_periods(sub, now)
    total_cost, _ = summarize_periods(periods)
    return CostBreakdown(
        total_cost=total_cost,
        currency=sub.cost_currency or base_currency,
        billing_cycle=sub.billing_cycle,
        active_periods=periods,
    )


# ============================================================================
# Per-user replay
# ============================================================================


@dataclass(frozen=True)
class AssignmentState:
    window_start: date | None
    last_charged: date | None
    current_renewal: date
    holds_assignment: bool
    subscription_active: bool = True
    first_activation: bool = True
    periods: tuple[ActivePeriod, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.window_start is not None


def is_initial_holder(sub: Subscription, user_id: str) -> bool:
    """
    True if user_id held the subscription from its first activation.

    Either the first reassignment moved it away from this user, or the user is
    the current assignee and was never reassigned in.
    """
    reassignments = [h for h in sub.history if h.action == ACTION_REASSIGNED]
    if reassignments and reassignments[0].old_user_id == user_id:
        return True
    assigned_in = any(h.new_user_id == user_id for h in reassignments)
    return not assigned_in and sub.assigned_user_id == user_id


def initial_assignment_state(sub: Subscription, user_id: str) -> AssignmentState:
    anchor = sub.anchor_date
    if is_initial_holder(sub, user_id):
        return AssignmentState(
            window_start=anchor, last_charged=anchor,
            current_renewal=anchor, holds_assignment=True,
        )
    return AssignmentState(
        window_start=None, last_charged=None,
        current_renewal=anchor, holds_assignment=False,
    )


def _window_carries_fee(sub: Subscription, state: AssignmentState) -> bool:
    # ONE_TIME fee: the window that opened the subscription's first period
    return (
        state.first_activation
        and not state.periods
        and state.window_start == sub.anchor_date
    )


def _close_window(
    sub: Subscription, state: AssignmentState, end: date, renewal: date, now: date,
) -> AssignmentState:
    charge_from = state.last_charged or state.window_start
    period = _build_period(
        sub, state.window_start, end, charge_from, renewal, now,
        carries_fee=_window_carries_fee(sub, state),
    )
    return replace(
        state,
        window_start=None,
        last_charged=None,
        periods=state.periods + (period,),
    )


def apply_assignment_entry(
    sub: Subscription, user_id: str, state: AssignmentState, entry: HistoryEntry, now: date,
) -> AssignmentState:
    """
    Fold step for one user's assignment windows.

    A window is open only while the user holds the assignment AND the
    subscription is active, so user periods never leave the subscription's
    own active periods.
    """
    if entry.action == ACTION_REASSIGNED:
        if entry.new_user_id == user_id:
            state = replace(
                state,
                holds_assignment=True,
                current_renewal=entry.new_renewal_date or state.current_renewal,
            )
            if state.subscription_active and not state.is_open:
                start = entry.effective_assignment_date
                state = replace(state, window_start=start, last_charged=start)
            return state

        if entry.old_user_id == user_id:
            state = replace(state, holds_assignment=False)
            end = entry.effective_assignment_date
            if state.is_open and end <= state.window_start:
                # Handed over the day the window opened: the new holder is billed
                state = replace(state, window_start=None, last_charged=None)
            elif state.is_open:
                renewal = entry.old_renewal_date or state.current_renewal
                state = _close_window(sub, state, end, renewal, now)
            return state

        return state

    if entry.action == ACTION_CANCELLED:
        if state.is_open:
            renewal = entry.old_renewal_date or state.current_renewal
            state = _close_window(sub, state, _cancellation_end(sub, entry), renewal, now)
        return replace(state, subscription_active=False, first_activation=False)

    if entry.action == ACTION_REACTIVATED:
        state = replace(
            state,
            subscription_active=True,
            current_renewal=entry.new_renewal_date or state.current_renewal,
        )
        if state.holds_assignment and not state.is_open:
            start = entry.effective_reactivation_date
            state = replace(state, window_start=start, last_charged=start)
        return state

    return state


def user_active_periods(sub: Subscription, user_id: str, now: date) -> list[ActivePeriod]:
    """Periods during which user_id held the assignment while the subscription was active."""
    state = reduce(
        lambda s, e: apply_assignment_entry(sub, user_id, s, e, now),
        sub.history,
        initial_assignment_state(sub, user_id),
    )
    periods = list(state.periods)

    if (
        state.is_open
        and sub.status == STATUS_ACTIVE
        and sub.assigned_user_id == user_id
    ):
        renewal = sub.renewal_date or state.current_renewal
        charge_from = state.last_charged or state.window_start
        periods.append(
            _build_period(
                sub, state.window_start, None, charge_from, renewal, now,
                carries_fee=_window_carries_fee(sub, state),
            )
        )
    return periods
