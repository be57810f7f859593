"""
Subscription domain: immutable snapshot of a subscription and its audit history,
plus the billing-cycle arithmetic used to derive charges.

Uses date only (no timezone). Money is Decimal, quantised to 2 places.

Billing rules:
- Activation / reactivation charges one full cycle immediately.
- Every renewal boundary after the charge start that is reached before the
  period ends charges one more cycle.
- ONE_TIME is charged once, on first activation.
"""
import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


MONTHLY = "MONTHLY"
YEARLY = "YEARLY"
ONE_TIME = "ONE_TIME"
BILLING_CYCLES = frozenset({MONTHLY, YEARLY, ONE_TIME})

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"

ACTION_CREATED = "CREATED"
ACTION_CANCELLED = "CANCELLED"
ACTION_REACTIVATED = "REACTIVATED"
ACTION_REASSIGNED = "REASSIGNED"

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class HistoryEntry:
    """One audit row per lifecycle transition (append-only)."""
    action: str
    created_at: date
    old_status: str | None = None
    new_status: str | None = None
    old_renewal_date: date | None = None
    new_renewal_date: date | None = None
    assignment_date: date | None = None
    reactivation_date: date | None = None
    cancellation_date: date | None = None
    old_user_id: str | None = None
    new_user_id: str | None = None

    @property
    def effective_assignment_date(self) -> date:
        return self.assignment_date or self.created_at

    @property
    def effective_reactivation_date(self) -> date:
        return self.reactivation_date or self.created_at


@dataclass(frozen=True)
class Subscription:
    """Read-only snapshot consumed by the ledger. `history` is ascending by created_at."""
    id: int
    billing_cycle: str
    created_at: date
    status: str = STATUS_ACTIVE
    cost_per_cycle: Decimal | None = None
    cost_currency: str | None = None
    purchase_date: date | None = None
    renewal_date: date | None = None
    cancelled_at: date | None = None
    reactivated_at: date | None = None
    last_active_renewal_date: date | None = None
    assigned_user_id: str | None = None
    service_name: str | None = None
    history: tuple[HistoryEntry, ...] = field(default_factory=tuple)

    @property
    def anchor_date(self) -> date:
        """Start of the first active period."""
        return self.purchase_date or self.created_at

    @property
    def rate(self) -> Decimal:
        if self.cost_per_cycle is None:
            return ZERO
        return Decimal(self.cost_per_cycle)


@dataclass(frozen=True)
class ActivePeriod:
    start_date: date
    end_date: date | None  # None = still active
    renewal_date: date
    cycles: int
    months: int
    cost: Decimal

    @property
    def is_open(self) -> bool:
        return self.end_date is None


@dataclass(frozen=True)
class CostBreakdown:
    total_cost: Decimal
    currency: str
    billing_cycle: str
    active_periods: list[ActivePeriod]


# ============================================================================
# Calendar arithmetic
# ============================================================================


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return date(year, month, day)


def add_cycles(d: date, n: int, billing_cycle: str) -> date:
    """Shift a date by n billing cycles. Non-recurring cycles leave it unchanged."""
    if billing_cycle == MONTHLY:
        return add_months(d, n)
    if billing_cycle == YEARLY:
        return add_months(d, 12 * n)
    return d


def next_renewal_date(anchor: date, billing_cycle: str) -> date:
    """MONTHLY: +1 month, YEARLY: +1 year, anything else: anchor unchanged."""
    return add_cycles(anchor, 1, billing_cycle)


# ============================================================================
# Cycle counting
# ============================================================================


def cycles_between(
    last_charged: date,
    end_date: date,
    renewal_date: date,
    billing_cycle: str,
    include_end: bool = True,
) -> int:
    """
    Number of billing cycles charged between last_charged and end_date.

    Starts at 1 (the cycle charged on activation), then adds one per renewal
    boundary (renewal_date + k cycles) that falls after last_charged and on or
    before end_date. With include_end=False a boundary equal to end_date is not
    counted: a period closed on its renewal day stops before the renewal charge.

    Boundaries are computed from renewal_date, not chained, so month-end
    clamping does not drift (Jan 31 -> Feb 29 -> Mar 31).
    """
    if billing_cycle not in (MONTHLY, YEARLY):
        return 1

    cycles = 1
    k = 0
    boundary = renewal_date
    while boundary < end_date or (include_end and boundary == end_date):
        if boundary > last_charged:
            cycles += 1
        k += 1
        boundary = add_cycles(renewal_date, k, billing_cycle)
    return cycles


def months_for_cycles(cycles: int, billing_cycle: str) -> int:
    """Months of coverage: cycles for MONTHLY, cycles * 12 otherwise."""
    if billing_cycle == MONTHLY:
        return cycles
    return cycles * 12


def charge_for(cycles: int, rate: Decimal) -> Decimal:
    return (Decimal(cycles) * rate).quantize(MONEY_QUANT)
