"""Tests for the subscription ledger replay: periods and per-user attribution."""
from datetime import date
from decimal import Decimal

from opsdesk.domain.subscription import (
    MONTHLY, ONE_TIME, STATUS_ACTIVE, STATUS_CANCELLED,
    HistoryEntry, Subscription,
)
from opsdesk.application.subscription_ledger import (
    active_periods, user_active_periods, build_cost_breakdown, summarize_periods,
    LedgerState, apply_history_entry, initial_ledger_state, is_initial_holder,
)


def _sub(**kw) -> Subscription:
    defaults = dict(
        id=1,
        billing_cycle=MONTHLY,
        created_at=date(2024, 1, 1),
        purchase_date=date(2024, 1, 1),
        renewal_date=date(2024, 2, 1),
        cost_per_cycle=Decimal("100"),
        status=STATUS_ACTIVE,
    )
    defaults.update(kw)
    if "history" in defaults:
        defaults["history"] = tuple(defaults["history"])
    return Subscription(**defaults)


def _cancelled(created_at, old_renewal_date=None, cancellation_date=None):
    return HistoryEntry(action="CANCELLED", created_at=created_at,
                        old_status="ACTIVE", new_status="CANCELLED",
                        old_renewal_date=old_renewal_date,
                        cancellation_date=cancellation_date)


def _reactivated(created_at, new_renewal_date=None, reactivation_date=None):
    return HistoryEntry(action="REACTIVATED", created_at=created_at,
                        old_status="CANCELLED", new_status="ACTIVE",
                        new_renewal_date=new_renewal_date,
                        reactivation_date=reactivation_date)


def _reassigned(created_at, old_user_id, new_user_id, old_renewal_date=None, assignment_date=None):
    return HistoryEntry(action="REASSIGNED", created_at=created_at,
                        old_user_id=old_user_id, new_user_id=new_user_id,
                        old_renewal_date=old_renewal_date,
                        assignment_date=assignment_date)


def _assert_non_overlapping(periods):
    for prev, nxt in zip(periods, periods[1:]):
        assert prev.end_date is not None
        assert prev.end_date <= nxt.start_date
    assert all(p.end_date is not None for p in periods[:-1])


def _assert_within(user_periods, sub_periods):
    for up in user_periods:
        assert any(
            sp.start_date <= up.start_date
            and (sp.end_date is None or (up.end_date is not None and up.end_date <= sp.end_date))
            for sp in sub_periods
        ), f"{up} is outside the subscription's active periods"


# ======================================================================
# 1. Subscription-level periods
# ======================================================================

class TestActivePeriods:
    def test_simple_monthly_never_cancelled(self):
        periods = active_periods(_sub(), now=date(2024, 4, 15))

        assert len(periods) == 1
        p = periods[0]
        assert p.start_date == date(2024, 1, 1)
        assert p.end_date is None
        assert p.renewal_date == date(2024, 2, 1)
        assert p.cycles == 4
        assert p.months == 4
        assert p.cost == Decimal("400.00")

    def test_cancel_then_reactivate(self):
        sub = _sub(
            renewal_date=date(2024, 4, 15),
            cancelled_at=date(2024, 3, 1),
            history=[
                _cancelled(date(2024, 3, 1), old_renewal_date=date(2024, 2, 1)),
                _reactivated(date(2024, 3, 15), new_renewal_date=date(2024, 4, 15),
                             reactivation_date=date(2024, 3, 15)),
            ],
        )
        periods = active_periods(sub, now=date(2024, 5, 1))

        assert len(periods) == 2
        closed, open_ = periods
        assert (closed.start_date, closed.end_date) == (date(2024, 1, 1), date(2024, 3, 1))
        assert closed.cycles == 2
        assert closed.cost == Decimal("200.00")
        assert (open_.start_date, open_.end_date) == (date(2024, 3, 15), None)
        assert open_.cycles == 2
        assert open_.cost == Decimal("200.00")
        assert summarize_periods(periods) == (Decimal("400.00"), 4)

    def test_one_time_single_cycle(self):
        sub = _sub(billing_cycle=ONE_TIME, cost_per_cycle=Decimal("500"), renewal_date=None)
        periods = active_periods(sub, now=date(2030, 6, 1))

        assert len(periods) == 1
        assert periods[0].cycles == 1
        assert periods[0].cost == Decimal("500.00")

    def test_one_time_charged_once_across_reactivations(self):
        sub = _sub(
            billing_cycle=ONE_TIME,
            cost_per_cycle=Decimal("500"),
            cancelled_at=date(2024, 3, 1),
            history=[
                _cancelled(date(2024, 3, 1)),
                _reactivated(date(2024, 4, 1)),
            ],
        )
        periods = active_periods(sub, now=date(2025, 1, 1))

        assert [p.cycles for p in periods] == [1, 1]
        assert [p.cost for p in periods] == [Decimal("500.00"), Decimal("0.00")]
        assert summarize_periods(periods)[0] == Decimal("500.00")

    def test_cancelled_status_has_no_open_period(self):
        sub = _sub(
            status=STATUS_CANCELLED,
            cancelled_at=date(2024, 3, 10),
            history=[_cancelled(date(2024, 3, 12), old_renewal_date=date(2024, 2, 1))],
        )
        periods = active_periods(sub, now=date(2024, 12, 31))

        assert len(periods) == 1
        assert periods[0].end_date == date(2024, 3, 10)
        # initial + 01.02 + 01.03
        assert periods[0].cycles == 3

    def test_backdated_cancellation_wins_over_audit_timestamp(self):
        sub = _sub(
            status=STATUS_CANCELLED,
            cancelled_at=date(2024, 2, 15),
            history=[_cancelled(date(2024, 3, 20), old_renewal_date=date(2024, 2, 1))],
        )
        periods = active_periods(sub, now=date(2024, 12, 31))
        assert periods[0].end_date == date(2024, 2, 15)
        assert periods[0].cycles == 2

    def test_repeated_cancellations_do_not_overlap(self):
        sub = _sub(
            status=STATUS_CANCELLED,
            cancelled_at=date(2024, 4, 3),
            history=[
                _cancelled(date(2024, 2, 10), old_renewal_date=date(2024, 2, 1)),
                _reactivated(date(2024, 2, 20), new_renewal_date=date(2024, 3, 20),
                             reactivation_date=date(2024, 2, 20)),
                _cancelled(date(2024, 4, 5), old_renewal_date=date(2024, 3, 20)),
            ],
        )
        periods = active_periods(sub, now=date(2024, 6, 1))

        assert [(p.start_date, p.end_date) for p in periods] == [
            (date(2024, 1, 1), date(2024, 2, 10)),
            (date(2024, 2, 20), date(2024, 4, 3)),
        ]
        assert [p.cycles for p in periods] == [2, 2]
        _assert_non_overlapping(periods)

    def test_each_cancellation_uses_its_own_effective_date(self):
        # Audit rows written weeks after the backdated effective dates
        sub = _sub(
            status=STATUS_CANCELLED,
            renewal_date=date(2024, 4, 15),
            cancelled_at=date(2024, 5, 1),
            history=[
                _cancelled(date(2024, 6, 10), old_renewal_date=date(2024, 2, 1),
                           cancellation_date=date(2024, 3, 1)),
                _reactivated(date(2024, 6, 10), new_renewal_date=date(2024, 4, 15),
                             reactivation_date=date(2024, 3, 15)),
                _cancelled(date(2024, 6, 10), old_renewal_date=date(2024, 4, 15),
                           cancellation_date=date(2024, 5, 1)),
            ],
        )
        periods = active_periods(sub, now=date(2024, 6, 20))

        assert [(p.start_date, p.end_date) for p in periods] == [
            (date(2024, 1, 1), date(2024, 3, 1)),
            (date(2024, 3, 15), date(2024, 5, 1)),
        ]
        assert summarize_periods(periods)[0] == Decimal("400.00")
        _assert_non_overlapping(periods)

    def test_one_time_cancel_and_reactivate_on_first_day(self):
        sub = _sub(
            billing_cycle=ONE_TIME,
            cost_per_cycle=Decimal("500"),
            cancelled_at=date(2024, 1, 1),
            history=[
                _cancelled(date(2024, 1, 1)),
                _reactivated(date(2024, 1, 1)),
            ],
        )
        periods = active_periods(sub, now=date(2024, 6, 1))

        assert [(p.start_date, p.end_date) for p in periods] == [
            (date(2024, 1, 1), date(2024, 1, 1)),
            (date(2024, 1, 1), None),
        ]
        assert [p.cost for p in periods] == [Decimal("500.00"), Decimal("0.00")]

    def test_empty_history_anchors_on_created_at(self):
        sub = _sub(purchase_date=None, created_at=date(2024, 1, 10), renewal_date=date(2024, 2, 10))
        periods = active_periods(sub, now=date(2024, 1, 20))
        assert periods[0].start_date == date(2024, 1, 10)
        assert periods[0].cycles == 1

    def test_missing_cost_yields_zero_cost_periods(self):
        periods = active_periods(_sub(cost_per_cycle=None), now=date(2024, 4, 15))
        assert periods[0].cycles == 4
        assert periods[0].cost == Decimal("0.00")

    def test_unknown_billing_cycle_charges_base_cycle(self):
        periods = active_periods(_sub(billing_cycle="WEEKLY"), now=date(2025, 1, 1))
        assert periods[0].cycles == 1
        assert periods[0].cost == Decimal("100.00")

    def test_inert_actions_ignored(self):
        sub = _sub(history=[HistoryEntry(action="CREATED", created_at=date(2024, 1, 1))])
        assert active_periods(sub, now=date(2024, 4, 15)) == active_periods(_sub(), now=date(2024, 4, 15))

    def test_idempotent(self):
        sub = _sub(
            renewal_date=date(2024, 4, 15),
            cancelled_at=date(2024, 3, 1),
            history=[
                _cancelled(date(2024, 3, 1), old_renewal_date=date(2024, 2, 1)),
                _reactivated(date(2024, 3, 15), new_renewal_date=date(2024, 4, 15)),
            ],
        )
        now = date(2024, 5, 1)
        assert active_periods(sub, now) == active_periods(sub, now)


class TestLedgerFoldStep:
    def test_cancel_closes_open_period(self):
        entry = _cancelled(date(2024, 3, 1), old_renewal_date=date(2024, 2, 1))
        sub = _sub(cancelled_at=date(2024, 3, 1), history=[entry])

        state = apply_history_entry(sub, initial_ledger_state(sub), entry, date(2024, 5, 1))

        assert not state.is_open
        assert len(state.periods) == 1
        assert state.last_charged == date(2024, 3, 1)

    def test_cancel_without_open_period_is_noop(self):
        sub = _sub()
        closed = LedgerState(
            period_start=None, renewal_cursor=date(2024, 1, 1), last_charged=date(2024, 1, 1),
        )
        entry = _cancelled(date(2024, 3, 1))
        assert apply_history_entry(sub, closed, entry, date(2024, 5, 1)) is closed

    def test_reactivate_prefers_effective_date(self):
        sub = _sub()
        entry = _reactivated(date(2024, 3, 20), new_renewal_date=date(2024, 4, 15),
                             reactivation_date=date(2024, 3, 15))
        state = apply_history_entry(sub, initial_ledger_state(sub), entry, date(2024, 5, 1))

        assert state.period_start == date(2024, 3, 15)
        assert state.last_charged == date(2024, 3, 15)
        assert state.renewal_cursor == date(2024, 4, 15)


# ======================================================================
# 2. Per-user attribution
# ======================================================================

class TestUserActivePeriods:
    def test_reassignment_splits_periods(self):
        sub = _sub(
            assigned_user_id="B",
            history=[_reassigned(date(2024, 3, 1), "A", "B", old_renewal_date=date(2024, 2, 1))],
        )
        now = date(2024, 6, 1)

        a_periods = user_active_periods(sub, "A", now)
        b_periods = user_active_periods(sub, "B", now)
        sub_periods = active_periods(sub, now)

        assert [(p.start_date, p.end_date) for p in a_periods] == [(date(2024, 1, 1), date(2024, 3, 1))]
        assert [(p.start_date, p.end_date) for p in b_periods] == [(date(2024, 3, 1), None)]
        assert a_periods[0].cost == Decimal("200.00")
        assert b_periods[0].cost == Decimal("400.00")
        assert (
            summarize_periods(a_periods)[0] + summarize_periods(b_periods)[0]
            == summarize_periods(sub_periods)[0]
            == Decimal("600.00")
        )

    def test_initial_holder_without_history(self):
        sub = _sub(assigned_user_id="A")
        periods = user_active_periods(sub, "A", date(2024, 4, 15))
        assert periods == active_periods(sub, date(2024, 4, 15))

    def test_never_assigned_user_has_no_periods(self):
        sub = _sub(assigned_user_id="A")
        assert user_active_periods(sub, "Z", date(2024, 4, 15)) == []

    def test_backdated_assignment_date(self):
        sub = _sub(
            assigned_user_id="B",
            history=[_reassigned(date(2024, 3, 5), "A", "B", assignment_date=date(2024, 3, 1))],
        )
        now = date(2024, 6, 1)
        assert user_active_periods(sub, "A", now)[0].end_date == date(2024, 3, 1)
        assert user_active_periods(sub, "B", now)[0].start_date == date(2024, 3, 1)

    def test_user_reassigned_away_and_back(self):
        sub = _sub(
            assigned_user_id="A",
            history=[
                _reassigned(date(2024, 3, 1), "A", "B", old_renewal_date=date(2024, 2, 1)),
                _reassigned(date(2024, 5, 1), "B", "A", old_renewal_date=date(2024, 2, 1)),
            ],
        )
        now = date(2024, 7, 1)
        a_periods = user_active_periods(sub, "A", now)
        b_periods = user_active_periods(sub, "B", now)

        assert [(p.start_date, p.end_date) for p in a_periods] == [
            (date(2024, 1, 1), date(2024, 3, 1)),
            (date(2024, 5, 1), None),
        ]
        assert [(p.start_date, p.end_date) for p in b_periods] == [(date(2024, 3, 1), date(2024, 5, 1))]
        assert summarize_periods(a_periods)[0] == Decimal("500.00")
        assert summarize_periods(b_periods)[0] == Decimal("200.00")
        assert summarize_periods(active_periods(sub, now))[0] == Decimal("700.00")
        _assert_non_overlapping(a_periods)

    def test_cancellation_closes_holder_window_even_after_later_reassignment(self):
        sub = _sub(
            assigned_user_id="B",
            renewal_date=date(2024, 5, 1),
            cancelled_at=date(2024, 3, 1),
            history=[
                _cancelled(date(2024, 3, 1), old_renewal_date=date(2024, 2, 1)),
                _reassigned(date(2024, 3, 10), "A", "B"),
                _reactivated(date(2024, 4, 1), new_renewal_date=date(2024, 5, 1),
                             reactivation_date=date(2024, 4, 1)),
            ],
        )
        now = date(2024, 6, 15)
        sub_periods = active_periods(sub, now)
        a_periods = user_active_periods(sub, "A", now)
        b_periods = user_active_periods(sub, "B", now)

        assert [(p.start_date, p.end_date) for p in a_periods] == [(date(2024, 1, 1), date(2024, 3, 1))]
        assert [(p.start_date, p.end_date) for p in b_periods] == [(date(2024, 4, 1), None)]
        assert b_periods[0].cycles == 3
        _assert_within(a_periods, sub_periods)
        _assert_within(b_periods, sub_periods)
        assert (
            summarize_periods(a_periods)[0] + summarize_periods(b_periods)[0]
            == summarize_periods(sub_periods)[0]
        )

    def test_holder_keeps_assignment_across_cancel_and_reactivate(self):
        sub = _sub(
            assigned_user_id="A",
            renewal_date=date(2024, 4, 15),
            cancelled_at=date(2024, 3, 1),
            history=[
                _cancelled(date(2024, 3, 1), old_renewal_date=date(2024, 2, 1)),
                _reactivated(date(2024, 3, 15), new_renewal_date=date(2024, 4, 15),
                             reactivation_date=date(2024, 3, 15)),
            ],
        )
        now = date(2024, 5, 1)
        assert user_active_periods(sub, "A", now) == active_periods(sub, now)

    def test_one_time_fee_goes_to_first_holder(self):
        sub = _sub(
            billing_cycle=ONE_TIME,
            cost_per_cycle=Decimal("500"),
            assigned_user_id="B",
            history=[_reassigned(date(2024, 3, 1), "A", "B")],
        )
        now = date(2024, 6, 1)
        assert [p.cost for p in user_active_periods(sub, "A", now)] == [Decimal("500.00")]
        assert [p.cost for p in user_active_periods(sub, "B", now)] == [Decimal("0.00")]

    def test_one_time_handover_on_first_day_charged_once(self):
        sub = _sub(
            billing_cycle=ONE_TIME,
            cost_per_cycle=Decimal("500"),
            assigned_user_id="B",
            history=[_reassigned(date(2024, 1, 1), "A", "B")],
        )
        now = date(2024, 6, 1)
        a_periods = user_active_periods(sub, "A", now)
        b_periods = user_active_periods(sub, "B", now)

        assert a_periods == []
        assert [p.cost for p in b_periods] == [Decimal("500.00")]
        assert (
            summarize_periods(a_periods)[0] + summarize_periods(b_periods)[0]
            == summarize_periods(active_periods(sub, now))[0]
        )

    def test_monthly_handover_on_first_day_bills_new_holder_only(self):
        sub = _sub(
            assigned_user_id="B",
            history=[_reassigned(date(2024, 1, 1), "A", "B", old_renewal_date=date(2024, 2, 1))],
        )
        now = date(2024, 4, 15)

        assert user_active_periods(sub, "A", now) == []
        assert user_active_periods(sub, "B", now) == active_periods(sub, now)

    def test_initial_holder_detection(self):
        sub = _sub(assigned_user_id="A", history=[
            _reassigned(date(2024, 3, 1), "A", "B"),
            _reassigned(date(2024, 4, 1), "B", "A"),
        ])
        assert is_initial_holder(sub, "A")
        assert not is_initial_holder(sub, "B")


# ======================================================================
# 3. Cost breakdown
# ======================================================================

class TestCostBreakdown:
    def test_defaults_to_base_currency(self):
        breakdown = build_cost_breakdown(_sub(), date(2024, 4, 15), "QAR")
        assert breakdown.currency == "QAR"
        assert breakdown.billing_cycle == MONTHLY
        assert breakdown.total_cost == Decimal("400.00")
        assert len(breakdown.active_periods) == 1

    def test_uses_subscription_currency(self):
        breakdown = build_cost_breakdown(_sub(cost_currency="USD"), date(2024, 4, 15), "QAR")
        assert breakdown.currency == "USD"
