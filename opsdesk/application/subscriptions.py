"""
Subscription use cases: lifecycle transitions (cancel / reactivate / reassign)
and read-side cost accounting built on the ledger replay.

Module works directly with the ORM; all derived numbers come from
opsdesk.application.subscription_ledger over an immutable snapshot.
"""
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from opsdesk.config import get_settings
from opsdesk.domain.subscription import (
    ACTION_CANCELLED, ACTION_REACTIVATED, ACTION_REASSIGNED,
    STATUS_ACTIVE, STATUS_CANCELLED,
    ActivePeriod, CostBreakdown, HistoryEntry, Subscription,
)
from opsdesk.application.subscription_ledger import (
    active_periods, build_cost_breakdown, summarize_periods, user_active_periods,
)
from opsdesk.infrastructure.db.models import SubscriptionModel, SubscriptionHistoryModel
from opsdesk.utils.dates import as_local_date, today_local

logger = logging.getLogger(__name__)


class SubscriptionLedgerError(ValueError):
    pass


class SubscriptionNotFoundError(SubscriptionLedgerError):
    pass


class SubscriptionPreconditionError(SubscriptionLedgerError):
    pass


# ============================================================================
# Loading
# ============================================================================


def _get_subscription_row(db: Session, sub_id: int, account_id: int) -> SubscriptionModel:
    sub = db.query(SubscriptionModel).filter(
        SubscriptionModel.id == sub_id,
        SubscriptionModel.account_id == account_id,
    ).first()
    if not sub:
        raise SubscriptionNotFoundError("Subscription not found")
    return sub


def _to_history_entry(row: SubscriptionHistoryModel) -> HistoryEntry:
    return HistoryEntry(
        action=row.action,
        created_at=as_local_date(row.created_at),
        old_status=row.old_status,
        new_status=row.new_status,
        old_renewal_date=row.old_renewal_date,
        new_renewal_date=row.new_renewal_date,
        assignment_date=row.assignment_date,
        reactivation_date=row.reactivation_date,
        cancellation_date=row.cancellation_date,
        old_user_id=row.old_user_id,
        new_user_id=row.new_user_id,
    )


def to_snapshot(row: SubscriptionModel, history: list[SubscriptionHistoryModel]) -> Subscription:
    """Convert ORM rows to the immutable snapshot the ledger consumes."""
    return Subscription(
        id=row.id,
        billing_cycle=row.billing_cycle,
        created_at=as_local_date(row.created_at),
        status=row.status,
        cost_per_cycle=Decimal(row.cost_per_cycle) if row.cost_per_cycle is not None else None,
        cost_currency=row.cost_currency,
        purchase_date=row.purchase_date,
        renewal_date=row.renewal_date,
        cancelled_at=row.cancelled_at,
        reactivated_at=row.reactivated_at,
        last_active_renewal_date=row.last_active_renewal_date,
        assigned_user_id=row.assigned_user_id,
        service_name=row.service_name,
        history=tuple(_to_history_entry(h) for h in history),
    )


def _load_history(db: Session, sub_id: int) -> list[SubscriptionHistoryModel]:
    return db.query(SubscriptionHistoryModel).filter(
        SubscriptionHistoryModel.subscription_id == sub_id,
    ).order_by(
        SubscriptionHistoryModel.created_at.asc(),
        SubscriptionHistoryModel.id.asc(),
    ).all()


def load_subscription(db: Session, sub_id: int, account_id: int) -> Subscription:
    """
    Fetch a subscription with its history (ascending) as a snapshot.

    Raises:
        SubscriptionNotFoundError: id does not resolve within the account
    """
    row = _get_subscription_row(db, sub_id, account_id)
    return to_snapshot(row, _load_history(db, row.id))


# ============================================================================
# Read side
# ============================================================================


class GetActivePeriodsUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, sub_id: int, account_id: int, now: date | None = None) -> list[ActivePeriod]:
        sub = load_subscription(self.db, sub_id, account_id)
        return active_periods(sub, now or today_local())


class GetUserActivePeriodsUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self, sub_id: int, account_id: int, user_id: str, now: date | None = None,
    ) -> list[ActivePeriod]:
        sub = load_subscription(self.db, sub_id, account_id)
        return user_active_periods(sub, user_id, now or today_local())


class CalculateTotalCostUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, sub_id: int, account_id: int, now: date | None = None) -> CostBreakdown:
        sub = load_subscription(self.db, sub_id, account_id)
        return build_cost_breakdown(sub, now or today_local(), get_settings().BASE_CURRENCY)


class GetUserSubscriptionHistoryUseCase:
    """
    Every subscription currently assigned to a user, newest first, with only
    the periods during which this user held it.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, account_id: int, user_id: str, now: date | None = None) -> list[dict]:
        now = now or today_local()
        rows = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.account_id == account_id,
            SubscriptionModel.assigned_user_id == user_id,
        ).order_by(SubscriptionModel.created_at.desc(), SubscriptionModel.id.desc()).all()

        result = []
        for row in rows:
            sub = to_snapshot(row, _load_history(self.db, row.id))
            periods = user_active_periods(sub, user_id, now)
            total_cost, total_months = summarize_periods(periods)
            result.append({
                "subscription": sub,
                "active_periods": periods,
                "total_cost": total_cost,
                "total_months": total_months,
                "current_period": next((p for p in periods if p.is_open), None),
            })
        return result


# ============================================================================
# Lifecycle transitions
# ============================================================================


class CancelSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        sub_id: int,
        account_id: int,
        cancellation_date: date | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
    ) -> None:
        sub = _get_subscription_row(self.db, sub_id, account_id)
        if sub.status == STATUS_CANCELLED:
            raise SubscriptionPreconditionError("Subscription is already cancelled")
        if sub.status != STATUS_ACTIVE:
            raise SubscriptionPreconditionError("Can only cancel ACTIVE subscriptions")

        cancellation_date = cancellation_date or today_local()
        period_start = sub.reactivated_at or sub.purchase_date or as_local_date(sub.created_at)
        if period_start and cancellation_date < period_start:
            raise SubscriptionPreconditionError("Cancellation date is before the current period start")
        old_renewal = sub.renewal_date

        sub.status = STATUS_CANCELLED
        sub.last_active_renewal_date = old_renewal
        sub.cancelled_at = cancellation_date

        self.db.add(SubscriptionHistoryModel(
            subscription_id=sub.id,
            account_id=account_id,
            action=ACTION_CANCELLED,
            old_status=STATUS_ACTIVE,
            new_status=STATUS_CANCELLED,
            old_renewal_date=old_renewal,
            cancellation_date=cancellation_date,
            notes=notes,
            performed_by=performed_by,
        ))
        self.db.commit()
        logger.info("Subscription %d cancelled effective %s", sub.id, cancellation_date)


class ReactivateSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        sub_id: int,
        account_id: int,
        new_renewal_date: date,
        reactivation_date: date | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
    ) -> None:
        sub = _get_subscription_row(self.db, sub_id, account_id)
        if sub.status == STATUS_ACTIVE:
            raise SubscriptionPreconditionError("Subscription is already active")
        if sub.status != STATUS_CANCELLED:
            raise SubscriptionPreconditionError("Can only reactivate CANCELLED subscriptions")

        reactivation_date = reactivation_date or today_local()
        if sub.cancelled_at and reactivation_date < sub.cancelled_at:
            raise SubscriptionPreconditionError("Reactivation date is before the cancellation date")

        old_status = sub.status
        old_renewal = sub.renewal_date

        sub.status = STATUS_ACTIVE
        sub.renewal_date = new_renewal_date
        sub.reactivated_at = reactivation_date

        self.db.add(SubscriptionHistoryModel(
            subscription_id=sub.id,
            account_id=account_id,
            action=ACTION_REACTIVATED,
            old_status=old_status,
            new_status=STATUS_ACTIVE,
            old_renewal_date=old_renewal,
            new_renewal_date=new_renewal_date,
            reactivation_date=reactivation_date,
            notes=notes,
            performed_by=performed_by,
        ))
        self.db.commit()
        logger.info("Subscription %d reactivated effective %s, renews %s",
                    sub.id, reactivation_date, new_renewal_date)


class ReassignSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        sub_id: int,
        account_id: int,
        new_user_id: str,
        assignment_date: date | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
    ) -> None:
        new_user_id = (new_user_id or "").strip()
        if not new_user_id:
            raise SubscriptionPreconditionError("New assignee is required")

        sub = _get_subscription_row(self.db, sub_id, account_id)
        if sub.assigned_user_id == new_user_id:
            raise SubscriptionPreconditionError("Subscription is already assigned to this user")

        assignment_date = assignment_date or today_local()
        old_user_id = sub.assigned_user_id
        sub.assigned_user_id = new_user_id

        self.db.add(SubscriptionHistoryModel(
            subscription_id=sub.id,
            account_id=account_id,
            action=ACTION_REASSIGNED,
            old_status=sub.status,
            new_status=sub.status,
            old_renewal_date=sub.renewal_date,
            assignment_date=assignment_date,
            old_user_id=old_user_id,
            new_user_id=new_user_id,
            notes=notes,
            performed_by=performed_by,
        ))
        self.db.commit()
        logger.info("Subscription %d reassigned %s -> %s effective %s",
                    sub.id, old_user_id, new_user_id, assignment_date)
