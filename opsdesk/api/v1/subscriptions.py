"""
Subscription cost-history API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from opsdesk.api.deps import get_db, get_account_id
from opsdesk.domain.subscription import ActivePeriod
from opsdesk.application.subscriptions import (
    CalculateTotalCostUseCase, GetActivePeriodsUseCase, GetUserActivePeriodsUseCase,
    GetUserSubscriptionHistoryUseCase,
    CancelSubscriptionUseCase, ReactivateSubscriptionUseCase, ReassignSubscriptionUseCase,
    SubscriptionNotFoundError, SubscriptionPreconditionError,
)


router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class ActivePeriodResponse(BaseModel):
    start_date: date
    end_date: date | None  # None = still active
    renewal_date: date
    cycles: int
    months: int
    cost: str  # Decimal as string


class CostBreakdownResponse(BaseModel):
    subscription_id: int
    total_cost: str
    currency: str
    billing_cycle: str
    active_periods: list[ActivePeriodResponse]


class UserSubscriptionResponse(BaseModel):
    subscription_id: int
    service_name: str | None
    billing_cycle: str
    status: str
    cost_per_cycle: str | None
    cost_currency: str | None
    renewal_date: date | None
    total_cost: str
    total_months: int
    active_periods: list[ActivePeriodResponse]
    current_period: ActivePeriodResponse | None


class CancelRequest(BaseModel):
    cancellation_date: date | None = None
    notes: str | None = None
    performed_by: str | None = None


class ReactivateRequest(BaseModel):
    new_renewal_date: date
    reactivation_date: date | None = None
    notes: str | None = None
    performed_by: str | None = None


class ReassignRequest(BaseModel):
    new_user_id: str
    assignment_date: date | None = None
    notes: str | None = None
    performed_by: str | None = None


# === Helper functions ===

def _period_response(p: ActivePeriod) -> ActivePeriodResponse:
    return ActivePeriodResponse(
        start_date=p.start_date,
        end_date=p.end_date,
        renewal_date=p.renewal_date,
        cycles=p.cycles,
        months=p.months,
        cost=str(p.cost),
    )


def _not_found(exc: SubscriptionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# === Endpoints ===

@router.get("/{sub_id}/cost", response_model=CostBreakdownResponse)
def get_subscription_cost(
    sub_id: int,
    now: date | None = None,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    """Total cost over all active periods"""
    try:
        breakdown = CalculateTotalCostUseCase(db).execute(sub_id, account_id, now=now)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)

    return CostBreakdownResponse(
        subscription_id=sub_id,
        total_cost=str(breakdown.total_cost),
        currency=breakdown.currency,
        billing_cycle=breakdown.billing_cycle,
        active_periods=[_period_response(p) for p in breakdown.active_periods],
    )


@router.get("/{sub_id}/periods", response_model=list[ActivePeriodResponse])
def get_subscription_periods(
    sub_id: int,
    now: date | None = None,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    try:
        periods = GetActivePeriodsUseCase(db).execute(sub_id, account_id, now=now)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return [_period_response(p) for p in periods]


@router.get("/{sub_id}/users/{user_id}/periods", response_model=list[ActivePeriodResponse])
def get_user_subscription_periods(
    sub_id: int,
    user_id: str,
    now: date | None = None,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    """Periods during which user_id held the subscription"""
    try:
        periods = GetUserActivePeriodsUseCase(db).execute(sub_id, account_id, user_id, now=now)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return [_period_response(p) for p in periods]


@router.get("/users/{user_id}/history", response_model=list[UserSubscriptionResponse])
def get_user_subscription_history(
    user_id: str,
    now: date | None = None,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    items = GetUserSubscriptionHistoryUseCase(db).execute(account_id, user_id, now=now)
    result = []
    for item in items:
        sub = item["subscription"]
        current = item["current_period"]
        result.append(UserSubscriptionResponse(
            subscription_id=sub.id,
            service_name=sub.service_name,
            billing_cycle=sub.billing_cycle,
            status=sub.status,
            cost_per_cycle=str(sub.cost_per_cycle) if sub.cost_per_cycle is not None else None,
            cost_currency=sub.cost_currency,
            renewal_date=sub.renewal_date,
            total_cost=str(item["total_cost"]),
            total_months=item["total_months"],
            active_periods=[_period_response(p) for p in item["active_periods"]],
            current_period=_period_response(current) if current else None,
        ))
    return result


@router.post("/{sub_id}/cancel", status_code=204)
def cancel_subscription(
    sub_id: int,
    req: CancelRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    try:
        CancelSubscriptionUseCase(db).execute(
            sub_id, account_id,
            cancellation_date=req.cancellation_date,
            notes=req.notes,
            performed_by=req.performed_by,
        )
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    except SubscriptionPreconditionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{sub_id}/reactivate", status_code=204)
def reactivate_subscription(
    sub_id: int,
    req: ReactivateRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    try:
        ReactivateSubscriptionUseCase(db).execute(
            sub_id, account_id,
            new_renewal_date=req.new_renewal_date,
            reactivation_date=req.reactivation_date,
            notes=req.notes,
            performed_by=req.performed_by,
        )
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    except SubscriptionPreconditionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{sub_id}/reassign", status_code=204)
def reassign_subscription(
    sub_id: int,
    req: ReassignRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
):
    try:
        ReassignSubscriptionUseCase(db).execute(
            sub_id, account_id,
            new_user_id=req.new_user_id,
            assignment_date=req.assignment_date,
            notes=req.notes,
            performed_by=req.performed_by,
        )
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    except SubscriptionPreconditionError as e:
        raise HTTPException(status_code=409, detail=str(e))
