"""
SQLAlchemy ORM models (subscriptions + lifecycle audit history)
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import String, DateTime, Integer, Text, TIMESTAMP, Date, func, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.infrastructure.db.session import Base


class SubscriptionModel(Base):
    """Tenant-scoped software/service subscription"""
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # tenant

    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(16), nullable=False)  # MONTHLY / YEARLY / ONE_TIME
    cost_per_cycle: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cost_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="ACTIVE", server_default="ACTIVE",
    )  # ACTIVE / CANCELLED
    purchase_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    renewal_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    # Snapshots of the latest transition; trusted over history created_at
    cancelled_at: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    reactivated_at: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    last_active_renewal_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    assigned_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class SubscriptionHistoryModel(Base):
    """Append-only audit row, one per lifecycle transition"""
    __tablename__ = "subscription_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, nullable=False)  # -> subscriptions
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(16), nullable=False)  # CREATED / CANCELLED / REACTIVATED / REASSIGNED
    old_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    old_renewal_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    new_renewal_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    # Effective dates; may be backdated relative to created_at
    assignment_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    reactivation_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    cancellation_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    old_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    new_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_subscription_history_sub_created', 'subscription_id', 'created_at'),
    )
