"""SQLAlchemy models for users, subscriptions, invoices and payments."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from solgate.db.base import Base
from solgate.domain.models import ConversationState, InvoiceStatus
from solgate.utils.datetime import utc_now


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("telegram_id", name="uq_users_telegram_id"),)

    telegram_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    username: Mapped[str | None] = mapped_column(String(32))
    first_name: Mapped[str | None] = mapped_column(String(64))
    language_code: Mapped[str | None] = mapped_column(String(8))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime)


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("key", name="uq_settings_key"),)

    key: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "product", name="uq_subscriptions_user_product"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    product: Mapped[str] = mapped_column(String(32), nullable=False)
    setup_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_reminder_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_expired_notice_at: Mapped[datetime | None] = mapped_column(DateTime)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("memo", name="uq_invoices_memo"),)

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    product: Mapped[str] = mapped_column(String(32), nullable=False)
    months: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    memo: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status", values_callable=_enum_values),
        default=InvoiceStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime)
    tx_signature: Mapped[str | None] = mapped_column(String(128))


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("tx_signature", name="uq_payments_tx_signature"),)

    tx_signature: Mapped[str] = mapped_column(String(128), nullable=False)
    invoice_id: Mapped[int | None] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL")
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    invoice: Mapped[Invoice | None] = relationship()


class UserState(Base):
    __tablename__ = "user_states"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_states_user_id"),)

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    state: Mapped[ConversationState] = mapped_column(
        Enum(ConversationState, name="conversation_state", values_callable=_enum_values),
        default=ConversationState.NONE,
        nullable=False,
    )
    invoice_id: Mapped[int | None] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL")
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


__all__ = [
    "Invoice",
    "Payment",
    "Setting",
    "Subscription",
    "User",
    "UserState",
]
