"""
Database models for payments and channels. Timestamps are stored as ISO-8601
strings in UTC with microsecond precision, hence the lexical order of the
column equals the time order.
"""

from __future__ import annotations

from datetime import datetime

import pytz
from sqlalchemy import BigInteger, CheckConstraint, Index, String, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UTCTimestamp(TypeDecorator):
    """
    Stores a timezone aware datetime as an ISO-8601 string in UTC.
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> str | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value} cannot be stored")
        return value.astimezone(pytz.utc).isoformat(timespec="microseconds")

    def process_result_value(self, value: str | None, dialect) -> datetime | None:
        if value is None:
            return None
        return datetime.fromisoformat(value).astimezone(pytz.utc)


class DBPayment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("direction IN ('inbound','outbound')", name="ck_direction"),
        CheckConstraint(
            "status IN ('pending','succeeded','failed')", name="ck_payment_status"
        ),
        CheckConstraint("length(payment_hash) = 64", name="ck_payment_hash"),
        CheckConstraint("amount_msat >= 0", name="ck_amount_msat"),
        # settled_at is set if and only if the payment is resolved
        CheckConstraint(
            "(settled_at IS NULL) = (status = 'pending')", name="ck_settled_at"
        ),
        CheckConstraint(
            "settled_at IS NULL OR settled_at >= created_at",
            name="ck_settled_after_created",
        ),
    )

    # hex encoded payment hash
    payment_hash: Mapped[str] = mapped_column(String, primary_key=True)

    amount_msat: Mapped[int] = mapped_column(BigInteger, nullable=False)

    direction: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False)

    # The BOLT11 invoice string if known.
    invoice: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)

    settled_at: Mapped[datetime | None] = mapped_column(UTCTimestamp, nullable=True)


class DBChannel(Base):
    """
    Latest snapshot of a channel, replaced on every state update.
    """

    __tablename__ = "channels"
    __table_args__ = (
        CheckConstraint(
            "state IN ('opening','active','closing','closed')",
            name="ck_channel_state",
        ),
        CheckConstraint(
            "local_balance_msat + remote_balance_msat <= capacity_sats * 1000",
            name="ck_channel_balance",
        ),
        CheckConstraint(
            "capacity_sats >= 0 AND local_balance_msat >= 0 AND remote_balance_msat >= 0",
            name="ck_channel_non_negative",
        ),
        Index("idx_channels_state", "state"),
    )

    channel_id: Mapped[str] = mapped_column(String, primary_key=True)

    counterparty_node_id: Mapped[str] = mapped_column(String, nullable=False)

    capacity_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)

    local_balance_msat: Mapped[int] = mapped_column(BigInteger, nullable=False)

    remote_balance_msat: Mapped[int] = mapped_column(BigInteger, nullable=False)

    state: Mapped[str] = mapped_column(String, nullable=False)


# Descending index for listing the most recent payments first.
Index("idx_payments_created", DBPayment.created_at.desc())
