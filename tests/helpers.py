"""
Shared fixtures for the tests.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta

import pytz

from ulw.types import (
    ChannelInfo,
    ChannelState,
    Payment,
    PaymentDirection,
    PaymentStatus,
)

TIME_BASE = datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=pytz.utc)


def seed_from_name(name: str) -> bytes:
    """
    TEST FIXTURE ONLY: deterministic 32 byte seed from a readable name. Never
    use this for real wallets.
    """
    return hashlib.sha256(name.encode("utf-8")).digest()


def payment_hash_hex(label: str) -> str:
    return hashlib.sha256(label.encode("utf-8")).hexdigest()


def new_payment(
    label: str,
    amount_msat: int = 1000,
    direction: PaymentDirection = PaymentDirection.OUTBOUND,
    status: PaymentStatus = PaymentStatus.PENDING,
    invoice: str | None = None,
    created_at: datetime = TIME_BASE,
    settled_at: datetime | None = None,
) -> Payment:
    return Payment(
        payment_hash=payment_hash_hex(label),
        amount_msat=amount_msat,
        direction=direction,
        status=status,
        invoice=invoice,
        created_at=created_at,
        settled_at=settled_at,
    )


def new_settled_payment(label: str, status: PaymentStatus, minutes: int) -> Payment:
    return new_payment(
        label,
        status=status,
        settled_at=TIME_BASE + timedelta(minutes=minutes),
    )


def new_channel(
    channel_id: str,
    state: ChannelState = ChannelState.ACTIVE,
    capacity_sats: int = 1_000_000,
    local_balance_msat: int = 500_000_000,
    remote_balance_msat: int = 490_000_000,
    counterparty_node_id: str = "02" + "ab" * 32,
) -> ChannelInfo:
    return ChannelInfo(
        channel_id=channel_id,
        counterparty_node_id=counterparty_node_id,
        capacity_sats=capacity_sats,
        local_balance_msat=local_balance_msat,
        remote_balance_msat=remote_balance_msat,
        state=state,
    )
