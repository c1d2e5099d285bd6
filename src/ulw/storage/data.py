from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import pytz
from sqlalchemy import select

from ulw.errors import StorageFailure
from ulw.log import getLogger
from ulw.types import (
    ChannelInfo,
    ChannelState,
    Payment,
    PaymentDirection,
    PaymentStatus,
)

from .models import Base, DBChannel, DBPayment

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.orm import Session

    from .db import WalletDB

logger = getLogger(__name__)

# Largest value of a sqlite INTEGER column.
MAX_INTEGER = 2**63 - 1


def _convert_payment(p: DBPayment) -> Payment:
    return Payment(
        payment_hash=p.payment_hash,
        amount_msat=p.amount_msat,
        direction=PaymentDirection(p.direction),
        status=PaymentStatus(p.status),
        invoice=p.invoice,
        created_at=p.created_at,
        settled_at=p.settled_at,
    )


def _check_integer(name: str, value: int) -> None:
    if value > MAX_INTEGER:
        raise StorageFailure(
            f"{name} {value} exceeds the storable maximum {MAX_INTEGER}"
        )


def _new_db_payment(p: Payment) -> DBPayment:
    _check_integer("amount_msat", p.amount_msat)
    return DBPayment(
        payment_hash=p.payment_hash.lower(),
        amount_msat=p.amount_msat,
        direction=p.direction.value,
        status=p.status.value,
        invoice=p.invoice,
        created_at=p.created_at,
        settled_at=p.settled_at,
    )


def _convert_channel(c: DBChannel) -> ChannelInfo:
    return ChannelInfo(
        channel_id=c.channel_id,
        counterparty_node_id=c.counterparty_node_id,
        capacity_sats=c.capacity_sats,
        local_balance_msat=c.local_balance_msat,
        remote_balance_msat=c.remote_balance_msat,
        state=ChannelState(c.state),
    )


def _new_db_channel(c: ChannelInfo) -> DBChannel:
    _check_integer("capacity_sats", c.capacity_sats)
    _check_integer("local_balance_msat", c.local_balance_msat)
    _check_integer("remote_balance_msat", c.remote_balance_msat)
    return DBChannel(
        channel_id=c.channel_id,
        counterparty_node_id=c.counterparty_node_id,
        capacity_sats=c.capacity_sats,
        local_balance_msat=c.local_balance_msat,
        remote_balance_msat=c.remote_balance_msat,
        state=c.state.value,
    )


def query_payment(payment_hash: str) -> Select[tuple[DBPayment]]:
    return select(DBPayment).where(DBPayment.payment_hash == payment_hash.lower())


def query_payments() -> Select[tuple[DBPayment]]:
    # payment_hash as tie breaker for equal timestamps
    return select(DBPayment).order_by(
        DBPayment.created_at.desc(), DBPayment.payment_hash
    )


def query_channel(channel_id: str) -> Select[tuple[DBChannel]]:
    return select(DBChannel).where(DBChannel.channel_id == channel_id)


def query_channels(state: ChannelState | None = None) -> Select[tuple[DBChannel]]:
    qry = select(DBChannel)
    if state is not None:
        qry = qry.where(DBChannel.state == state.value)
    return qry.order_by(DBChannel.channel_id)


class WalletStore:
    """
    Durable records of payments and channels. Safe for concurrent callers.
    All failures are raised as StorageFailure.
    """

    def __init__(self, db: WalletDB) -> None:
        self.db = db
        self.db.create_base(Base)

    def save_payment(self, payment: Payment) -> None:
        """
        Inserts the payment or replaces the stored record with the same hash.
        """

        def merge(session: Session) -> None:
            session.merge(_new_db_payment(payment))

        self.db.execute(merge)
        logger.debug(
            f"Saved payment {payment.payment_hash}: {payment.status.value=}, "
            f"{payment.amount_msat=}"
        )

    def register_payment(self, payment: Payment) -> None:
        """
        Records a new pending payment. A pending record of the same direction is
        replaced. A settled record or a record of the other direction is left
        untouched and StorageFailure is raised.
        """

        if payment.status is not PaymentStatus.PENDING:
            raise StorageFailure(
                f"cannot register payment with status {payment.status.value}"
            )

        def register(session: Session) -> None:
            p = session.get(DBPayment, payment.payment_hash.lower())
            if p is not None:
                if p.status != PaymentStatus.PENDING.value:
                    raise StorageFailure(
                        f"payment {payment.payment_hash} already {p.status}"
                    )
                if p.direction != payment.direction.value:
                    raise StorageFailure(
                        f"payment {payment.payment_hash} is recorded as {p.direction}"
                    )

            session.merge(_new_db_payment(payment))

        self.db.execute(register)
        logger.debug(
            f"Registered payment {payment.payment_hash}: "
            f"{payment.direction.value=}, {payment.amount_msat=}"
        )

    def get_payment(self, payment_hash: str) -> Payment | None:
        return self.db.sel_first(query_payment(payment_hash), _convert_payment)

    def list_payments(self) -> list[Payment]:
        """
        Returns all payments, the most recent first.
        """

        return self.db.sel_all_to_list(query_payments(), _convert_payment)

    def settle_payment(
        self,
        payment_hash: str,
        status: PaymentStatus,
        settled_at: datetime | None = None,
    ) -> Payment:
        """
        Resolves a pending payment with a terminal status. settled_at defaults
        to now and is never earlier than the creation of the payment.
        """

        if not status.is_terminal:
            raise StorageFailure(f"cannot settle payment with status {status.value}")

        if settled_at is None:
            settled_at = datetime.now(pytz.utc)

        def settle(session: Session) -> Payment:
            p = session.get(DBPayment, payment_hash.lower())
            if p is None:
                raise StorageFailure(f"payment {payment_hash} not found")

            if p.status != PaymentStatus.PENDING.value:
                raise StorageFailure(f"payment {payment_hash} already {p.status}")

            p.status = status.value
            p.settled_at = max(settled_at, p.created_at)
            return _convert_payment(p)

        payment = self.db.execute(settle)
        logger.info(f"Settled payment {payment_hash}: {status.value}")
        return payment

    def save_channel(self, channel: ChannelInfo) -> None:
        """
        Inserts the channel or replaces the stored snapshot. A snapshot with a
        state before the stored state is rejected.
        """

        def merge(session: Session) -> None:
            if (c := session.get(DBChannel, channel.channel_id)) is not None:
                stored = ChannelState(c.state)
                if channel.state.rank < stored.rank:
                    raise StorageFailure(
                        f"channel {channel.channel_id}: state cannot move from "
                        f"{stored.value} to {channel.state.value}"
                    )

            session.merge(_new_db_channel(channel))

        self.db.execute(merge)
        logger.debug(f"Saved channel {channel.channel_id}: {channel.state.value=}")

    def get_channel(self, channel_id: str) -> ChannelInfo | None:
        return self.db.sel_first(query_channel(channel_id), _convert_channel)

    def list_channels(self) -> list[ChannelInfo]:
        """
        Returns all channels ordered by channel_id.
        """

        return self.db.sel_all_to_list(query_channels(), _convert_channel)

    def list_channels_by_state(self, state: ChannelState) -> list[ChannelInfo]:
        return self.db.sel_all_to_list(query_channels(state), _convert_channel)
