"""
Core domain types of the wallet: payment records, channel snapshots and the
bitcoin network selector.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Network(Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"
    SIGNET = "signet"

    @classmethod
    def from_str(cls, name: str) -> Network:
        """
        Returns the network for a name. 'bitcoin' is accepted as alias of
        mainnet.
        """

        name = name.strip().lower()
        if name == "bitcoin":
            return cls.MAINNET
        return cls(name)


class PaymentDirection(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class PaymentStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class ChannelState(Enum):
    OPENING = "opening"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        """Position in the lifecycle. A channel never moves to a lower rank."""
        return _CHANNEL_STATE_ORDER.index(self)


_CHANNEL_STATE_ORDER = [
    ChannelState.OPENING,
    ChannelState.ACTIVE,
    ChannelState.CLOSING,
    ChannelState.CLOSED,
]


@dataclass
class Payment:
    # hex encoded payment hash, 64 chars
    payment_hash: str
    amount_msat: int
    direction: PaymentDirection
    status: PaymentStatus
    invoice: str | None
    created_at: datetime

    # only set for succeeded or failed payments
    settled_at: datetime | None = None


@dataclass
class ChannelInfo:
    channel_id: str
    counterparty_node_id: str
    capacity_sats: int
    local_balance_msat: int
    remote_balance_msat: int
    state: ChannelState


@dataclass
class Balance:
    onchain_sats: int

    # local balance of active channels
    lightning_available_msat: int

    # local balance of all channels not closed yet
    lightning_total_msat: int

    @property
    def total_msat(self) -> int:
        return self.onchain_sats * 1000 + self.lightning_total_msat

    @property
    def spendable_msat(self) -> int:
        return self.onchain_sats * 1000 + self.lightning_available_msat
