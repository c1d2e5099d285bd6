"""
Defines a Protocol for the on-chain wallet. Transaction building, signing, fee
estimation and broadcasting are done by the implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass
class OnChainTransaction:
    txid: str
    received_sats: int
    sent_sats: int
    fee_sats: int | None
    confirmation_time: datetime | None


class OnChainWallet(Protocol):
    """
    Serves as interface for an on-chain wallet.
    """

    def get_new_address(self) -> str:
        """
        Returns a new receiving address.
        """
        ...

    def get_balance(self) -> int:
        """
        Returns the total on-chain balance in sats.
        """
        ...

    def send(self, address: str, amount_sats: int) -> str:
        """
        Builds, signs and broadcasts a transaction. Returns the txid.
        """
        ...

    def sync(self) -> None:
        """
        Syncs the wallet with the blockchain.
        """
        ...

    def list_transactions(self) -> list[OnChainTransaction]: ...
