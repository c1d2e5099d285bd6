"""
Defines a Protocol for the lightning engine which runs channels, routing and
HTLC handling. The wallet core only records what the engine reports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ulw.types import ChannelInfo


class EngineEventHandler(Protocol):
    def channel_updated(self, channel: ChannelInfo) -> None:
        """
        Called with the full snapshot of a channel after each state change.
        """
        ...

    def payment_settled(self, payment_hash: bytes, succeeded: bool) -> None:
        """
        Called when a payment was resolved by the network.
        """
        ...


class LightningEngine(Protocol):
    @property
    def node_id(self) -> str:
        """
        Returns the pubkey of the local node.
        """
        ...

    def list_channels(self) -> list[ChannelInfo]:
        """
        Fetches all channels of the engine.
        """
        ...

    def set_event_handler(self, handler: EngineEventHandler) -> None: ...
