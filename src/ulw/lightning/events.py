from __future__ import annotations

from typing import TYPE_CHECKING

from ulw.log import getLogger
from ulw.types import PaymentStatus

if TYPE_CHECKING:
    from ulw.lightning.client import LightningEngine
    from ulw.paytrack.tracker import PaymentTracker
    from ulw.storage.data import WalletStore
    from ulw.types import ChannelInfo

logger = getLogger(__name__)


class EventRecorder:
    """
    Records the events of the lightning engine: channel snapshots go to the
    store, settlements to the tracker and the store.
    """

    def __init__(
        self, store: WalletStore, tracker: PaymentTracker | None = None
    ) -> None:
        self._store = store
        self._tracker = tracker

    def channel_updated(self, channel: ChannelInfo) -> None:
        logger.debug(
            f"Channel update {channel.channel_id}: {channel.state.value=}, "
            f"{channel.local_balance_msat=}, {channel.remote_balance_msat=}"
        )
        self._store.save_channel(channel)

    def payment_settled(self, payment_hash: bytes, succeeded: bool) -> None:
        written = False
        if (
            self._tracker is not None
            and self._tracker.get_payment(payment_hash) is not None
        ):
            self._tracker.apply_settlement(payment_hash, succeeded)
            written = self._tracker.store is self._store

        if written:
            return

        # Payments of earlier runs are only known by the store.
        if self._store.get_payment(payment_hash.hex()) is None:
            logger.warning(f"Settlement for unknown payment {payment_hash.hex()}")
            return

        status = PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED
        self._store.settle_payment(payment_hash.hex(), status)

    def sync_channels(self, engine: LightningEngine) -> int:
        """
        Stores the current snapshot of all channels of the engine. Returns the
        number of channels.
        """

        channels = engine.list_channels()
        for c in channels:
            self.channel_updated(c)

        logger.info(f"Synced {len(channels)} channels of {engine.node_id}")
        return len(channels)

    def attach(self, engine: LightningEngine) -> None:
        engine.set_event_handler(self)
