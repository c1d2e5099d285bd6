"""
Explicitly constructed handles of one wallet. Callers create a WalletContext
once and pass it down the call chain instead of reaching into shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ulw.config import WalletConfig
from ulw.keys.identity import load_or_create_seed
from ulw.lightning.events import EventRecorder
from ulw.log import getLogger, set_logger
from ulw.node import LightningNode
from ulw.storage.data import WalletStore
from ulw.storage.db import WalletDB
from ulw.types import Balance, ChannelState
from ulw.version import __version__

if TYPE_CHECKING:
    from ulw.chain.client import OnChainWallet

logger = getLogger(__name__)


@dataclass
class WalletContext:
    config: WalletConfig
    db: WalletDB
    store: WalletStore
    node: LightningNode
    recorder: EventRecorder
    onchain: OnChainWallet | None = None

    @classmethod
    def from_config(
        cls,
        config: WalletConfig,
        onchain: OnChainWallet | None = None,
        seed: bytes | None = None,
    ) -> WalletContext:
        """
        Opens the store and creates the node. Without an explicit seed the seed
        file of the configuration is used and created if missing.
        """

        if config.database_url is not None:
            db = WalletDB(config.database_url)
        else:
            db = WalletDB.from_path(config.database_path)

        store = WalletStore(db)

        if seed is None:
            seed = load_or_create_seed(config.seed_file)

        node = LightningNode(
            network=config.network,
            storage_path=config.lightning_dir,
            entropy_seed=seed,
            store=store,
            min_final_cltv_expiry=config.lightning.min_final_cltv_expiry,
        )
        recorder = EventRecorder(store, node.tracker)

        return cls(config, db, store, node, recorder, onchain)

    def create_invoice(self, amount_msat: int | None, description: str) -> str:
        """Creates an invoice with the configured expiry."""

        return self.node.create_invoice(
            amount_msat, description, self.config.lightning.invoice_expiry
        )

    def get_balance(self) -> Balance:
        """
        Sums the on-chain balance and the local balances of the stored channels.
        """

        onchain_sats = self.onchain.get_balance() if self.onchain is not None else 0

        available = 0
        total = 0
        for c in self.store.list_channels():
            if c.state is ChannelState.CLOSED:
                continue
            total += c.local_balance_msat
            if c.state is ChannelState.ACTIVE:
                available += c.local_balance_msat

        return Balance(onchain_sats, available, total)

    def close(self) -> None:
        self.db.dispose()


def open_wallet(
    config_file: str, onchain: OnChainWallet | None = None
) -> WalletContext:
    """
    Reads the config file, sets up logging and opens the wallet.
    """

    config = WalletConfig.from_config_file(config_file)
    logfile = set_logger(config.log_file, config.log_level, config.data_dir)
    logger.info(
        f"ulw {__version__=} opening wallet '{config.wallet_name}', logging to {logfile}"
    )

    return WalletContext.from_config(config, onchain)
