"""
Facade of the lightning node: identity plus payment tracking behind one handle.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ulw.errors import InternalFailure
from ulw.keys.identity import derive_identity
from ulw.log import getLogger
from ulw.paytrack.tracker import (
    DEFAULT_MIN_FINAL_CLTV_EXPIRY,
    PaymentInfo,
    PaymentTracker,
)
from ulw.version import __version__

if TYPE_CHECKING:
    from ulw.storage.data import WalletStore
    from ulw.types import Network

DEFAULT_INVOICE_EXPIRY = 3600

logger = getLogger(__name__)


@dataclass(frozen=True)
class NodeInfo:
    node_id: str
    network: Network
    version: str


class LightningNode:
    """
    Owns the node identity and the payment tracker for the lifetime of the
    process. The storage path belongs to the lightning engine, the node only
    makes sure it exists.
    """

    def __init__(
        self,
        network: Network,
        storage_path: str,
        entropy_seed: bytes,
        store: WalletStore | None = None,
        min_final_cltv_expiry: int = DEFAULT_MIN_FINAL_CLTV_EXPIRY,
    ) -> None:
        self.network = network
        self.storage_path = os.path.expanduser(storage_path)

        # Raises InvalidSeed before anything touches the filesystem.
        self._identity = derive_identity(entropy_seed)

        try:
            os.makedirs(self.storage_path, exist_ok=True)
        except OSError as e:
            raise InternalFailure(
                f"failed to create storage '{self.storage_path}': {e}"
            ) from e

        self.tracker = PaymentTracker(
            self._identity, network, store, min_final_cltv_expiry
        )

        logger.info(
            f"Initialized lightning node {self.node_id()} on {network.value} network"
        )

    def node_id(self) -> str:
        """Hex encoded compressed public key of the node."""
        return self._identity.node_id

    def create_invoice(
        self,
        amount_msat: int | None,
        description: str,
        expiry_seconds: int = DEFAULT_INVOICE_EXPIRY,
    ) -> str:
        return self.tracker.create_invoice(amount_msat, description, expiry_seconds)

    def pay_invoice(self, invoice: str) -> bytes:
        return self.tracker.pay_invoice(invoice)

    def list_payments(self) -> list[PaymentInfo]:
        return self.tracker.list_payments()

    def apply_settlement(self, payment_hash: bytes, succeeded: bool) -> PaymentInfo:
        return self.tracker.apply_settlement(payment_hash, succeeded)

    def get_info(self) -> NodeInfo:
        return NodeInfo(
            node_id=self.node_id(), network=self.network, version=__version__
        )
