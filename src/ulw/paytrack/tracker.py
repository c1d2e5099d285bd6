"""
In memory tracking of invoices and payments by payment hash. Entries live as
long as the tracker. With a store configured every new entry and every
settlement is written through to the durable payment records.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING

import pytz

from ulw.errors import InternalFailure, InvalidInvoice, InvalidTransition
from ulw.invoice import bolt11
from ulw.log import getLogger
from ulw.rwlock import RWLock
from ulw.types import Network, Payment, PaymentDirection, PaymentStatus

if TYPE_CHECKING:
    from ulw.keys.identity import NodeIdentity
    from ulw.storage.data import WalletStore

DEFAULT_MIN_FINAL_CLTV_EXPIRY = 144

logger = getLogger(__name__)


@dataclass
class PaymentInfo:
    payment_hash: bytes

    # None for invoices without amount
    amount_msat: int | None
    status: PaymentStatus
    direction: PaymentDirection

    # Preimage of the payment hash. Only known for our own invoices.
    preimage: bytes | None = None


class PaymentTracker:
    def __init__(
        self,
        identity: NodeIdentity,
        network: Network,
        store: WalletStore | None = None,
        min_final_cltv_expiry: int = DEFAULT_MIN_FINAL_CLTV_EXPIRY,
    ) -> None:
        self._identity = identity
        self._network = network
        self._store = store
        self._min_final_cltv_expiry = min_final_cltv_expiry

        self._payments: dict[bytes, PaymentInfo] = {}
        self._lock = RWLock()

    @property
    def store(self) -> WalletStore | None:
        return self._store

    def create_invoice(
        self, amount_msat: int | None, description: str, expiry_seconds: int
    ) -> str:
        """
        Creates a signed BOLT11 invoice and tracks it as pending inbound
        payment. Without amount an any-amount invoice is created.
        """

        # Everything up to the insert happens without the lock.
        preimage = self._identity.get_secure_random_bytes()
        payment_secret = self._identity.get_secure_random_bytes()
        payment_hash = hashlib.sha256(preimage).digest()

        invoice = bolt11.Bolt11Invoice(
            network=self._network,
            payment_hash=payment_hash,
            timestamp=bolt11.now_timestamp(),
            amount_msat=amount_msat,
            payment_secret=payment_secret,
            description=description,
            expiry=expiry_seconds,
            min_final_cltv_expiry=self._min_final_cltv_expiry,
            features=bolt11.DEFAULT_FEATURES,
        )

        try:
            invoice_str = bolt11.encode(invoice, self._identity)
        except ValueError as e:
            raise InternalFailure(f"failed to build invoice: {e}") from e

        if self._store is not None:
            self._store.register_payment(
                Payment(
                    payment_hash=payment_hash.hex(),
                    amount_msat=amount_msat or 0,
                    direction=PaymentDirection.INBOUND,
                    status=PaymentStatus.PENDING,
                    invoice=invoice_str,
                    created_at=invoice.created_at,
                )
            )

        info = PaymentInfo(
            payment_hash=payment_hash,
            amount_msat=amount_msat,
            status=PaymentStatus.PENDING,
            direction=PaymentDirection.INBOUND,
            preimage=preimage,
        )
        with self._lock.write():
            self._payments[payment_hash] = info

        logger.info(f"Created invoice {payment_hash.hex()} for {amount_msat=}")
        logger.trace_lazy(lambda: f"Invoice {payment_hash.hex()}: {invoice_str}")
        return invoice_str

    def pay_invoice(self, invoice_str: str) -> bytes:
        """
        Registers the intent to pay the invoice and returns its payment hash.
        The payment itself is sent by the lightning engine.
        """

        invoice = bolt11.decode(invoice_str)
        if invoice.amount_msat is None:
            raise InvalidInvoice("invoice has no amount")

        payment_hash = invoice.payment_hash
        with self._lock.read():
            self._check_replaceable(payment_hash, PaymentDirection.OUTBOUND)

        logger.info(
            f"Registering payment {payment_hash.hex()} for {invoice.amount_msat} msat"
        )

        if self._store is not None:
            self._store.register_payment(
                Payment(
                    payment_hash=payment_hash.hex(),
                    amount_msat=invoice.amount_msat,
                    direction=PaymentDirection.OUTBOUND,
                    status=PaymentStatus.PENDING,
                    invoice=invoice_str.strip(),
                    created_at=datetime.now(pytz.utc),
                )
            )

        info = PaymentInfo(
            payment_hash=payment_hash,
            amount_msat=invoice.amount_msat,
            status=PaymentStatus.PENDING,
            direction=PaymentDirection.OUTBOUND,
        )
        with self._lock.write():
            self._check_replaceable(payment_hash, PaymentDirection.OUTBOUND)
            self._payments[payment_hash] = info

        return payment_hash

    def list_payments(self) -> list[PaymentInfo]:
        """
        Returns a snapshot of all tracked payments in arbitrary order.
        """

        with self._lock.read():
            return [replace(p) for p in self._payments.values()]

    def get_payment(self, payment_hash: bytes) -> PaymentInfo | None:
        with self._lock.read():
            if (p := self._payments.get(payment_hash)) is None:
                return None
            return replace(p)

    def apply_settlement(self, payment_hash: bytes, succeeded: bool) -> PaymentInfo:
        """
        Moves a pending payment to succeeded or failed. Called for settlement
        events reported by the lightning engine. The entry changes only after
        the store accepted the settlement.
        """

        status = PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED

        with self._lock.read():
            self._pending_entry(payment_hash)

        if self._store is not None:
            self._store.settle_payment(payment_hash.hex(), status)

        with self._lock.write():
            p = self._pending_entry(payment_hash)
            p.status = status
            res = replace(p)

        logger.info(f"Payment {payment_hash.hex()} {status.value}")
        return res

    def _check_replaceable(
        self, payment_hash: bytes, direction: PaymentDirection
    ) -> None:
        """
        Only a pending entry of the same direction may be replaced. The caller
        holds the lock.
        """

        if (p := self._payments.get(payment_hash)) is None:
            return

        if p.status.is_terminal:
            raise InvalidTransition(
                f"payment {payment_hash.hex()} already {p.status.value}"
            )

        if p.direction is not direction:
            raise InvalidTransition(
                f"payment {payment_hash.hex()} is tracked as {p.direction.value}"
            )

    def _pending_entry(self, payment_hash: bytes) -> PaymentInfo:
        """Returns the pending entry. The caller holds the lock."""

        if (p := self._payments.get(payment_hash)) is None:
            raise InvalidTransition(f"unknown payment {payment_hash.hex()}")

        if p.status.is_terminal:
            raise InvalidTransition(
                f"payment {payment_hash.hex()} already {p.status.value}"
            )

        return p
