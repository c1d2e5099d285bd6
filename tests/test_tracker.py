from __future__ import annotations

import hashlib
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

from helpers import seed_from_name

from ulw.errors import InternalFailure, InvalidInvoice, InvalidTransition, StorageFailure
from ulw.invoice import bolt11
from ulw.keys.identity import derive_identity
from ulw.paytrack.tracker import PaymentTracker
from ulw.storage.data import WalletStore
from ulw.storage.db import WalletDB
from ulw.types import Network, PaymentDirection, PaymentStatus


def _new_tracker(name: str = "tracker", store=None) -> PaymentTracker:
    return PaymentTracker(derive_identity(seed_from_name(name)), Network.REGTEST, store)


class TestCreateInvoice(unittest.TestCase):
    def setUp(self):
        self.tracker = _new_tracker()

    def test_invoice_fields(self):
        invoice = self.tracker.create_invoice(10_000, "desc", 3600)
        res = bolt11.decode(invoice)

        self.assertEqual(res.amount_msat, 10_000)
        self.assertEqual(res.description, "desc")
        self.assertEqual(res.network, Network.REGTEST)
        self.assertEqual(res.min_final_cltv_expiry, 144)
        self.assertEqual(res.payee, derive_identity(seed_from_name("tracker")).pubkey)
        self.assertIsNotNone(res.payment_secret)

        payments = self.tracker.list_payments()
        self.assertEqual(len(payments), 1)

        p = payments[0]
        self.assertEqual(p.payment_hash, res.payment_hash)
        self.assertEqual(p.amount_msat, 10_000)
        self.assertEqual(p.status, PaymentStatus.PENDING)
        self.assertEqual(p.direction, PaymentDirection.INBOUND)
        self.assertEqual(hashlib.sha256(p.preimage).digest(), p.payment_hash)

    def test_any_amount(self):
        invoice = self.tracker.create_invoice(None, "", 600)
        res = bolt11.decode(invoice)

        self.assertIsNone(res.amount_msat)
        self.assertEqual(res.expiry, 600)
        self.assertIsNone(self.tracker.get_payment(res.payment_hash).amount_msat)

    def test_distinct_hashes(self):
        hashes = {
            bolt11.decode(self.tracker.create_invoice(1000, "same", 3600)).payment_hash
            for _ in range(20)
        }
        self.assertEqual(len(hashes), 20)
        self.assertEqual(len(self.tracker.list_payments()), 20)

    def test_concurrent_creation(self):
        def create(i: int) -> str:
            return self.tracker.create_invoice(1000 + i, f"invoice {i}", 3600)

        with ThreadPoolExecutor(max_workers=10) as executor:
            invoices = list(executor.map(create, range(10)))

        hashes = {bolt11.decode(inv).payment_hash for inv in invoices}
        self.assertEqual(len(hashes), 10)
        self.assertEqual(
            {p.payment_hash for p in self.tracker.list_payments()}, hashes
        )

    def test_encoding_failure(self):
        with patch.object(bolt11, "encode", side_effect=ValueError("too long")):
            with self.assertRaises(InternalFailure):
                self.tracker.create_invoice(1000, "desc", 3600)

        self.assertEqual(self.tracker.list_payments(), [])

    def test_snapshot_is_a_copy(self):
        invoice = self.tracker.create_invoice(1000, "desc", 3600)
        payment_hash = bolt11.decode(invoice).payment_hash

        self.tracker.get_payment(payment_hash).status = PaymentStatus.FAILED
        self.assertEqual(
            self.tracker.get_payment(payment_hash).status, PaymentStatus.PENDING
        )


class TestPayInvoice(unittest.TestCase):
    def setUp(self):
        self.payee = _new_tracker("payee")
        self.payer = _new_tracker("payer")

    def test_pay(self):
        invoice = self.payee.create_invoice(25_000, "coffee", 3600)
        payment_hash = self.payer.pay_invoice(invoice)

        self.assertEqual(payment_hash, bolt11.decode(invoice).payment_hash)

        p = self.payer.get_payment(payment_hash)
        self.assertEqual(p.amount_msat, 25_000)
        self.assertEqual(p.direction, PaymentDirection.OUTBOUND)
        self.assertEqual(p.status, PaymentStatus.PENDING)
        self.assertIsNone(p.preimage)

    def test_invalid_invoice(self):
        for s in ["", "garbage", "lnbcrt1qqqqqqq"]:
            with self.subTest(s):
                with self.assertRaises(InvalidInvoice):
                    self.payer.pay_invoice(s)

        self.assertEqual(self.payer.list_payments(), [])

    def test_any_amount_rejected(self):
        invoice = self.payee.create_invoice(None, "donation", 3600)

        with self.assertRaises(InvalidInvoice):
            self.payer.pay_invoice(invoice)
        self.assertEqual(self.payer.list_payments(), [])

    def test_pay_again_while_pending(self):
        invoice = self.payee.create_invoice(25_000, "coffee", 3600)
        payment_hash = self.payer.pay_invoice(invoice)

        self.assertEqual(self.payer.pay_invoice(invoice), payment_hash)
        self.assertEqual(len(self.payer.list_payments()), 1)

    def test_pay_again_after_settlement(self):
        invoice = self.payee.create_invoice(25_000, "coffee", 3600)
        payment_hash = self.payer.pay_invoice(invoice)
        self.payer.apply_settlement(payment_hash, False)

        with self.assertRaises(InvalidTransition):
            self.payer.pay_invoice(invoice)
        self.assertEqual(
            self.payer.get_payment(payment_hash).status, PaymentStatus.FAILED
        )

    def test_pay_own_invoice(self):
        invoice = self.payee.create_invoice(25_000, "self", 3600)
        payment_hash = bolt11.decode(invoice).payment_hash

        with self.assertRaises(InvalidTransition):
            self.payee.pay_invoice(invoice)

        p = self.payee.get_payment(payment_hash)
        self.assertEqual(p.direction, PaymentDirection.INBOUND)
        self.assertIsNotNone(p.preimage)


class TestSettlement(unittest.TestCase):
    def setUp(self):
        self.tracker = _new_tracker()
        invoice = self.tracker.create_invoice(1000, "desc", 3600)
        self.payment_hash = bolt11.decode(invoice).payment_hash

    def test_succeeded(self):
        res = self.tracker.apply_settlement(self.payment_hash, True)

        self.assertEqual(res.status, PaymentStatus.SUCCEEDED)
        self.assertEqual(
            self.tracker.get_payment(self.payment_hash).status,
            PaymentStatus.SUCCEEDED,
        )

    def test_failed(self):
        res = self.tracker.apply_settlement(self.payment_hash, False)
        self.assertEqual(res.status, PaymentStatus.FAILED)

    def test_terminal_is_final(self):
        self.tracker.apply_settlement(self.payment_hash, False)

        for succeeded in [True, False]:
            with self.assertRaises(InvalidTransition):
                self.tracker.apply_settlement(self.payment_hash, succeeded)

        self.assertEqual(
            self.tracker.get_payment(self.payment_hash).status, PaymentStatus.FAILED
        )

    def test_unknown_payment(self):
        with self.assertRaises(InvalidTransition):
            self.tracker.apply_settlement(bytes(32), True)


class TestWriteThrough(unittest.TestCase):
    def setUp(self):
        self.store = WalletStore(WalletDB.from_path(":memory:"))
        self.tracker = _new_tracker(store=self.store)

    def tearDown(self):
        self.store.db.dispose()

    def test_inbound(self):
        invoice = self.tracker.create_invoice(10_000, "desc", 3600)
        decoded = bolt11.decode(invoice)

        p = self.store.get_payment(decoded.payment_hash.hex())
        self.assertEqual(p.amount_msat, 10_000)
        self.assertEqual(p.direction, PaymentDirection.INBOUND)
        self.assertEqual(p.status, PaymentStatus.PENDING)
        self.assertEqual(p.invoice, invoice)
        self.assertEqual(p.created_at, decoded.created_at)
        self.assertIsNone(p.settled_at)

    def test_inbound_any_amount(self):
        invoice = self.tracker.create_invoice(None, "desc", 3600)
        p = self.store.get_payment(bolt11.decode(invoice).payment_hash.hex())
        self.assertEqual(p.amount_msat, 0)

    def test_outbound_and_settlement(self):
        invoice = _new_tracker("other").create_invoice(5000, "pay me", 3600)
        payment_hash = self.tracker.pay_invoice(invoice)

        p = self.store.get_payment(payment_hash.hex())
        self.assertEqual(p.direction, PaymentDirection.OUTBOUND)
        self.assertEqual(p.amount_msat, 5000)

        self.tracker.apply_settlement(payment_hash, True)

        p = self.store.get_payment(payment_hash.hex())
        self.assertEqual(p.status, PaymentStatus.SUCCEEDED)
        self.assertIsNotNone(p.settled_at)
        self.assertGreaterEqual(p.settled_at, p.created_at)

    def test_store_failure_leaves_no_entry(self):
        store = MagicMock()
        store.register_payment.side_effect = StorageFailure("disk full")
        tracker = _new_tracker(store=store)

        with self.assertRaises(StorageFailure):
            tracker.create_invoice(1000, "desc", 3600)

        invoice = _new_tracker("other").create_invoice(5000, "pay me", 3600)
        with self.assertRaises(StorageFailure):
            tracker.pay_invoice(invoice)

        self.assertEqual(tracker.list_payments(), [])

    def test_pay_again_keeps_settled_record(self):
        invoice = _new_tracker("other").create_invoice(5000, "pay me", 3600)
        payment_hash = self.tracker.pay_invoice(invoice)
        self.tracker.apply_settlement(payment_hash, True)
        settled = self.store.get_payment(payment_hash.hex())

        with self.assertRaises(InvalidTransition):
            self.tracker.pay_invoice(invoice)

        # A tracker started later only knows the stored record.
        restarted = _new_tracker(store=self.store)
        with self.assertRaises(StorageFailure):
            restarted.pay_invoice(invoice)

        self.assertEqual(self.store.get_payment(payment_hash.hex()), settled)
        self.assertEqual(
            self.tracker.get_payment(payment_hash).status, PaymentStatus.SUCCEEDED
        )
        self.assertIsNone(restarted.get_payment(payment_hash))

    def test_pay_again_while_pending(self):
        invoice = _new_tracker("other").create_invoice(5000, "pay me", 3600)
        payment_hash = self.tracker.pay_invoice(invoice)

        self.assertEqual(self.tracker.pay_invoice(invoice), payment_hash)
        self.assertEqual(len(self.store.list_payments()), 1)
        self.assertEqual(
            self.store.get_payment(payment_hash.hex()).status, PaymentStatus.PENDING
        )

    def test_pay_own_invoice_keeps_inbound_record(self):
        invoice = self.tracker.create_invoice(5000, "self", 3600)
        payment_hash = bolt11.decode(invoice).payment_hash

        with self.assertRaises(InvalidTransition):
            self.tracker.pay_invoice(invoice)

        restarted = _new_tracker(store=self.store)
        with self.assertRaises(StorageFailure):
            restarted.pay_invoice(invoice)

        self.assertEqual(
            self.store.get_payment(payment_hash.hex()).direction,
            PaymentDirection.INBOUND,
        )
        self.assertEqual(
            self.tracker.get_payment(payment_hash).direction, PaymentDirection.INBOUND
        )

    def test_failed_settlement_write_keeps_entry_pending(self):
        store = MagicMock()
        store.settle_payment.side_effect = StorageFailure("disk")
        tracker = _new_tracker(store=store)

        invoice = tracker.create_invoice(1000, "desc", 3600)
        payment_hash = bolt11.decode(invoice).payment_hash

        with self.assertRaises(StorageFailure):
            tracker.apply_settlement(payment_hash, True)
        self.assertEqual(
            tracker.get_payment(payment_hash).status, PaymentStatus.PENDING
        )

        # Once the store accepts the write the settlement goes through.
        store.settle_payment.side_effect = None
        tracker.apply_settlement(payment_hash, True)
        self.assertEqual(
            tracker.get_payment(payment_hash).status, PaymentStatus.SUCCEEDED
        )

    def test_amount_beyond_storage_range(self):
        with self.assertRaises(StorageFailure):
            self.tracker.create_invoice(bolt11.MAX_AMOUNT_MSAT, "huge", 3600)

        invoice = _new_tracker("other").create_invoice(
            bolt11.MAX_AMOUNT_MSAT, "huge", 3600
        )
        with self.assertRaises(StorageFailure):
            self.tracker.pay_invoice(invoice)

        self.assertEqual(self.tracker.list_payments(), [])
        self.assertEqual(self.store.list_payments(), [])
