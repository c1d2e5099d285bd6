"""
Encoding and decoding of BOLT11 lightning invoices.

An invoice is a bech32 string. The human readable part carries the currency
and the optional amount, the data part a 35 bit timestamp, tagged fields and a
recoverable secp256k1 signature of the node over the sha256 of hrp and data.
"""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import coincurve
import pytz
from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits

from ulw.errors import InvalidInvoice
from ulw.types import Network

DEFAULT_EXPIRY = 3600

# min_final_cltv_expiry of an invoice without a c field
BOLT11_DEFAULT_MIN_FINAL_CLTV_EXPIRY = 18

# var_onion_optin (8) and payment_secret (14) required, basic_mpp (17) optional
DEFAULT_FEATURES = (1 << 8) | (1 << 14) | (1 << 17)

TIMESTAMP_WORDS = 7
SIGNATURE_WORDS = 104
HASH_WORDS = 52
PUBKEY_WORDS = 53
MAX_FIELD_WORDS = 1023

# Amounts are unsigned 64 bit millisatoshi values.
MAX_AMOUNT_MSAT = 2**64 - 1

CURRENCIES: dict[Network, str] = {
    Network.MAINNET: "bc",
    Network.TESTNET: "tb",
    Network.REGTEST: "bcrt",
    Network.SIGNET: "tbs",
}

# msat per unit of the amount multiplier, 'p' is handled separately
MULTIPLIERS: dict[str, int] = {
    "": 100_000_000_000,
    "m": 100_000_000,
    "u": 100_000,
    "n": 100,
}

_HRP_REGEX = re.compile(r"^ln(bcrt|bc|tbs|tb)(\d+)?([munp])?$")


class Signer(Protocol):
    @property
    def pubkey(self) -> bytes: ...

    def sign_recoverable(self, msg_hash: bytes) -> tuple[bytes, int]: ...


@dataclass
class Bolt11Invoice:
    network: Network
    payment_hash: bytes
    timestamp: int
    amount_msat: int | None = None
    payment_secret: bytes | None = None
    description: str | None = None
    description_hash: bytes | None = None
    expiry: int = DEFAULT_EXPIRY
    min_final_cltv_expiry: int = BOLT11_DEFAULT_MIN_FINAL_CLTV_EXPIRY
    features: int | None = None

    # Public key of the payee. Recovered from the signature during decoding.
    payee: bytes | None = None

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=pytz.utc)

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.expiry)

    def is_expired(self, now: datetime | None = None) -> bool:
        if now is None:
            now = datetime.now(pytz.utc)
        return now >= self.expires_at


def shorten_amount(amount_msat: int) -> str:
    """
    Returns the shortest amount string for the human readable part.
    """

    # one msat is ten pico bitcoin
    amount = amount_msat * 10
    for unit in ["p", "n", "u", "m"]:
        if amount % 1000 != 0:
            return f"{amount}{unit}"
        amount //= 1000

    return str(amount)


def unshorten_amount(amount: str, multiplier: str) -> int:
    """Converts the amount of the human readable part to msat."""

    value = int(amount)
    if multiplier == "p":
        if value % 10 != 0:
            raise InvalidInvoice(f"sub-millisatoshi amount {amount}p")
        amount_msat = value // 10
    else:
        amount_msat = value * MULTIPLIERS[multiplier]

    if amount_msat > MAX_AMOUNT_MSAT:
        raise InvalidInvoice(f"amount {amount}{multiplier} exceeds 64 bit msat")

    return amount_msat


def _int_to_words(value: int) -> list[int]:
    words: list[int] = []
    while value > 0:
        words.append(value & 31)
        value >>= 5
    return list(reversed(words))


def _int_to_words_fixed(value: int, length: int) -> list[int]:
    return [(value >> (5 * (length - 1 - i))) & 31 for i in range(length)]


def _words_to_int(words: list[int]) -> int:
    value = 0
    for w in words:
        value = (value << 5) | w
    return value


def _bytes_to_words(data: bytes) -> list[int]:
    words = convertbits(data, 8, 5, True)
    if words is None:
        raise ValueError("cannot convert bytes to 5 bit words")
    return words


def _words_to_bytes(words: list[int]) -> bytes | None:
    data = convertbits(words, 5, 8, False)
    return bytes(data) if data is not None else None


def _tagged(tag: str, words: list[int]) -> list[int]:
    if len(words) > MAX_FIELD_WORDS:
        raise ValueError(f"field '{tag}' too long: {len(words)} words")
    return [CHARSET.index(tag), len(words) >> 5, len(words) & 31] + words


def _sig_hash(hrp: str, words: list[int]) -> bytes:
    data = convertbits(words, 5, 8, True)
    return hashlib.sha256(hrp.encode("utf-8") + bytes(data)).digest()


def encode(invoice: Bolt11Invoice, signer: Signer) -> str:
    """
    Serializes and signs the invoice. Raises ValueError if a field cannot be
    encoded, e.g. a description longer than 639 bytes.
    """

    hrp = "ln" + CURRENCIES[invoice.network]
    if invoice.amount_msat is not None:
        if not 0 <= invoice.amount_msat <= MAX_AMOUNT_MSAT:
            raise ValueError(f"amount out of range: {invoice.amount_msat}")
        hrp += shorten_amount(invoice.amount_msat)

    words = _int_to_words_fixed(invoice.timestamp, TIMESTAMP_WORDS)
    words += _tagged("p", _bytes_to_words(invoice.payment_hash))

    if invoice.payment_secret is not None:
        words += _tagged("s", _bytes_to_words(invoice.payment_secret))

    if invoice.description is not None:
        words += _tagged("d", _bytes_to_words(invoice.description.encode("utf-8")))

    if invoice.description_hash is not None:
        words += _tagged("h", _bytes_to_words(invoice.description_hash))

    if invoice.expiry != DEFAULT_EXPIRY:
        words += _tagged("x", _int_to_words(invoice.expiry))

    words += _tagged("c", _int_to_words(invoice.min_final_cltv_expiry))

    if invoice.features is not None:
        words += _tagged("9", _int_to_words(invoice.features))

    sig, recid = signer.sign_recoverable(_sig_hash(hrp, words))
    words += _bytes_to_words(sig + bytes([recid]))

    invoice.payee = signer.pubkey
    return bech32_encode(hrp, words)


def _split_bech32(invoice: str) -> tuple[str, list[int]]:
    """
    Splits the invoice into hrp and data words and verifies the checksum.
    The length limit of 90 characters for bech32 addresses does not apply.
    """

    if invoice.lower() != invoice and invoice.upper() != invoice:
        raise InvalidInvoice("mixed case invoice")

    invoice = invoice.lower()
    if invoice.startswith("lightning:"):
        invoice = invoice[len("lightning:") :]

    pos = invoice.rfind("1")
    if pos < 1 or pos + 7 > len(invoice):
        raise InvalidInvoice("missing bech32 separator or checksum")

    hrp = invoice[:pos]
    try:
        data = [CHARSET.index(c) for c in invoice[pos + 1 :]]
    except ValueError as e:
        raise InvalidInvoice(f"invalid bech32 character: {e}") from e

    if not bech32_verify_checksum(hrp, data):
        raise InvalidInvoice("bech32 checksum mismatch")

    return hrp, data[:-6]


def _parse_hrp(hrp: str) -> tuple[Network, int | None]:
    if (m := _HRP_REGEX.match(hrp)) is None:
        raise InvalidInvoice(f"unknown human readable part '{hrp}'")

    currency, amount, multiplier = m.groups()
    network = next(n for n, c in CURRENCIES.items() if c == currency)

    if amount is None:
        if multiplier is not None:
            raise InvalidInvoice(f"multiplier without amount in '{hrp}'")
        return network, None

    return network, unshorten_amount(amount, multiplier or "")


def decode(invoice: str) -> Bolt11Invoice:
    """
    Parses the invoice string, checks checksum and signature and recovers the
    payee. Raises InvalidInvoice for malformed invoices.
    """

    hrp, words = _split_bech32(invoice.strip())
    network, amount_msat = _parse_hrp(hrp)

    if len(words) < TIMESTAMP_WORDS + SIGNATURE_WORDS:
        raise InvalidInvoice("data part too short")

    sig_words = words[-SIGNATURE_WORDS:]
    words = words[:-SIGNATURE_WORDS]

    res = Bolt11Invoice(
        network=network,
        payment_hash=b"",
        timestamp=_words_to_int(words[:TIMESTAMP_WORDS]),
        amount_msat=amount_msat,
    )

    payee_field: bytes | None = None
    fields = words[TIMESTAMP_WORDS:]
    while len(fields) > 0:
        if len(fields) < 3:
            raise InvalidInvoice("truncated tagged field")

        tag = CHARSET[fields[0]]
        length = (fields[1] << 5) + fields[2]
        data = fields[3 : 3 + length]
        if len(data) < length:
            raise InvalidInvoice(f"tagged field '{tag}' exceeds data part")
        fields = fields[3 + length :]

        # Fields with an unexpected length are skipped as required by BOLT11.
        if tag == "p" and length == HASH_WORDS:
            res.payment_hash = _words_to_bytes(data) or b""
        elif tag == "s" and length == HASH_WORDS:
            res.payment_secret = _words_to_bytes(data)
        elif tag == "h" and length == HASH_WORDS:
            res.description_hash = _words_to_bytes(data)
        elif tag == "n" and length == PUBKEY_WORDS:
            payee_field = _words_to_bytes(data)
        elif tag == "d":
            raw = _words_to_bytes(data)
            if raw is None:
                raise InvalidInvoice("invalid padding in description")
            try:
                res.description = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidInvoice(f"description is not utf-8: {e}") from e
        elif tag == "x":
            res.expiry = _words_to_int(data)
        elif tag == "c":
            res.min_final_cltv_expiry = _words_to_int(data)
        elif tag == "9":
            res.features = _words_to_int(data)

    if len(res.payment_hash) != 32:
        raise InvalidInvoice("missing payment hash")

    if res.description is None and res.description_hash is None:
        raise InvalidInvoice("missing description")

    sig = _words_to_bytes(sig_words)
    if sig is None or len(sig) != 65 or sig[64] > 3:
        raise InvalidInvoice("malformed signature")

    try:
        pubkey = coincurve.PublicKey.from_signature_and_message(
            sig, _sig_hash(hrp, words), hasher=None
        )
    except ValueError as e:
        raise InvalidInvoice(f"cannot recover payee from signature: {e}") from e

    res.payee = pubkey.format(compressed=True)
    if payee_field is not None and payee_field != res.payee:
        raise InvalidInvoice("signature does not match payee field")

    return res


def now_timestamp() -> int:
    return int(time.time())
