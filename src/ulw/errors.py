"""
Error kinds raised by the wallet core. Lower level exceptions are wrapped into
one of these classes, keeping the original message as text.
"""


class WalletError(Exception): ...


class InvalidSeed(WalletError): ...


class StorageFailure(WalletError): ...


class InvalidInvoice(WalletError): ...


class InternalFailure(WalletError): ...


class InvalidTransition(InternalFailure): ...


class InvalidConfig(WalletError): ...
