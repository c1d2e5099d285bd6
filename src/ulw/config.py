from __future__ import annotations

import os
from dataclasses import dataclass

from ulw.errors import InvalidConfig
from ulw.types import Network

from .utils import GenericConf, defaults_from_type, read_config_file

DEFAULT_DATA_DIR = "~/.ulw"
DEFAULT_WALLET_NAME = "default"
DEFAULT_NETWORK = "regtest"


@dataclass
class LightningConfig(GenericConf):
    invoice_expiry: int = 3600
    min_final_cltv_expiry: int = 144

    # Defaults to '<data_dir>/lightning/seed'
    seed_file: str | None = None


class WalletConfig:
    """
    Configuration of the wallet read from a toml dictionary.
    """

    def __init__(self, config_dict: dict):
        wallet = config_dict.get("wallet") or {}

        try:
            self.network = Network.from_str(str(wallet.get("network", DEFAULT_NETWORK)))
        except ValueError as e:
            raise InvalidConfig(f"'wallet.network' invalid: {e}") from e

        self.data_dir = os.path.expanduser(str(wallet.get("data_dir", DEFAULT_DATA_DIR)))

        self.wallet_name = str(wallet.get("wallet_name", DEFAULT_WALLET_NAME))
        if not self.wallet_name:
            raise InvalidConfig("'wallet.wallet_name' must not be empty")

        self.lightning = defaults_from_type(
            LightningConfig, config_dict.get("lightning")
        )
        if self.lightning.invoice_expiry <= 0:
            raise InvalidConfig("'lightning.invoice_expiry' must be positive")
        if self.lightning.min_final_cltv_expiry < 0:
            raise InvalidConfig("'lightning.min_final_cltv_expiry' must not be negative")

        self.database_url: str | None = None
        if (sqlalchemy := config_dict.get("sqlalchemy")) is not None:
            if not (url := sqlalchemy.get("url")):
                raise InvalidConfig("'sqlalchemy.url' missing in configuration")
            self.database_url = str(url)

        self.log_file: str | None = None
        self.log_level: str | None = None
        if (logging := config_dict.get("logging")) is not None:
            if (logfile := logging.get("logfile")) is not None:
                self.log_file = str(logfile)

            if (loglevel := logging.get("level")) is not None:
                self.log_level = str(loglevel)

    @classmethod
    def from_config_file(cls, file_name: str) -> WalletConfig:
        return cls(read_config_file(file_name))

    @property
    def lightning_dir(self) -> str:
        """Storage path of the lightning engine."""
        return os.path.join(self.data_dir, "lightning")

    @property
    def seed_file(self) -> str:
        if self.lightning.seed_file is not None:
            return os.path.expanduser(self.lightning.seed_file)
        return os.path.join(self.lightning_dir, "seed")

    @property
    def database_path(self) -> str:
        return os.path.join(self.data_dir, f"{self.wallet_name}.db")
