from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import cast

LOG_FILE_NAME = "ulw.log"
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s]: %(message)s"


TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")


class WalletLogger(logging.Logger):
    def trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE_LEVEL):
            self._log(TRACE_LEVEL, msg, args, **kwargs)

    def trace_lazy(self, msg_call: Callable[[], str], *args, **kwargs):
        """
        Builds the message only if TRACE is enabled. Used for invoices and other
        long payloads.
        """
        if self.isEnabledFor(TRACE_LEVEL):
            self._log(TRACE_LEVEL, msg_call(), args, **kwargs)


logging.setLoggerClass(WalletLogger)


def getLogger(name: str) -> WalletLogger:
    return cast(WalletLogger, logging.getLogger(name))


def eval_log_level(level: str | None) -> int:
    """
    Maps a level name of the config to a logging level. TRACE is accepted,
    unknown names fall back to INFO.
    """

    if level is None:
        return DEFAULT_LOG_LEVEL

    level = level.strip().upper()
    if level == "TRACE":
        return TRACE_LEVEL

    res = logging.getLevelName(level)
    return res if isinstance(res, int) else DEFAULT_LOG_LEVEL


def set_logger(logfile: str | None, loglevel: str | None, data_dir: str) -> str:
    """
    Directs the logs of the wallet to logfile, by default 'ulw.log' in the data
    directory. Returns the path of the log file.
    """

    if logfile is None:
        logfile = os.path.join(data_dir, LOG_FILE_NAME)
    logfile = os.path.expanduser(logfile)

    if log_dir := os.path.dirname(logfile):
        os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        format=DEFAULT_LOG_FORMAT,
        handlers=[logging.FileHandler(logfile)],
    )
    logging.getLogger("ulw").setLevel(eval_log_level(loglevel))

    return logfile
