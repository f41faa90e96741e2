from __future__ import annotations

import logging
import os
import threading
from typing import Final

_PACKAGE_LOGGER: Final[str] = "inboxq"
_FORMAT: Final[str] = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
# googleapiclient warns about its file cache on every build() without oauth2client
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("googleapiclient.discovery_cache",)

_configure_lock = threading.Lock()
_configured = False


def _level_from_env() -> int:
    name = os.getenv("INBOXQ_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure() -> None:
    global _configured
    with _configure_lock:
        if _configured:
            return
        package_logger = logging.getLogger(_PACKAGE_LOGGER)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        package_logger.addHandler(handler)
        package_logger.setLevel(_level_from_env())
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)
        _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``inboxq`` hierarchy, configuring it on first use."""
    _configure()
    if name != _PACKAGE_LOGGER and not name.startswith(_PACKAGE_LOGGER + "."):
        name = f"{_PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
