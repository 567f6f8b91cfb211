"""
Application logger configuration.

Every module logs through the "trust_ledger" logger (or a child of it).
"""

import logging
from trust_backend.app.core.config import settings

LOG_NAME = "trust_ledger"

# Log format with ISO-like timestamp including milliseconds
LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(funcName)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging() -> logging.Logger:
    """
    Attach a console handler to the application logger.

    Safe to call more than once (e.g. app reloads in tests): the handler is
    only added the first time.
    """
    logger = logging.getLogger(LOG_NAME)
    logger.setLevel(settings.log_level.upper())

    if not any(getattr(h, "_trust_ledger_handler", False) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        console_handler._trust_ledger_handler = True
        logger.addHandler(console_handler)

    # Avoid duplicate logs through the root logger
    logger.propagate = False
    return logger
