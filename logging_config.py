"""
Console logging for the bot runner.

Usage:
    import logging_config
    logging_config.setup()

Library code only calls ``get_logger(__name__)``; choosing sinks and levels
is left to the process entry point.
"""

import logging
import sys

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"

# Third-party loggers that flood the console at INFO
NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "web3.providers": logging.WARNING,
    "web3.manager": logging.WARNING,
    "aiohttp.access": logging.WARNING,
}


def _route_package_loggers():
    """Drop per-module handlers so package records reach the root handler once."""
    for name, logger in list(logging.root.manager.loggerDict.items()):
        if name.startswith("peg_arbitrage.") and isinstance(logger, logging.Logger):
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)


def setup(level=logging.INFO, stream=None):
    """
    Install one console handler on the root logger.

    Args:
        level: Level for the root, ``__main__`` and ``peg_arbitrage`` loggers
        stream: Output stream, stdout by default
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    console = logging.StreamHandler(stream or sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    root.addHandler(console)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    for name in ("__main__", "peg_arbitrage"):
        logging.getLogger(name).setLevel(level)
    _route_package_loggers()


def setup_minimal():
    """Warnings and errors only."""
    setup(level=logging.WARNING)


def setup_debug():
    """Everything, including raw RPC provider traffic."""
    setup(level=logging.DEBUG)
    logging.getLogger("web3.providers").setLevel(logging.DEBUG)
