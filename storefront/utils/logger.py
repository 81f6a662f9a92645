"""
Logging for the storefront engine.

Everything logs under the ``storefront`` logger tree to stdout. Lines follow
``component: key=value key=value``; ``fields`` renders that tail.

Level precedence: ``LOG_LEVEL`` environment variable, then ``logging.level``
from the YAML config (applied when the config loads), then INFO.
"""
import logging
import os
import sys
from typing import Optional

ROOT_LOGGER = "storefront"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def resolve_level(configured: Optional[str] = None) -> str:
    return (os.getenv("LOG_LEVEL") or configured or "INFO").upper()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach the stdout handler once and (re)apply the level."""
    root = logging.getLogger(ROOT_LOGGER)
    resolved = resolve_level(level)
    root.setLevel(resolved)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        root.addHandler(handler)
    for handler in root.handlers:
        handler.setLevel(resolved)
    # Our handler only; no duplicates through the root logger
    root.propagate = False
    return root


def fields(**values) -> str:
    """``fields(order_id="o1", total=960)`` -> ``order_id=o1 total=960``"""
    return " ".join(f"{key}={value}" for key, value in values.items())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


configure_logging()
