from __future__ import annotations

import logging

_ROOT_NAME = "tripletreex"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger namespaced under ``tripletreex``."""

    if not name:
        return logging.getLogger(_ROOT_NAME)
    if name.startswith(_ROOT_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


__all__ = ["get_logger"]
