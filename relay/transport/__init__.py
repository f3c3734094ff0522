"""Messaging transport abstractions and the transport loader."""

from __future__ import annotations

import importlib

from .base import EventNotFoundError, Transport, TransportError, send_notice
from .memory import InMemoryTransport


def load_transport(path: str) -> Transport:
    """Instantiate the transport named by a ``module:factory`` import path."""

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Transport path '{path}' must look like 'module:factory'")
    factory = getattr(importlib.import_module(module_name), attr)
    transport = factory()
    if not isinstance(transport, Transport):
        raise TypeError(f"'{path}' did not return a Transport instance")
    return transport


__all__ = [
    "EventNotFoundError",
    "InMemoryTransport",
    "Transport",
    "TransportError",
    "load_transport",
    "send_notice",
]
