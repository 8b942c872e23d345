"""Transport registry – resolves a transport name to a Transport class."""

from __future__ import annotations

from typing import Type

from togomq.adapters.base import Transport

_REGISTRY: dict = {}


def _lazy_register() -> None:
    global _REGISTRY
    if _REGISTRY:
        return
    from togomq.adapters.grpc import GrpcTransport
    from togomq.adapters.mock import MockTransport

    _REGISTRY = {
        "grpc": GrpcTransport,
        "mock": MockTransport,
    }


def get_transport_class(name: str) -> Type[Transport]:
    """Return the Transport class registered under *name*."""
    _lazy_register()
    try:
        return _REGISTRY[name.lower()]
    except KeyError:
        supported = ", ".join(sorted(_REGISTRY))
        raise ValueError(
            f"Unknown transport '{name}'. Supported: {supported}"
        )
