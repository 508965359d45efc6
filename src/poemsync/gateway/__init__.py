"""Gateways to the remote record store."""

from .base import (
    ChangeTokenExpiredError,
    GatewayError,
    PushOutcome,
    RecordNotFoundError,
    RemoteGateway,
    RemoteUnavailableError,
    TransportError,
)
from .http import HttpRemoteGateway
from .memory import FileRemoteGateway, InMemoryRemoteGateway

__all__ = [
    "ChangeTokenExpiredError",
    "GatewayError",
    "PushOutcome",
    "RecordNotFoundError",
    "RemoteGateway",
    "RemoteUnavailableError",
    "TransportError",
    "HttpRemoteGateway",
    "FileRemoteGateway",
    "InMemoryRemoteGateway",
]
