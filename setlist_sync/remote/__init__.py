"""
Remote access: HTTP transport, typed gateway, write confirmation.
"""

from setlist_sync.remote.confirmation import (
    Confirmation,
    ConfirmationMachine,
    ConfirmationPolicy,
    ConfirmationState,
    RetryPolicy,
)
from setlist_sync.remote.gateway import RemoteGateway, WriteMode, WriteResult
from setlist_sync.remote.transport import HttpTransport, Transport

__all__ = [
    "Confirmation",
    "ConfirmationMachine",
    "ConfirmationPolicy",
    "ConfirmationState",
    "RetryPolicy",
    "RemoteGateway",
    "WriteMode",
    "WriteResult",
    "HttpTransport",
    "Transport",
]
