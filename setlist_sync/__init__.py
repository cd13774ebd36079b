"""
setlist-sync: Optimistic song and setlist management on top of n8n webhooks.

The remote is a set of workflow webhooks writing to a spreadsheet. It may
answer a write with the committed row or only with "Workflow was started",
returns the same collection in several JSON shapes, and may link a new
setlist's items under an id different from the one the client proposed.
This package keeps a responsive local working copy on top of it.

Architecture:
    A write flows through the layers like this:

    state/ (SetlistStore)
        - Propose provisional ids and apply the change locally
        - Keep unsaved item edits in a pending overlay per setlist
    remote/ (RemoteGateway, ConfirmationMachine)
        - Send exactly one request per operation
        - If the remote only accepted the write, poll until it is visible
    catalog/ (normalizer, models, identifiers)
        - Decode whatever shape the remote returned into canonical entities
        - Match confirmed records back to what was proposed
    state/ again
        - Merge the confirmed and refreshed collections into the working copy

Modules:
    core/       - Configuration, logging, exceptions
    catalog/    - Canonical models, response normalizer, identifiers
    remote/     - HTTP transport, gateway, write confirmation
    state/      - Local store, merge policy, read-only queries
    cli.py      - Command-line interface

Usage:
    Command Line:
        setlist songs --search wonder
        setlist add-song "Wonderwall" --artist Oasis
        setlist add-to 7 12

    Python API:
        from setlist_sync import load_config, HttpTransport, RemoteGateway, SetlistStore

        config = load_config()
        async with HttpTransport(config.network.timeout) as transport:
            store = SetlistStore(RemoteGateway(config.endpoints, transport))
            await store.load()
            await store.add_song("Wonderwall", artist="Oasis")
"""

__version__ = "0.1.0"

from setlist_sync.catalog import Setlist, SetlistItem, Song
from setlist_sync.core import (
    ConfigurationError,
    NotFoundLocally,
    PayloadShapeError,
    SetlistSyncError,
    TransportError,
    load_config,
    setup_logging,
)
from setlist_sync.remote import ConfirmationPolicy, HttpTransport, RemoteGateway, WriteMode
from setlist_sync.state import SetlistStore, StoreEvent

__all__ = [
    "__version__",
    "Song",
    "SetlistItem",
    "Setlist",
    "SetlistSyncError",
    "ConfigurationError",
    "TransportError",
    "PayloadShapeError",
    "NotFoundLocally",
    "load_config",
    "setup_logging",
    "ConfirmationPolicy",
    "HttpTransport",
    "RemoteGateway",
    "WriteMode",
    "SetlistStore",
    "StoreEvent",
]
