"""
Typed operations against the remote webhooks.

RemoteGateway turns canonical entities into request envelopes, performs
exactly one round trip per call through a Transport, and turns the reply
back into canonical entities.

Request envelopes:
    save_song       {"song": {...}, "mode": "create" | "update"}
    delete_song     {"song": {"id": ...}, "mode": "delete"}
    save_setlist    {"setlist": {top-level fields}, "mode": "create" | "update"}
    add_item        {"setlist": {"id": ...}, "item": {...}, "mode": "add_item"}
    sync_items      {"setlist": {"id": ...}, "items": [...], "mode": "sync_items"}
    delete_setlist  {"setlist": {"id": ...}, "mode": "delete_setlist"}

The write mode is always chosen by the caller. Whether an entity has an
id says nothing about whether it exists remotely, because provisional
ids are assigned before the first write.

Write replies:
    Every write returns a WriteResult. `accepted` is True when the remote
    only acknowledged the request ("Workflow was started"); the caller is
    then responsible for confirming it (see remote.confirmation).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable

from setlist_sync.catalog.models import Setlist, SetlistItem, Song, resequence
from setlist_sync.catalog.normalizer import (
    SETLISTS,
    SONGS,
    ReplyKind,
    WriteReply,
    classify_write_reply,
    normalize_setlists,
    normalize_songs,
    setlist_from_record,
    song_from_record,
)
from setlist_sync.core.config import EndpointConfig
from setlist_sync.core.exceptions import TransportError
from setlist_sync.core.logger import get_logger
from setlist_sync.remote.transport import Transport

logger = get_logger(__name__)

# Error text the remote returns when the setlist sheet has no rows yet
NO_DATA_MARKER = "No item to return"


class WriteMode(str, Enum):
    """The `mode` field of a write envelope."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADD_ITEM = "add_item"
    SYNC_ITEMS = "sync_items"
    DELETE_SETLIST = "delete_setlist"


SAVE_MODES = (WriteMode.CREATE, WriteMode.UPDATE)


@dataclass(frozen=True)
class WriteResult:
    """
    Outcome of one write.

    Attributes:
        entity: What the write produced, as far as the reply tells:
                - save_song / save_setlist: the saved Song / Setlist
                  (unsettled; a later read settles it)
                - add_item: the submitted SetlistItem
                - sync_items: the submitted items, renumbered 0..n-1
                - deletes: None
        accepted: True if the remote acknowledged the write without
                  returning committed data.
        reply: The classified reply, for diagnostics.
    """
    entity: Any
    accepted: bool
    reply: WriteReply


class RemoteGateway:
    """
    One method per remote operation; no retries, no local state.

    Args:
        endpoints: URL per operation category. A missing URL raises
                   ConfigurationError when its operation is called.
        transport: HTTP primitive (HttpTransport in production).
        acceptance_markers: Substrings that mark an asynchronous acceptance.

    Example:
        async with HttpTransport(timeout=30) as transport:
            gateway = RemoteGateway(config.endpoints, transport)
            songs = await gateway.fetch_songs()
    """

    def __init__(
        self,
        endpoints: EndpointConfig,
        transport: Transport,
        acceptance_markers: tuple[str, ...] = ("started",)
    ) -> None:
        self.endpoints = endpoints
        self.transport = transport
        self.acceptance_markers = acceptance_markers

    # -- songs ---------------------------------------------------------------

    async def fetch_songs(self) -> list[Song]:
        """
        Read the full song collection.

        Raises:
            ConfigurationError: If get_songs is not configured.
            TransportError: On HTTP failure or an unrecognised body.
        """
        url = self.endpoints.require("get_songs")
        body = await self.transport.request("GET", url)
        songs = normalize_songs(body)
        logger.debug(f"Fetched {len(songs)} song(s)")
        return songs

    async def save_song(self, song: Song, mode: WriteMode) -> WriteResult:
        """
        Create or update a song.

        Args:
            song: The song to write, including its (provisional) id.
            mode: WriteMode.CREATE or WriteMode.UPDATE.

        Returns:
            WriteResult whose entity is the committed song merged over the
            submitted one (remote values win where present), or the
            submitted song itself when the write was only accepted.

        Raises:
            ValueError: If mode is not a save mode.
            ConfigurationError: If save_song is not configured.
            TransportError: On HTTP failure, or when the reply carries
                            neither a record nor an acceptance message.
        """
        _check_mode(mode, SAVE_MODES, "save_song")
        url = self.endpoints.require("save_song")

        envelope = {"song": song.to_payload(), "mode": mode.value}
        logger.debug(f"Saving song in {mode.value} mode: {envelope}")
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SONGS, self.acceptance_markers)
        if reply.kind is ReplyKind.ACCEPTED:
            logger.info(f"Song '{song.label}' {mode.value} accepted; awaiting confirmation")
            return WriteResult(replace(song, settled=False), accepted=True, reply=reply)
        if reply.kind is ReplyKind.EMPTY:
            raise _invalid_reply(url, body)

        saved = _merge_song(song, reply.record)
        logger.info(f"Song '{saved.label}' {mode.value} successful")
        return WriteResult(saved, accepted=False, reply=reply)

    async def delete_song(self, song_id: str) -> WriteResult:
        """
        Delete a song.

        Posts to delete_song, or to save_song when delete_song is unset.
        """
        url = self.endpoints.require("delete_song")
        envelope = {"song": {"id": song_id}, "mode": WriteMode.DELETE.value}
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SONGS, self.acceptance_markers)
        logger.info(f"Song {song_id} deleted")
        return WriteResult(None, accepted=reply.kind is ReplyKind.ACCEPTED, reply=reply)

    # -- setlists ------------------------------------------------------------

    async def fetch_setlists(self) -> list[Setlist]:
        """
        Read all setlists with their items.

        Returns:
            Setlists with items in position order. An empty list when the
            remote reports that it has no rows yet.

        Raises:
            ConfigurationError: If get_setlists is not configured.
            TransportError: On any other HTTP failure or an unrecognised body.
        """
        url = self.endpoints.require("get_setlists")
        try:
            body = await self.transport.request("GET", url)
        except TransportError as e:
            if NO_DATA_MARKER in e.body or NO_DATA_MARKER in e.message:
                logger.info("No setlists found (empty database)")
                return []
            raise

        setlists = normalize_setlists(body)
        logger.debug(f"Fetched {len(setlists)} setlist(s)")
        return setlists

    async def save_setlist(self, setlist: Setlist, mode: WriteMode) -> WriteResult:
        """
        Create or update a setlist's top-level fields.

        Items are never sent here; use add_item or sync_items.

        Raises:
            ValueError: If mode is not a save mode.
            ConfigurationError: If save_setlist is not configured.
            TransportError: On HTTP failure, or when the reply carries
                            neither a record nor an acceptance message.
        """
        _check_mode(mode, SAVE_MODES, "save_setlist")
        url = self.endpoints.require("save_setlist")

        envelope = {"setlist": setlist.to_payload(), "mode": mode.value}
        logger.debug(f"Saving setlist in {mode.value} mode (top-level only): {envelope}")
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SETLISTS, self.acceptance_markers)
        if reply.kind is ReplyKind.ACCEPTED:
            logger.info(f"Setlist '{setlist.name}' {mode.value} accepted; awaiting confirmation")
            return WriteResult(replace(setlist, settled=False), accepted=True, reply=reply)
        if reply.kind is ReplyKind.EMPTY:
            raise _invalid_reply(url, body)

        saved = _merge_setlist(setlist, reply.record)
        logger.info(f"Setlist '{saved.name}' {mode.value} successful")
        return WriteResult(saved, accepted=False, reply=reply)

    async def add_item(self, setlist_id: str, item: SetlistItem) -> WriteResult:
        """Append one item to a setlist."""
        url = self.endpoints.require("save_setlist_item")
        envelope = {
            "setlist": {"id": setlist_id},
            "item": item.to_payload(),
            "mode": WriteMode.ADD_ITEM.value,
        }
        logger.debug(f"Adding item to setlist {setlist_id}: {envelope}")
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SETLISTS, self.acceptance_markers)
        return WriteResult(item, accepted=reply.kind is ReplyKind.ACCEPTED, reply=reply)

    async def sync_items(self, setlist_id: str, items: Iterable[SetlistItem]) -> WriteResult:
        """
        Replace a setlist's items with `items`.

        Positions are renumbered 0..n-1 in the given order before sending,
        whatever positions the caller supplied.
        """
        url = self.endpoints.require("save_setlist_item")
        sequenced = resequence(items)
        envelope = {
            "setlist": {"id": setlist_id},
            "items": [item.to_payload() for item in sequenced],
            "mode": WriteMode.SYNC_ITEMS.value,
        }
        logger.debug(f"Syncing {len(sequenced)} item(s) for setlist {setlist_id}")
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SETLISTS, self.acceptance_markers)
        return WriteResult(sequenced, accepted=reply.kind is ReplyKind.ACCEPTED, reply=reply)

    async def delete_setlist(self, setlist_id: str) -> WriteResult:
        url = self.endpoints.require("delete_setlist")
        envelope = {"setlist": {"id": setlist_id}, "mode": WriteMode.DELETE_SETLIST.value}
        body = await self.transport.request("POST", url, envelope)

        reply = classify_write_reply(body, SETLISTS, self.acceptance_markers)
        logger.info(f"Setlist {setlist_id} deleted")
        return WriteResult(None, accepted=reply.kind is ReplyKind.ACCEPTED, reply=reply)


def _check_mode(mode: WriteMode, allowed: tuple[WriteMode, ...], operation: str) -> None:
    if mode not in allowed:
        names = ", ".join(m.value for m in allowed)
        raise ValueError(f"{operation} accepts modes {names}; got {mode!r}")


def _invalid_reply(url: str, body: Any) -> TransportError:
    logger.error(f"Unexpected response format: {body!r}")
    return TransportError(
        "Invalid response format from server",
        details={"url": url, "body": repr(body)[:500]}
    )


def _merge_song(submitted: Song, record: dict[str, Any]) -> Song:
    """Committed record over the submitted song; missing remote values fall back."""
    remote = song_from_record(record, default_id=submitted.id)
    return Song(
        id=remote.id,
        title=remote.title or submitted.title,
        artist=remote.artist if remote.artist is not None else submitted.artist,
        singer=remote.singer if remote.singer is not None else submitted.singer,
        key=remote.key if remote.key is not None else submitted.key,
        tempo=remote.tempo if remote.tempo is not None else submitted.tempo,
        notes=remote.notes if remote.notes is not None else submitted.notes,
        settled=False,
    )


def _merge_setlist(submitted: Setlist, record: dict[str, Any]) -> Setlist:
    """Committed record over the submitted setlist; items kept unless returned."""
    remote = setlist_from_record(record, default_id=submitted.id)
    return Setlist(
        id=remote.id,
        name=remote.name or submitted.name,
        venue=remote.venue if remote.venue is not None else submitted.venue,
        city=remote.city if remote.city is not None else submitted.city,
        date=remote.date if remote.date is not None else submitted.date,
        notes=remote.notes if remote.notes is not None else submitted.notes,
        items=remote.items if "items" in record else submitted.items,
        row_id=remote.row_id,
        settled=False,
    )
