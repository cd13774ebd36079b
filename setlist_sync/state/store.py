"""
Local working copy of songs and setlists, with optimistic writes.

SetlistStore is the single state container callers talk to. Every remote
mutation follows the same sequence:

    1. Propose identifiers and apply the change locally (optimistic)
    2. Send one write through the gateway
    3. If the remote only accepted the write, confirm it by polling
    4. Fold the confirmed (or best-effort) entity into local state
    5. Refresh both collections, reusing one a confirmation poll fetched

If step 2 fails, the error propagates and that operation's own change is
undone: the proposal is removed, the deleted record and its items are put
back, or one setlist's items and overlay are restored. Changes other
operations made while the write was in flight stay. If a later read
fails, the optimistic change stays and the error propagates.

Setlist items have two views:
    confirmed  - the items as last read from (or written to) the remote
    pending    - an overlay of unsaved local edits (add, remove, reorder)

A refresh always replaces the confirmed view. While an overlay exists the
visible items keep showing the overlay and the refresh is only noted as
buffered. save_items() sends the overlay and drops it; cancel_items()
drops it and the confirmed view shows again.

Merge policy on refresh:
    - Remote records replace settled local ones
    - Unsettled local records the remote does not show yet (matched by id,
      then title/artist or name) are kept
    - Records deleted locally stay hidden until a read no longer has them
    - Updates and item writes no read has shown yet keep their submitted
      values, unsettled, until a read shows them (or load() or
      cancel_items() forgets them)

Same-setlist writes are not serialized. Two overlapping writes to one
setlist that both bypass the overlay can still lose an update.

Usage:
    store = SetlistStore(gateway, ConfirmationPolicy.from_config(config.confirmation))
    unsubscribe = store.subscribe(lambda event: print(event.kind, event.ids))
    await store.load()
    song = await store.add_song("Wonderwall", artist="Oasis")
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Sequence

from setlist_sync.catalog.identifiers import (
    find_setlist,
    find_song,
    next_item_id,
    next_setlist_id,
    next_song_id,
    remap_song_reference,
)
from setlist_sync.catalog.models import Setlist, SetlistItem, Song, resequence
from setlist_sync.catalog.normalizer import normalize_date, text_or_none
from setlist_sync.core.exceptions import NotFoundLocally, SetlistSyncError
from setlist_sync.core.logger import get_logger
from setlist_sync.remote.confirmation import (
    Confirmation,
    ConfirmationMachine,
    ConfirmationPolicy,
    RetryPolicy,
    Sleep,
    item_added,
    items_synced,
    setlist_created,
    setlist_updated,
    song_created,
    song_updated,
)
from setlist_sync.remote.gateway import RemoteGateway, WriteMode
from setlist_sync.state import queries

logger = get_logger(__name__)

SONG_FIELDS = frozenset({"title", "artist", "singer", "key", "tempo", "notes"})
SETLIST_FIELDS = frozenset({"name", "venue", "city", "date", "notes"})
ITEM_FIELDS = frozenset({"key_override", "singer_override", "notes"})


@dataclass(frozen=True)
class StoreEvent:
    """
    Change notification.

    Attributes:
        kind: "songs", "setlists", "items", "pending" or "selection".
        ids: Affected song or setlist ids; empty for whole-collection changes.
    """
    kind: str
    ids: tuple[str, ...] = ()


Listener = Callable[[StoreEvent], Any]


@dataclass(frozen=True)
class _ItemWrite:
    """
    Items sent for one setlist that no read has shown yet.

    `added` is set for a single-item append; otherwise `items` was sent
    as the whole list.
    """
    items: tuple[SetlistItem, ...]
    added: SetlistItem | None = None

    def shown_by(self, row: Setlist) -> bool:
        if self.added is not None:
            match = item_added(row, self.added)
        else:
            match = items_synced(row, self.items)
        return match([row]) is not None

    def remap(self, old_id: str, new_id: str) -> "_ItemWrite":
        added = self.added
        if added is not None and added.song_id == old_id:
            added = replace(added, song_id=new_id)
        return _ItemWrite(remap_song_reference(self.items, old_id, new_id), added)


@dataclass(frozen=True)
class _RemovedSetlist:
    """Local state delete_setlist took out, for putting back."""
    setlist: Setlist
    index: int
    overlay: tuple[SetlistItem, ...] | None
    buffered: bool
    selected: bool
    update: Setlist | None
    item_write: _ItemWrite | None


class SetlistStore:
    """
    In-memory working copy backed by a RemoteGateway.

    Args:
        gateway: Remote operations.
        confirmation_policy: Polling budgets for accepted writes.
        sleep: Delay function handed to every confirmation run.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        confirmation_policy: ConfirmationPolicy | None = None,
        sleep: Sleep = asyncio.sleep
    ) -> None:
        self.gateway = gateway
        self.policy = confirmation_policy or ConfirmationPolicy()
        self.sleep = sleep

        self._songs: list[Song] = []
        self._setlists: list[Setlist] = []
        self._overlays: dict[str, tuple[SetlistItem, ...]] = {}
        self._buffered: set[str] = set()
        self._deleted_songs: set[str] = set()
        self._deleted_setlists: set[str] = set()
        # Provisional ids replaced by a remote id: song id -> new id, setlist id -> name
        self._retired_songs: dict[str, str] = {}
        self._retired_setlists: dict[str, str] = {}
        # Submitted writes no read has shown yet, by song or setlist id
        self._unconfirmed_songs: dict[str, Song] = {}
        self._unconfirmed_setlists: dict[str, Setlist] = {}
        self._unconfirmed_items: dict[str, _ItemWrite] = {}
        self._selected: str | None = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            A function that removes the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, *ids: str) -> None:
        event = StoreEvent(kind, tuple(ids))
        for listener in list(self._listeners):
            listener(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def songs(self) -> tuple[Song, ...]:
        return tuple(self._songs)

    @property
    def setlists(self) -> tuple[Setlist, ...]:
        """Setlists as displayed: pending overlays replace confirmed items."""
        return tuple(self._visible(setlist) for setlist in self._setlists)

    def get_song(self, song_id: str) -> Song:
        """Raises NotFoundLocally if the id (or its settled replacement) is unknown."""
        return self._song(song_id)

    def get_setlist(self, setlist_id: str) -> Setlist:
        """
        Visible view of a setlist.

        The id is resolved directly, then through the name of a setlist
        that was created under that id and settled under another.
        """
        return self._visible(self._setlist(setlist_id))

    def confirmed_items(self, setlist_id: str) -> tuple[SetlistItem, ...]:
        return self._setlist(setlist_id).items

    def visible_items(self, setlist_id: str) -> tuple[SetlistItem, ...]:
        return self._visible_items(self._setlist(setlist_id))

    def has_pending(self, setlist_id: str) -> bool:
        return self._setlist(setlist_id).id in self._overlays

    def has_buffered_refresh(self, setlist_id: str) -> bool:
        """True if a refresh arrived while the setlist had a pending overlay."""
        return self._setlist(setlist_id).id in self._buffered

    def has_unconfirmed_items(self, setlist_id: str) -> bool:
        """True while an item write to the setlist has not shown up in a read."""
        return self._setlist(setlist_id).id in self._unconfirmed_items

    def is_settled(self, kind: str, entity_id: str) -> bool:
        """Whether a song or setlist has been confirmed by a remote read."""
        if kind == "song":
            return self._song(entity_id).settled
        if kind == "setlist":
            return self._setlist(entity_id).settled
        raise ValueError(f"kind must be 'song' or 'setlist', got {kind!r}")

    def is_song_in_setlist(self, setlist_id: str, song_id: str) -> bool:
        setlist = self._setlist(setlist_id)
        return queries.is_song_in_setlist(
            song_id, setlist.items, self._overlays.get(setlist.id)
        )

    def available_songs(self, setlist_id: str, query: str = "") -> list[Song]:
        """Songs not in the setlist's visible items."""
        return queries.available_songs(
            self._songs, self._visible_items(self._setlist(setlist_id)), query
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Discard all local state and read both collections."""
        self._songs = []
        self._setlists = []
        self._overlays.clear()
        self._buffered.clear()
        self._deleted_songs.clear()
        self._deleted_setlists.clear()
        self._retired_songs.clear()
        self._retired_setlists.clear()
        self._unconfirmed_songs.clear()
        self._unconfirmed_setlists.clear()
        self._unconfirmed_items.clear()
        self._selected = None

        await self.refresh()
        logger.info(f"Loaded {len(self._songs)} song(s) and {len(self._setlists)} setlist(s)")

    async def refresh(self) -> None:
        """Read both collections and merge them into local state."""
        await self._refresh_after_write()

    async def _refresh_after_write(
        self,
        songs: list[Song] | None = None,
        setlists: list[Setlist] | None = None
    ) -> None:
        if songs is None:
            songs = await self.gateway.fetch_songs()
        if setlists is None:
            setlists = await self.gateway.fetch_setlists()

        # Setlists first: the song tombstones still filter their items
        self._merge_setlists(setlists)
        self._merge_songs(songs)
        self._emit("songs")
        self._emit("setlists")
        self._emit("items")

    def _merge_songs(self, remote: list[Song]) -> None:
        self._deleted_songs &= {song.id for song in remote}
        remote = [
            self._with_unconfirmed_update(song)
            for song in remote
            if song.id not in self._deleted_songs
        ]

        kept = []
        for local in self._songs:
            if local.settled:
                continue
            match = find_song(remote, local, allow_fallback=True)
            if match is None:
                kept.append(local)
            elif match.id != local.id:
                self._retire_song(local.id, match.id)

        self._songs = remote + kept

    def _merge_setlists(self, remote: list[Setlist]) -> None:
        self._deleted_setlists &= {setlist.id for setlist in remote}
        remote = [
            self._without_deleted_songs(self._with_unconfirmed_writes(setlist))
            for setlist in remote
            if setlist.id not in self._deleted_setlists
        ]

        kept = []
        for local in self._setlists:
            if local.settled:
                continue
            match = find_setlist(remote, local, allow_fallback=True)
            if match is None:
                kept.append(local)
            elif match.id != local.id:
                self._retire_setlist(local, match)

        self._setlists = remote + kept

        live = {setlist.id for setlist in self._setlists}
        for setlist_id in list(self._overlays):
            if setlist_id not in live:
                logger.warning(f"Setlist {setlist_id} disappeared; discarding its unsaved changes")
                del self._overlays[setlist_id]
        self._buffered = set(self._overlays)
        if self._selected is not None and self._selected not in live:
            self._selected = None
            self._emit("selection")

    # ------------------------------------------------------------------
    # Songs
    # ------------------------------------------------------------------

    async def add_song(
        self,
        title: str,
        artist: str | None = None,
        singer: str | None = None,
        key: str | None = None,
        tempo: str | None = None,
        notes: str | None = None
    ) -> Song:
        """
        Create a song.

        Returns:
            The song as finally known: the remote record when confirmed,
            otherwise the submitted song marked unsettled.

        Raises:
            ValueError: If the title is blank.
            ConfigurationError, TransportError: From the gateway.
        """
        if not title or not title.strip():
            raise ValueError("Song title is required")

        proposal = Song(
            id=next_song_id(self._songs),
            title=title.strip(),
            artist=text_or_none(artist),
            singer=text_or_none(singer),
            key=text_or_none(key),
            tempo=text_or_none(tempo),
            notes=text_or_none(notes),
            settled=False,
        )

        self._songs.append(proposal)
        self._emit("songs", proposal.id)

        try:
            result = await self.gateway.save_song(proposal, WriteMode.CREATE)
        except SetlistSyncError:
            self._songs = [song for song in self._songs if song is not proposal]
            self._emit("songs", proposal.id)
            raise

        saved, snapshot = result.entity, None
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_songs, song_created(proposal), self.policy.create,
                "song", proposal.id, proposal.label,
            )
            if confirmation.confirmed:
                saved, snapshot = confirmation.entity, confirmation.snapshot

        self._put_song(saved, replacing=proposal.id)
        await self._refresh_after_write(songs=snapshot)
        return self._find_song(saved.id) or saved

    async def update_song(self, song_id: str, **changes: Any) -> Song:
        """
        Change song fields (title, artist, singer, key, tempo, notes).

        Raises:
            NotFoundLocally: If the song is unknown.
            ValueError: On an unknown field or a blank title.
        """
        current = self._song(song_id)
        _check_fields(changes, SONG_FIELDS, "song")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValueError("Song title is required")

        proposal = replace(current, **_blank_to_none(changes), settled=False)
        previous = self._unconfirmed_songs.get(current.id)

        self._put_song(proposal)
        self._unconfirmed_songs[proposal.id] = proposal
        self._emit("songs", proposal.id)

        try:
            result = await self.gateway.save_song(proposal, WriteMode.UPDATE)
        except SetlistSyncError:
            _unmark(self._unconfirmed_songs, proposal.id, proposal, previous)
            if self._find_song(proposal.id) is proposal:
                self._put_song(current)
            self._emit("songs", proposal.id)
            raise

        saved, snapshot = result.entity, None
        confirmed = not result.accepted
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_songs, song_updated(proposal), self.policy.update,
                "song", proposal.id, proposal.label,
            )
            confirmed = confirmation.confirmed
            if confirmed:
                saved, snapshot = confirmation.entity, confirmation.snapshot
        if confirmed:
            _unmark(self._unconfirmed_songs, proposal.id, proposal)

        self._put_song(saved, replacing=proposal.id)
        await self._refresh_after_write(songs=snapshot)
        return self._find_song(saved.id) or saved

    async def delete_song(self, song_id: str) -> None:
        """
        Delete a song and every setlist item that references it.

        Items are removed from confirmed and pending views alike and the
        remaining positions are renumbered.
        """
        song = self._song(song_id)
        index = self._songs.index(song)

        del self._songs[index]
        self._deleted_songs.add(song.id)
        removed = self._cascade_song_removal(song.id)
        self._emit("songs", song.id)
        if removed:
            self._emit("items", *_setlist_ids(removed))

        try:
            await self.gateway.delete_song(song.id)
        except SetlistSyncError:
            self._undo_song_removal(song, index, removed)
            raise

        logger.info(f"Deleted song '{song.label}'")
        await self._refresh_after_write()

    # ------------------------------------------------------------------
    # Setlists
    # ------------------------------------------------------------------

    async def add_setlist(
        self,
        name: str,
        venue: str | None = None,
        city: str | None = None,
        date: str | None = None,
        notes: str | None = None
    ) -> Setlist:
        """Create an empty setlist. See add_song for the return value."""
        if not name or not name.strip():
            raise ValueError("Setlist name is required")

        proposal = Setlist(
            id=next_setlist_id(self._setlists),
            name=name.strip(),
            venue=text_or_none(venue),
            city=text_or_none(city),
            date=normalize_date(date),
            notes=text_or_none(notes),
            settled=False,
        )

        self._setlists.append(proposal)
        self._emit("setlists", proposal.id)

        try:
            result = await self.gateway.save_setlist(proposal, WriteMode.CREATE)
        except SetlistSyncError:
            self._undo_setlist_create(proposal)
            raise

        saved, snapshot = result.entity, None
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_setlists, setlist_created(proposal), self.policy.create,
                "setlist", proposal.id, proposal.name,
            )
            if confirmation.confirmed:
                saved, snapshot = confirmation.entity, confirmation.snapshot

        self._put_setlist(saved, replacing=proposal.id)
        await self._refresh_after_write(setlists=snapshot)
        return self._visible(self._find_setlist(saved.id) or saved)

    async def update_setlist(self, setlist_id: str, **changes: Any) -> Setlist:
        """Change top-level setlist fields (name, venue, city, date, notes)."""
        current = self._setlist(setlist_id)
        _check_fields(changes, SETLIST_FIELDS, "setlist")
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValueError("Setlist name is required")
        if "date" in changes:
            changes["date"] = normalize_date(changes["date"])

        proposal = replace(current, **_blank_to_none(changes), settled=False)
        previous = self._unconfirmed_setlists.get(current.id)

        self._put_setlist(proposal)
        self._unconfirmed_setlists[proposal.id] = proposal
        self._emit("setlists", proposal.id)

        try:
            result = await self.gateway.save_setlist(proposal, WriteMode.UPDATE)
        except SetlistSyncError:
            _unmark(self._unconfirmed_setlists, proposal.id, proposal, previous)
            stored = self._find_setlist(proposal.id)
            if stored is not None and _top_level(stored) == _top_level(proposal):
                self._put_setlist(replace(stored, **_top_level(current), settled=current.settled))
            self._emit("setlists", proposal.id)
            raise

        saved, snapshot = result.entity, None
        confirmed = not result.accepted
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_setlists, setlist_updated(proposal), self.policy.update,
                "setlist", proposal.id, proposal.name,
            )
            confirmed = confirmation.confirmed
            if confirmed:
                saved, snapshot = confirmation.entity, confirmation.snapshot
        if confirmed:
            _unmark(self._unconfirmed_setlists, proposal.id, proposal)

        self._put_setlist(saved, replacing=proposal.id)
        await self._refresh_after_write(setlists=snapshot)
        return self._visible(self._find_setlist(saved.id) or saved)

    async def delete_setlist(self, setlist_id: str) -> None:
        setlist = self._setlist(setlist_id)
        removed = _RemovedSetlist(
            setlist=setlist,
            index=self._setlists.index(setlist),
            overlay=self._overlays.pop(setlist.id, None),
            buffered=setlist.id in self._buffered,
            selected=self._selected == setlist.id,
            update=self._unconfirmed_setlists.pop(setlist.id, None),
            item_write=self._unconfirmed_items.pop(setlist.id, None),
        )

        self._setlists = [s for s in self._setlists if s.id != setlist.id]
        self._deleted_setlists.add(setlist.id)
        self._buffered.discard(setlist.id)
        self._emit("setlists", setlist.id)
        if removed.selected:
            self._selected = None
            self._emit("selection")

        try:
            await self.gateway.delete_setlist(setlist.id)
        except SetlistSyncError:
            self._undo_setlist_removal(removed)
            raise

        logger.info(f"Deleted setlist '{setlist.name}'")
        await self._refresh_after_write()

    # ------------------------------------------------------------------
    # Items (remote)
    # ------------------------------------------------------------------

    async def add_item(
        self,
        setlist_id: str,
        song_id: str,
        key_override: str | None = None,
        singer_override: str | None = None,
        notes: str | None = None
    ) -> SetlistItem:
        """
        Append one song to a setlist and send it right away.

        A pending overlay on the setlist receives the item too, so a later
        save_items() does not remove it again.
        """
        setlist = self._setlist(setlist_id)
        song = self._song(song_id)

        item = SetlistItem(
            id=next_item_id(self._setlists, *self._overlays.values()),
            song_id=song.id,
            position=len(setlist.items),
            key_override=text_or_none(key_override),
            singer_override=text_or_none(singer_override),
            notes=text_or_none(notes),
        )
        write = _ItemWrite(resequence(setlist.items + (item,)), added=item)
        previous = self._unconfirmed_items.get(setlist.id)

        self._put_setlist(setlist.with_items(write.items))
        if setlist.id in self._overlays:
            self._overlays[setlist.id] = resequence(self._overlays[setlist.id] + (item,))
        self._unconfirmed_items[setlist.id] = write
        self._emit("items", setlist.id)

        try:
            result = await self.gateway.add_item(setlist.id, item)
        except SetlistSyncError:
            _unmark(self._unconfirmed_items, setlist.id, write, previous)
            stored = self._find_setlist(setlist.id)
            if stored is not None:
                self._put_setlist(stored.with_items(i for i in stored.items if i.id != item.id))
                overlay = self._overlays.get(stored.id)
                if overlay is not None:
                    self._overlays[stored.id] = resequence(i for i in overlay if i.id != item.id)
            self._emit("items", setlist.id)
            raise

        snapshot = None
        confirmed = not result.accepted
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_setlists, item_added(setlist, item), self.policy.create,
                "items", setlist.id, f"{setlist.name}: {song.label}",
            )
            snapshot = confirmation.snapshot
            confirmed = confirmation.confirmed
        if confirmed:
            _unmark(self._unconfirmed_items, setlist.id, write)

        await self._refresh_after_write(setlists=snapshot)
        return item

    async def save_items(self, setlist_id: str) -> tuple[SetlistItem, ...]:
        """
        Send the visible items (the overlay, if any) as the setlist's items.

        The overlay is dropped before the write. The sent items stay the
        confirmed view until a read shows them, or until cancel_items()
        when confirmation ran out of attempts.

        Returns:
            The setlist's visible items after the post-write refresh.
        """
        setlist = self._setlist(setlist_id)
        overlay = self._overlays.get(setlist.id)
        buffered = setlist.id in self._buffered
        items = resequence(self._visible_items(setlist))
        write = _ItemWrite(items)
        previous = self._unconfirmed_items.get(setlist.id)

        self._put_setlist(setlist.with_items(items))
        self._overlays.pop(setlist.id, None)
        self._buffered.discard(setlist.id)
        self._unconfirmed_items[setlist.id] = write
        self._emit("pending", setlist.id)
        self._emit("items", setlist.id)

        try:
            result = await self.gateway.sync_items(setlist.id, items)
        except SetlistSyncError:
            _unmark(self._unconfirmed_items, setlist.id, write, previous)
            stored = self._find_setlist(setlist.id)
            if stored is not None:
                if stored.items == items:
                    self._put_setlist(stored.with_items(setlist.items))
                if overlay is not None and stored.id not in self._overlays:
                    self._overlays[stored.id] = overlay
                    if buffered:
                        self._buffered.add(stored.id)
            self._emit("pending", setlist.id)
            self._emit("items", setlist.id)
            raise

        snapshot = None
        confirmed = not result.accepted
        if result.accepted:
            confirmation = await self._confirm(
                self.gateway.fetch_setlists, items_synced(setlist, items), self.policy.update,
                "items", setlist.id, setlist.name,
            )
            snapshot = confirmation.snapshot
            confirmed = confirmation.confirmed
        if confirmed:
            _unmark(self._unconfirmed_items, setlist.id, write)

        await self._refresh_after_write(setlists=snapshot)
        return self.visible_items(setlist.id)

    async def duplicate_items(self, from_setlist_id: str, to_setlist_id: str) -> tuple[SetlistItem, ...]:
        """
        Append copies of one setlist's items to another and save the target.

        Copies get fresh item ids and keep their overrides and notes.

        Raises:
            NotFoundLocally: If either setlist is unknown.
            ValueError: If source and target are the same setlist, or the
                        source has no items.
        """
        source = self._setlist(from_setlist_id)
        target = self._setlist(to_setlist_id)
        if source.id == target.id:
            raise ValueError("Source and target setlists must be different")

        source_items = self._visible_items(source)
        if not source_items:
            raise ValueError(f"Setlist '{source.name}' has no items to copy")

        base = list(self._visible_items(target))
        copies: list[SetlistItem] = []
        for item in source_items:
            new_id = next_item_id(self._setlists, *self._overlays.values(), base, copies)
            copies.append(replace(item, id=new_id))

        self._overlays[target.id] = resequence(base + copies)
        self._emit("pending", target.id)
        logger.info(f"Copying {len(copies)} item(s) from '{source.name}' to '{target.name}'")
        return await self.save_items(target.id)

    # ------------------------------------------------------------------
    # Items (pending overlay, no network)
    # ------------------------------------------------------------------

    def stage_add_item(
        self,
        setlist_id: str,
        song_id: str,
        key_override: str | None = None,
        singer_override: str | None = None,
        notes: str | None = None
    ) -> SetlistItem:
        setlist = self._setlist(setlist_id)
        song = self._song(song_id)
        items = list(self._visible_items(setlist))

        item = SetlistItem(
            id=next_item_id(self._setlists, *self._overlays.values()),
            song_id=song.id,
            position=len(items),
            key_override=text_or_none(key_override),
            singer_override=text_or_none(singer_override),
            notes=text_or_none(notes),
        )
        items.append(item)
        self._set_overlay(setlist, items)
        return item

    def stage_remove_item(self, setlist_id: str, item_id: str) -> None:
        setlist = self._setlist(setlist_id)
        items = list(self._visible_items(setlist))
        index = _index_of(items, item_id)
        del items[index]
        self._set_overlay(setlist, items)

    def stage_move_item(self, setlist_id: str, item_id: str, new_index: int) -> None:
        """Move an item to `new_index` (clamped to the list bounds)."""
        setlist = self._setlist(setlist_id)
        items = list(self._visible_items(setlist))
        item = items.pop(_index_of(items, item_id))
        new_index = max(0, min(new_index, len(items)))
        items.insert(new_index, item)
        self._set_overlay(setlist, items)

    def stage_reorder(self, setlist_id: str, item_ids: Sequence[str]) -> None:
        """
        Reorder the visible items to match `item_ids`.

        Raises:
            ValueError: If item_ids is not a permutation of the visible items.
        """
        setlist = self._setlist(setlist_id)
        by_id = {item.id: item for item in self._visible_items(setlist)}
        if len(item_ids) != len(by_id) or set(item_ids) != set(by_id):
            raise ValueError("Reorder must list every item of the setlist exactly once")
        self._set_overlay(setlist, [by_id[item_id] for item_id in item_ids])

    def stage_update_item(self, setlist_id: str, item_id: str, **changes: Any) -> SetlistItem:
        """Change key_override, singer_override or notes of a visible item."""
        setlist = self._setlist(setlist_id)
        _check_fields(changes, ITEM_FIELDS, "item")
        items = list(self._visible_items(setlist))
        index = _index_of(items, item_id)
        items[index] = replace(items[index], **_blank_to_none(changes))
        self._set_overlay(setlist, items)
        return items[index]

    def cancel_items(self, setlist_id: str) -> None:
        """
        Discard the pending overlay; the confirmed items show again.

        An item write no read has shown yet is forgotten as well, so the
        next refresh shows the remote's items.
        """
        setlist = self._setlist(setlist_id)
        forgotten = self._unconfirmed_items.pop(setlist.id, None) is not None
        if self._overlays.pop(setlist.id, None) is not None:
            self._buffered.discard(setlist.id)
            self._emit("pending", setlist.id)
            self._emit("items", setlist.id)
        elif forgotten:
            self._emit("items", setlist.id)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_setlist(self, setlist_id: str | None) -> None:
        """Make a setlist the target of stage_add_to_selected(); None clears."""
        self._selected = None if setlist_id is None else self._setlist(setlist_id).id
        self._emit("selection", *([self._selected] if self._selected else []))

    @property
    def selected_setlist(self) -> Setlist | None:
        if self._selected is None:
            return None
        setlist = self._find_setlist(self._selected)
        return self._visible(setlist) if setlist is not None else None

    def stage_add_to_selected(self, song_id: str) -> SetlistItem:
        """
        Stage a song onto the selected setlist's pending overlay.

        Raises:
            SetlistSyncError: If no setlist is selected.
        """
        if self._selected is None:
            raise SetlistSyncError("No setlist is selected")
        return self.stage_add_item(self._selected, song_id)

    def is_song_in_selected(self, song_id: str) -> bool:
        if self._selected is None:
            return False
        return self.is_song_in_setlist(self._selected, song_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _confirm(
        self,
        fetch: Callable[[], Any],
        match: Callable[[Any], Any],
        policy: RetryPolicy,
        kind: str,
        entity_id: str,
        label: str
    ) -> Confirmation:
        machine = ConfirmationMachine(
            fetch, match, policy,
            kind=kind, entity_id=entity_id, label=label, sleep=self.sleep,
        )
        return await machine.run()

    def _find_song(self, song_id: str) -> Song | None:
        song_id = self._retired_songs.get(song_id, song_id)
        for song in self._songs:
            if song.id == song_id:
                return song
        return None

    def _song(self, song_id: str) -> Song:
        song = self._find_song(song_id)
        if song is None:
            raise NotFoundLocally("song", song_id)
        return song

    def _find_setlist(self, setlist_id: str) -> Setlist | None:
        for setlist in self._setlists:
            if setlist.id == setlist_id:
                return setlist
        name = self._retired_setlists.get(setlist_id)
        if name is not None:
            for setlist in self._setlists:
                if setlist.name == name:
                    return setlist
        return None

    def _setlist(self, setlist_id: str) -> Setlist:
        setlist = self._find_setlist(setlist_id)
        if setlist is None:
            raise NotFoundLocally("setlist", setlist_id)
        return setlist

    def _visible_items(self, setlist: Setlist) -> tuple[SetlistItem, ...]:
        return self._overlays.get(setlist.id, setlist.items)

    def _visible(self, setlist: Setlist) -> Setlist:
        overlay = self._overlays.get(setlist.id)
        return setlist if overlay is None else replace(setlist, items=overlay)

    def _set_overlay(self, setlist: Setlist, items: Iterable[SetlistItem]) -> None:
        self._overlays[setlist.id] = resequence(items)
        self._emit("pending", setlist.id)
        self._emit("items", setlist.id)

    def _put_song(self, song: Song, replacing: str | None = None) -> None:
        """Store `song` in place of the song with id `replacing` (default: its own id)."""
        old_id = replacing or song.id
        if old_id != song.id:
            self._songs = [s for s in self._songs if s.id != song.id]
            self._retire_song(old_id, song.id)

        for index, existing in enumerate(self._songs):
            if existing.id in (old_id, song.id):
                self._songs[index] = song
                return
        self._songs.append(song)

    def _put_setlist(self, setlist: Setlist, replacing: str | None = None) -> None:
        old_id = replacing or setlist.id
        if old_id != setlist.id:
            self._setlists = [s for s in self._setlists if s.id != setlist.id]
            previous = self._find_setlist(old_id)
            if previous is not None:
                self._retire_setlist(previous, setlist)

        for index, existing in enumerate(self._setlists):
            if existing.id in (old_id, setlist.id):
                self._setlists[index] = setlist
                return
        self._setlists.append(setlist)

    def _retire_song(self, old_id: str, new_id: str) -> None:
        """Point everything that referenced a provisional song id at its remote id."""
        logger.debug(f"Song {old_id} settled as {new_id}")
        self._retired_songs[old_id] = new_id
        self._setlists = [
            replace(s, items=remap_song_reference(s.items, old_id, new_id))
            for s in self._setlists
        ]
        for setlist_id, items in self._overlays.items():
            self._overlays[setlist_id] = remap_song_reference(items, old_id, new_id)
        for setlist_id, write in self._unconfirmed_items.items():
            self._unconfirmed_items[setlist_id] = write.remap(old_id, new_id)
        if old_id in self._unconfirmed_songs:
            self._unconfirmed_songs[new_id] = replace(self._unconfirmed_songs.pop(old_id), id=new_id)

    def _retire_setlist(self, old: Setlist, new: Setlist) -> None:
        """Move overlay and selection from a provisional setlist id to the remote one."""
        logger.debug(f"Setlist '{old.name}' ({old.id}) is linked remotely as {new.id}")
        self._retired_setlists[old.id] = new.name
        for moved in (self._overlays, self._unconfirmed_setlists, self._unconfirmed_items):
            if old.id in moved:
                moved[new.id] = moved.pop(old.id)
        if old.id in self._buffered:
            self._buffered.discard(old.id)
            self._buffered.add(new.id)
        if self._selected == old.id:
            self._selected = new.id

    def _without_deleted_songs(self, setlist: Setlist) -> Setlist:
        if not any(item.song_id in self._deleted_songs for item in setlist.items):
            return setlist
        return setlist.with_items(
            item for item in setlist.items if item.song_id not in self._deleted_songs
        )

    def _with_unconfirmed_update(self, row: Song) -> Song:
        """The submitted update in place of a row that does not show it yet."""
        submitted = self._unconfirmed_songs.get(row.id)
        if submitted is None:
            return row
        if row == submitted:
            del self._unconfirmed_songs[row.id]
            return row
        return submitted

    def _with_unconfirmed_writes(self, row: Setlist) -> Setlist:
        """Submitted top-level fields and items in place of a row that does not show them yet."""
        submitted = self._unconfirmed_setlists.get(row.id)
        if submitted is not None:
            if _top_level(row) == _top_level(submitted):
                del self._unconfirmed_setlists[row.id]
            else:
                row = replace(row, **_top_level(submitted), settled=False)

        write = self._unconfirmed_items.get(row.id)
        if write is not None:
            if write.shown_by(row):
                del self._unconfirmed_items[row.id]
            else:
                row = replace(row, items=write.items, settled=False)
        return row

    def _cascade_song_removal(self, song_id: str) -> list[tuple[str, bool, list[tuple[int, SetlistItem]]]]:
        """
        Drop items referencing `song_id` from both views.

        Item writes still awaiting a read on the affected setlists are
        forgotten; the delete's refresh decides their items.

        Returns:
            (setlist id, pending view?, [(index, item), ...]) for every view
            that lost items.
        """
        removed = []
        for index, setlist in enumerate(self._setlists):
            dropped = _items_of_song(setlist.items, song_id)
            if dropped:
                self._setlists[index] = setlist.with_items(
                    item for item in setlist.items if item.song_id != song_id
                )
                removed.append((setlist.id, False, dropped))
        for setlist_id, items in self._overlays.items():
            dropped = _items_of_song(items, song_id)
            if dropped:
                self._overlays[setlist_id] = resequence(
                    item for item in items if item.song_id != song_id
                )
                removed.append((setlist_id, True, dropped))
        for setlist_id in _setlist_ids(removed):
            self._unconfirmed_items.pop(setlist_id, None)
        return removed

    def _undo_song_removal(
        self,
        song: Song,
        index: int,
        removed: list[tuple[str, bool, list[tuple[int, SetlistItem]]]]
    ) -> None:
        self._deleted_songs.discard(song.id)
        if self._find_song(song.id) is None:
            self._songs.insert(min(index, len(self._songs)), song)

        for setlist_id, pending, dropped in removed:
            if pending:
                overlay = self._overlays.get(setlist_id)
                if overlay is not None:
                    self._overlays[setlist_id] = _reinsert(overlay, dropped)
            else:
                setlist = self._find_setlist(setlist_id)
                if setlist is not None:
                    self._put_setlist(setlist.with_items(_reinsert(setlist.items, dropped)))

        self._emit("songs", song.id)
        if removed:
            self._emit("items", *_setlist_ids(removed))

    def _undo_setlist_create(self, proposal: Setlist) -> None:
        self._setlists = [
            s for s in self._setlists if s.settled or s.id != proposal.id
        ]
        self._overlays.pop(proposal.id, None)
        self._buffered.discard(proposal.id)
        self._unconfirmed_items.pop(proposal.id, None)
        self._emit("setlists", proposal.id)
        if self._selected == proposal.id:
            self._selected = None
            self._emit("selection")

    def _undo_setlist_removal(self, removed: _RemovedSetlist) -> None:
        setlist = removed.setlist
        self._deleted_setlists.discard(setlist.id)
        if not any(s.id == setlist.id for s in self._setlists):
            self._setlists.insert(min(removed.index, len(self._setlists)), setlist)

        if removed.overlay is not None and setlist.id not in self._overlays:
            self._overlays[setlist.id] = removed.overlay
            if removed.buffered:
                self._buffered.add(setlist.id)
        if removed.update is not None:
            self._unconfirmed_setlists.setdefault(setlist.id, removed.update)
        if removed.item_write is not None:
            self._unconfirmed_items.setdefault(setlist.id, removed.item_write)

        self._emit("setlists", setlist.id)
        if removed.overlay is not None:
            self._emit("pending", setlist.id)
        if removed.selected and self._selected is None:
            self._selected = setlist.id
            self._emit("selection", setlist.id)


def _unmark(marks: dict[str, Any], key: str, mark: Any, previous: Any = None) -> None:
    """Take `mark` off `key`, putting `previous` back, unless a newer write replaced it."""
    if marks.get(key) is not mark:
        return
    if previous is None:
        del marks[key]
    else:
        marks[key] = previous


def _top_level(setlist: Setlist) -> dict[str, Any]:
    return {name: getattr(setlist, name) for name in SETLIST_FIELDS}


def _items_of_song(items: Iterable[SetlistItem], song_id: str) -> list[tuple[int, SetlistItem]]:
    return [(index, item) for index, item in enumerate(items) if item.song_id == song_id]


def _reinsert(
    items: Iterable[SetlistItem],
    dropped: list[tuple[int, SetlistItem]]
) -> tuple[SetlistItem, ...]:
    """Put removed items back at their former indices, skipping any already present."""
    restored = list(items)
    present = {item.id for item in restored}
    for index, item in dropped:
        if item.id not in present:
            restored.insert(min(index, len(restored)), item)
    return resequence(restored)


def _setlist_ids(removed: Iterable[tuple[str, bool, Any]]) -> list[str]:
    return list(dict.fromkeys(setlist_id for setlist_id, _, _ in removed))


def _check_fields(changes: dict[str, Any], allowed: frozenset[str], kind: str) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown {kind} field(s): {', '.join(sorted(unknown))}")


def _blank_to_none(changes: dict[str, Any]) -> dict[str, Any]:
    """Strip required names; blank optionals become None, as a read returns them."""
    return {
        name: value.strip() if name in ("title", "name") else text_or_none(value)
        for name, value in changes.items()
    }


def _index_of(items: list[SetlistItem], item_id: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise NotFoundLocally("item", item_id)
