"""
Provisional identifiers and identity matching.

New songs, setlists and setlist items are given an identifier before the
remote has seen them: the highest integer identifier currently known plus
one. This is a convenience for optimistic display, not a uniqueness
guarantee. Two proposals made before either write is confirmed can
collide; the remote's next read is the authority.

Once the remote answers, records are matched back to the proposal by
identifier first and then, where allowed, by content:
    - songs: title and artist (see Song.same_title_and_artist)
    - setlists: name (the remote may link items under a different id)
"""

from dataclasses import replace
from typing import Iterable

from setlist_sync.catalog.models import Setlist, SetlistItem, Song


def next_identifier(ids: Iterable[str]) -> str:
    """
    Propose the next identifier for one entity kind.

    Args:
        ids: Known identifiers of that kind. Non-numeric ids (placeholders,
             surrogates) are ignored.

    Returns:
        str(max + 1), or "1" when no identifier parses as an integer.

    Example:
        >>> next_identifier(["1", "7", "a3f9"])
        '8'
    """
    highest = 0
    for value in ids:
        text = value.strip() if isinstance(value, str) else ""
        if text.isdigit():
            highest = max(highest, int(text))
    return str(highest + 1)


def next_song_id(songs: Iterable[Song]) -> str:
    return next_identifier(song.id for song in songs)


def next_setlist_id(setlists: Iterable[Setlist]) -> str:
    return next_identifier(setlist.id for setlist in setlists)


def next_item_id(
    setlists: Iterable[Setlist],
    *extra_items: Iterable[SetlistItem]
) -> str:
    """
    Propose a setlist item identifier.

    Item identifiers come from one space shared by every setlist, so the
    scan covers all items of all setlists plus any extra item collections
    (pending overlays, items proposed earlier in the same operation).
    """
    ids = [item.id for setlist in setlists for item in setlist.items]
    for items in extra_items:
        ids.extend(item.id for item in items)
    return next_identifier(ids)


def find_song(
    songs: Iterable[Song],
    proposal: Song,
    allow_fallback: bool = True
) -> Song | None:
    """
    Locate a proposed song in a collection.

    Args:
        songs: Collection to search (typically a fresh remote read).
        proposal: The song as the client submitted it.
        allow_fallback: When True, a song with the same title and artist
                        matches if no identifier matches.

    Returns:
        The matching song from `songs`, or None.
    """
    candidates = list(songs)
    for song in candidates:
        if song.id == proposal.id:
            return song

    if allow_fallback:
        for song in candidates:
            if song.same_title_and_artist(proposal):
                return song
    return None


def find_setlist(
    setlists: Iterable[Setlist],
    proposal: Setlist,
    allow_fallback: bool = True
) -> Setlist | None:
    """Locate a proposed setlist by identifier, then (optionally) by name."""
    candidates = list(setlists)
    for setlist in candidates:
        if setlist.id == proposal.id:
            return setlist

    if allow_fallback and proposal.name:
        for setlist in candidates:
            if setlist.name == proposal.name:
                return setlist
    return None


def remap_song_reference(
    items: Iterable[SetlistItem],
    old_id: str,
    new_id: str
) -> tuple[SetlistItem, ...]:
    """
    Point items referencing a provisional song id at its settled id.

    Positions are untouched; only song_id changes.
    """
    return tuple(
        replace(item, song_id=new_id) if item.song_id == old_id else item
        for item in items
    )
