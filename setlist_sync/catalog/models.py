"""
Canonical data models for songs and setlists.

This module defines the immutable dataclasses the rest of the engine
trusts. Remote JSON never flows past the normalizer; everything after
it works with these shapes.

Design Decisions:
    - All dataclasses are frozen; changes produce new instances through
      dataclasses.replace()
    - Identifiers are always strings, even when the remote uses integers
    - Optional text fields are None when absent, never ""
    - `settled` is excluded from equality: a provisional song and the
      confirmed copy of the same song compare equal field by field
    - Models are independent of the wire format; to_payload() produces
      the dict the remote expects

Usage:
    from setlist_sync.catalog.models import Song, Setlist, SetlistItem

    song = Song(id="1", title="Wonderwall", artist="Oasis")
    setlist = Setlist(id="7", name="Friday night", items=(
        SetlistItem(id="1", song_id="1", position=0),
    ))
"""

from dataclasses import dataclass, field, replace
from typing import Any, Iterable


@dataclass(frozen=True)
class Song:
    """
    Immutable representation of a reusable song record.

    Attributes:
        id: Opaque identifier. Often a small integer rendered as text,
            sometimes a generated surrogate.
            Example: "42"

        title: Song title. Required.
               Example: "Wonderwall"

        artist: Original performing artist, if known.
                Example: "Oasis"

        singer: Band member who sings it, if assigned.
                Example: "Sarah"

        key: Musical key the band plays it in.
             Example: "Em"

        tempo: Tempo as entered by the user (free text, usually BPM).
               Example: "87"

        notes: Free-form notes.

        settled: True once a read from the remote has confirmed the record.
                 Provisional and best-effort records are unsettled.
    """

    id: str
    title: str
    artist: str | None = None
    singer: str | None = None
    key: str | None = None
    tempo: str | None = None
    notes: str | None = None
    settled: bool = field(default=True, compare=False)

    @property
    def label(self) -> str:
        """Short human-readable description, e.g. 'Wonderwall - Oasis'."""
        return f"{self.title} - {self.artist}" if self.artist else self.title

    def same_title_and_artist(self, other: "Song") -> bool:
        """
        Duplicate-detection rule used when an identifier lookup fails.

        Titles must be equal. Artists must be both present and equal, or
        both absent. A present/absent mismatch never matches.
        """
        if self.title != other.title:
            return False
        if self.artist is None or other.artist is None:
            return self.artist is None and other.artist is None
        return self.artist == other.artist

    def to_payload(self) -> dict[str, Any]:
        """
        Convert to the dict sent to the remote.

        The remote stores rows in a spreadsheet and expects every column,
        so missing optionals are sent as empty strings. The sheet's tempo
        column is named "tempoBmp".
        """
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist or "",
            "singer": self.singer or "",
            "key": self.key or "",
            "tempoBmp": self.tempo or "",
            "notes": self.notes or "",
        }


@dataclass(frozen=True)
class SetlistItem:
    """
    One entry of a setlist, referencing a song.

    Attributes:
        id: Item identifier, drawn from one space shared by all setlists.
        song_id: Song.id this item plays.
        position: Zero-based position within the setlist.
        key_override: Key to use instead of the song's key, for this gig.
        singer_override: Singer to use instead of the song's singer.
        notes: Free-form notes for this item.
    """

    id: str
    song_id: str
    position: int
    key_override: str | None = None
    singer_override: str | None = None
    notes: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Convert to the dict sent to the remote (missing optionals as null)."""
        return {
            "id": self.id,
            "songId": self.song_id,
            "position": self.position,
            "keyOverride": self.key_override or None,
            "singerOverride": self.singer_override or None,
            "notes": self.notes or None,
        }


@dataclass(frozen=True)
class Setlist:
    """
    Ordered playlist for one gig.

    Attributes:
        id: Linking identifier. This is the value the remote uses to attach
            items to the setlist, which right after creation may differ from
            the id the client proposed. Lookups that miss by id fall back to
            the setlist name.
        name: Setlist name. Required.
        venue: Venue name.
        city: City of the venue.
        date: ISO date "YYYY-MM-DD".
        notes: Free-form notes.
        items: Items in position order, positions 0..n-1.
        row_id: The remote's primary row identifier when it differs from
                `id`. Diagnostic only.
        settled: True once a read from the remote has confirmed the record.
    """

    id: str
    name: str
    venue: str | None = None
    city: str | None = None
    date: str | None = None
    notes: str | None = None
    items: tuple[SetlistItem, ...] = ()
    row_id: str | None = field(default=None, compare=False)
    settled: bool = field(default=True, compare=False)

    @property
    def song_ids(self) -> tuple[str, ...]:
        """Song ids of the items, in position order."""
        return tuple(item.song_id for item in self.items)

    def with_items(self, items: Iterable[SetlistItem]) -> "Setlist":
        """Return a copy holding `items`, renumbered 0..n-1 in the given order."""
        return replace(self, items=resequence(items))

    def to_payload(self) -> dict[str, Any]:
        """
        Convert top-level fields to the dict sent to the remote.

        Items are never part of this payload; they are written through the
        item endpoint (append or whole-list sync).
        """
        return {
            "id": self.id,
            "name": self.name,
            "venue": self.venue or "",
            "city": self.city or "",
            "date": self.date or "",
            "notes": self.notes or "",
        }


def resequence(items: Iterable[SetlistItem]) -> tuple[SetlistItem, ...]:
    """
    Renumber items to positions 0..n-1 in iteration order.

    Items already at the right position are returned unchanged, so
    resequencing a sequential list is a no-op.
    """
    return tuple(
        item if item.position == index else replace(item, position=index)
        for index, item in enumerate(items)
    )
