"""
Read-only views over songs and setlist items.

Pure functions; nothing here touches the store or the network.
"""

from typing import Iterable

from setlist_sync.catalog.models import SetlistItem, Song


def search_songs(
    songs: Iterable[Song],
    query: str = "",
    key: str | None = None,
    singer: str | None = None
) -> list[Song]:
    """
    Filter songs the way the song list does.

    Args:
        songs: Songs to filter, order is preserved.
        query: Case-insensitive substring of title, artist or singer.
               Blank matches everything.
        key: Exact key, or None for any.
        singer: Exact singer, or None for any.
    """
    needle = query.strip().lower()
    results = []
    for song in songs:
        if needle and not any(
            needle in (value or "").lower()
            for value in (song.title, song.artist, song.singer)
        ):
            continue
        if key is not None and song.key != key:
            continue
        if singer is not None and song.singer != singer:
            continue
        results.append(song)
    return results


def distinct_keys(songs: Iterable[Song]) -> list[str]:
    """Sorted keys in use, for filter choices."""
    return sorted({song.key for song in songs if song.key})


def distinct_singers(songs: Iterable[Song]) -> list[str]:
    """Sorted singers in use, for filter choices."""
    return sorted({song.singer for song in songs if song.singer})


def available_songs(
    songs: Iterable[Song],
    items: Iterable[SetlistItem],
    query: str = ""
) -> list[Song]:
    """Songs not yet in `items`, optionally filtered by title/artist substring."""
    used = {item.song_id for item in items}
    needle = query.strip().lower()
    return [
        song for song in songs
        if song.id not in used
        and (
            not needle
            or needle in song.title.lower()
            or needle in (song.artist or "").lower()
        )
    ]


def is_song_in_setlist(
    song_id: str,
    confirmed: Iterable[SetlistItem],
    pending: Iterable[SetlistItem] | None = None
) -> bool:
    """True if either the confirmed items or the pending overlay reference the song."""
    if any(item.song_id == song_id for item in confirmed):
        return True
    return pending is not None and any(item.song_id == song_id for item in pending)


def effective_key(item: SetlistItem, song: Song | None) -> str | None:
    """Key to play an item in: its override, else the song's key."""
    if item.key_override:
        return item.key_override
    return song.key if song is not None else None


def effective_singer(item: SetlistItem, song: Song | None) -> str | None:
    if item.singer_override:
        return item.singer_override
    return song.singer if song is not None else None
