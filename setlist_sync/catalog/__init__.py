"""
Canonical entities and the translation of remote JSON into them.

Modules:
    models: Song, SetlistItem, Setlist (frozen dataclasses)
    normalizer: Shape-tolerant decoding of remote responses
    identifiers: Provisional identifiers and identity matching
"""

from setlist_sync.catalog.models import Setlist, SetlistItem, Song, resequence
from setlist_sync.catalog.normalizer import (
    ResponseShape,
    ReplyKind,
    WriteReply,
    classify_shape,
    classify_write_reply,
    normalize_date,
    normalize_setlists,
    normalize_songs,
)
from setlist_sync.catalog.identifiers import (
    find_setlist,
    find_song,
    next_identifier,
    next_item_id,
    next_setlist_id,
    next_song_id,
    remap_song_reference,
)

__all__ = [
    "Song",
    "SetlistItem",
    "Setlist",
    "resequence",
    "ResponseShape",
    "ReplyKind",
    "WriteReply",
    "classify_shape",
    "classify_write_reply",
    "normalize_date",
    "normalize_songs",
    "normalize_setlists",
    "next_identifier",
    "next_song_id",
    "next_setlist_id",
    "next_item_id",
    "find_song",
    "find_setlist",
    "remap_song_reference",
]
