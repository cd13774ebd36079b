"""
Response normalization: arbitrary remote JSON to canonical entities.

The remote is a workflow engine writing to a spreadsheet. Depending on how
a workflow ends it returns the same logical collection in several shapes,
spells the same field several ways, and sometimes answers a write with a
"workflow started" message instead of the committed row.

Decoding is done in two explicit steps:

    1. classify_shape() looks at the top-level structure and returns one
       ResponseShape variant. Each variant has exactly one extraction rule.
    2. Each extracted record goes through a per-field alias list and is
       coerced to a canonical dataclass.

Collection shapes, in priority order:
    WRAPPED             {"songs": [...]} / {"data": [...]} / {"result": [...]}
    NESTED_COLLECTIONS  [{"success": true, "setlists": [...]}, ...]
    NESTED_RECORDS      [{"success": true, "setlist": {...}}, ...]
    PLAIN_LIST          [{...}, {...}]
    INDEXED_OBJECT      {"0": {...}, "1": {...}}
    SINGLE_RECORD       {...} or {"setlist": {...}}
    EMPTY               null, {}, []
    UNKNOWN             a bare scalar; raises PayloadShapeError

Records that cannot be correlated (a setlist item without any song
reference) are dropped. Records without an identifier get a fresh
placeholder that is never reused.
"""

import json
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from setlist_sync.catalog.models import Setlist, SetlistItem, Song, resequence
from setlist_sync.core.exceptions import PayloadShapeError
from setlist_sync.core.logger import get_logger

logger = get_logger(__name__)


# Field aliases, most likely spelling first
SONG_ID_ALIASES = ("id", "songId", "song_id")
SONG_TITLE_ALIASES = ("title", "Title", "songTitle")
SONG_ARTIST_ALIASES = ("artist", "Artist")
SONG_SINGER_ALIASES = ("singer", "Singer")
SONG_KEY_ALIASES = ("key", "Key")
SONG_TEMPO_ALIASES = ("tempo", "tempoBpm", "tempoBmp", "bpm")
NOTES_ALIASES = ("notes", "Notes")

ITEM_ID_ALIASES = ("id", "itemId", "item_id")
ITEM_SONG_REF_ALIASES = ("songId", "song_id", "songID", "SongId")
ITEM_POSITION_ALIASES = ("position", "Position")
ITEM_KEY_OVERRIDE_ALIASES = ("keyOverride", "key_override")
ITEM_SINGER_OVERRIDE_ALIASES = ("singerOverride", "singer_override")

SETLIST_LINK_ALIASES = ("setlistId", "setlist_id", "setlistID", "SetlistId")
SETLIST_NAME_ALIASES = ("name", "Name", "setlistName")
SETLIST_VENUE_ALIASES = ("venue", "Venue")
SETLIST_CITY_ALIASES = ("city", "City")
SETLIST_DATE_ALIASES = ("date", "Date")


class ResponseShape(Enum):
    """Top-level structure of a collection response."""
    EMPTY = "empty"
    WRAPPED = "wrapped"
    NESTED_COLLECTIONS = "nested_collections"
    NESTED_RECORDS = "nested_records"
    PLAIN_LIST = "plain_list"
    INDEXED_OBJECT = "indexed_object"
    SINGLE_RECORD = "single_record"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CollectionSpec:
    """
    How a collection of one entity kind is wrapped on the wire.

    Attributes:
        name: Entity kind, for log messages.
        wrapper_keys: Keys whose list value is the collection.
        singular_key: Key whose object value is one record.
        record_keys: Keys whose presence marks an object as a bare record.
    """
    name: str
    wrapper_keys: tuple[str, ...]
    singular_key: str
    record_keys: tuple[str, ...]


SONGS = CollectionSpec(
    name="songs",
    wrapper_keys=("songs", "data", "items", "result"),
    singular_key="song",
    record_keys=SONG_ID_ALIASES + SONG_TITLE_ALIASES,
)

# "items" is not a setlist wrapper: every setlist record has its own items
SETLISTS = CollectionSpec(
    name="setlists",
    wrapper_keys=("setlists", "data", "result"),
    singular_key="setlist",
    record_keys=SETLIST_LINK_ALIASES + ("id",) + SETLIST_NAME_ALIASES,
)


class ReplyKind(Enum):
    """What a write response means."""
    COMMITTED = "committed"
    ACCEPTED = "accepted"
    EMPTY = "empty"


@dataclass(frozen=True)
class WriteReply:
    """
    Classified write response.

    Attributes:
        kind: COMMITTED when `record` holds the written row, ACCEPTED when the
              remote queued the write, EMPTY when the body carries neither.
        record: Raw record dict for COMMITTED replies.
        message: The acceptance message for ACCEPTED replies.
    """
    kind: ReplyKind
    record: dict[str, Any] | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Shape classification
# ---------------------------------------------------------------------------

def classify_shape(payload: Any, collection: CollectionSpec) -> ResponseShape:
    """
    Classify the top-level structure of a collection response.

    Args:
        payload: Parsed JSON body.
        collection: Wrapping conventions for the expected entity kind.

    Returns:
        The ResponseShape variant. Never raises.
    """
    if payload is None:
        return ResponseShape.EMPTY

    if isinstance(payload, dict):
        if not payload:
            return ResponseShape.EMPTY
        if any(isinstance(payload.get(key), list) for key in collection.wrapper_keys):
            return ResponseShape.WRAPPED
        if _has_consecutive_index_keys(payload):
            return ResponseShape.INDEXED_OBJECT
        return ResponseShape.SINGLE_RECORD

    if isinstance(payload, list):
        if not payload:
            return ResponseShape.EMPTY
        dicts = [element for element in payload if isinstance(element, dict)]
        if any(
            isinstance(element.get(key), list)
            for element in dicts
            for key in collection.wrapper_keys
        ):
            return ResponseShape.NESTED_COLLECTIONS
        if dicts and isinstance(dicts[0].get(collection.singular_key), dict):
            return ResponseShape.NESTED_RECORDS
        return ResponseShape.PLAIN_LIST

    return ResponseShape.UNKNOWN


def extract_records(payload: Any, collection: CollectionSpec) -> list[Any]:
    """
    Pull the raw record list out of a collection response.

    Raises:
        PayloadShapeError: If the payload is a bare scalar.
    """
    shape = classify_shape(payload, collection)
    extractor = _EXTRACTORS.get(shape)
    if extractor is None:
        raise PayloadShapeError(
            f"Unrecognised {collection.name} response: expected an object or a list, "
            f"got {type(payload).__name__}",
            details={"shape": shape.value, "payload": repr(payload)[:200]}
        )

    records = extractor(payload, collection)
    logger.debug(f"Decoded {collection.name} response as {shape.value}: {len(records)} record(s)")
    return records


def _extract_empty(payload: Any, collection: CollectionSpec) -> list[Any]:
    return []


def _extract_wrapped(payload: dict, collection: CollectionSpec) -> list[Any]:
    for key in collection.wrapper_keys:
        if isinstance(payload.get(key), list):
            return list(payload[key])
    return []


def _extract_nested_collections(payload: list, collection: CollectionSpec) -> list[Any]:
    records: list[Any] = []
    for element in payload:
        if isinstance(element, dict):
            records.extend(_extract_wrapped(element, collection))
    return records


def _extract_nested_records(payload: list, collection: CollectionSpec) -> list[Any]:
    records = []
    for element in payload:
        if isinstance(element, dict) and isinstance(element.get(collection.singular_key), dict):
            records.append(element[collection.singular_key])
        else:
            records.append(element)
    return records


def _extract_plain_list(payload: list, collection: CollectionSpec) -> list[Any]:
    return list(payload)


def _extract_indexed_object(payload: dict, collection: CollectionSpec) -> list[Any]:
    return [payload[key] for key in sorted(payload, key=int)]


def _extract_single_record(payload: dict, collection: CollectionSpec) -> list[Any]:
    if isinstance(payload.get(collection.singular_key), dict):
        return [payload[collection.singular_key]]
    return [payload]


_EXTRACTORS: dict[ResponseShape, Callable[[Any, CollectionSpec], list[Any]]] = {
    ResponseShape.EMPTY: _extract_empty,
    ResponseShape.WRAPPED: _extract_wrapped,
    ResponseShape.NESTED_COLLECTIONS: _extract_nested_collections,
    ResponseShape.NESTED_RECORDS: _extract_nested_records,
    ResponseShape.PLAIN_LIST: _extract_plain_list,
    ResponseShape.INDEXED_OBJECT: _extract_indexed_object,
    ResponseShape.SINGLE_RECORD: _extract_single_record,
}


def _has_consecutive_index_keys(payload: dict) -> bool:
    """True if the keys are exactly "0".."n-1" (in any order)."""
    indices = []
    for key in payload:
        text = str(key)
        if not text.isdigit():
            return False
        indices.append(int(text))
    return sorted(indices) == list(range(len(indices)))


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

def normalize_songs(payload: Any) -> list[Song]:
    """
    Normalize any songs response into canonical Song records.

    Args:
        payload: Parsed JSON body of the songs read.

    Returns:
        Songs in remote order. Non-object elements are skipped.

    Raises:
        PayloadShapeError: If the payload is a bare scalar.
    """
    songs = []
    for record in extract_records(payload, SONGS):
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object song record: {record!r}")
            continue
        songs.append(song_from_record(record))
    return songs


def normalize_setlists(payload: Any) -> list[Setlist]:
    """
    Normalize any setlists response into canonical Setlist records.

    Each setlist's items are decoded, items without a resolvable song
    reference are dropped, and the remainder is ordered by position and
    renumbered 0..n-1.

    Raises:
        PayloadShapeError: If the payload is a bare scalar.
    """
    setlists = []
    for record in extract_records(payload, SETLISTS):
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object setlist record: {record!r}")
            continue
        setlists.append(setlist_from_record(record))
    return setlists


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def song_from_record(record: dict[str, Any], default_id: str | None = None) -> Song:
    """Build a Song from one raw record; `default_id` (or a placeholder) fills a missing id."""
    song_id = coerce_id(_first(record, SONG_ID_ALIASES)) or default_id or placeholder_id()
    return Song(
        id=song_id,
        title=text_or_none(_first(record, SONG_TITLE_ALIASES)) or "",
        artist=text_or_none(_first(record, SONG_ARTIST_ALIASES)),
        singer=text_or_none(_first(record, SONG_SINGER_ALIASES)),
        key=text_or_none(_first(record, SONG_KEY_ALIASES)),
        tempo=text_or_none(_first(record, SONG_TEMPO_ALIASES)),
        notes=text_or_none(_first(record, NOTES_ALIASES)),
    )


def setlist_from_record(record: dict[str, Any], default_id: str | None = None) -> Setlist:
    """
    Build a Setlist from one raw record.

    The linking identifier (setlistId and its spellings) wins over the row
    id, because that is the value items are attached to. The row id is kept
    in `row_id` when it differs. `default_id` (or a placeholder) fills a
    missing identifier.
    """
    link_id = coerce_id(_first(record, SETLIST_LINK_ALIASES))
    row_id = coerce_id(record.get("id"))
    setlist_id = link_id or row_id or default_id or placeholder_id()

    return Setlist(
        id=setlist_id,
        name=text_or_none(_first(record, SETLIST_NAME_ALIASES)) or "",
        venue=text_or_none(_first(record, SETLIST_VENUE_ALIASES)),
        city=text_or_none(_first(record, SETLIST_CITY_ALIASES)),
        date=normalize_date(_first(record, SETLIST_DATE_ALIASES)),
        notes=text_or_none(_first(record, NOTES_ALIASES)),
        items=items_from_records(record.get("items")),
        row_id=row_id if row_id and row_id != setlist_id else None,
    )


def items_from_records(raw_items: Any) -> tuple[SetlistItem, ...]:
    """
    Decode a setlist's raw items, dropping those without a song reference.

    Accepts a list, or a JSON string holding a list (spreadsheet cells).
    """
    if isinstance(raw_items, str):
        try:
            raw_items = json.loads(raw_items)
        except ValueError:
            logger.warning("Setlist items field is not valid JSON; treating as empty")
            return ()

    if not isinstance(raw_items, list):
        return ()

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        item = item_from_record(raw)
        if item is None:
            logger.warning(
                f"Skipping setlist item without songId. Item ID: {raw.get('id')}, "
                f"available fields: {sorted(raw)}"
            )
            continue
        items.append(item)

    items.sort(key=lambda item: item.position)
    return resequence(items)


def item_from_record(record: dict[str, Any]) -> SetlistItem | None:
    """Build a SetlistItem, or return None when no song reference resolves."""
    song_id = coerce_id(_first(record, ITEM_SONG_REF_ALIASES))
    if not song_id:
        return None

    return SetlistItem(
        id=coerce_id(_first(record, ITEM_ID_ALIASES)) or placeholder_id(),
        song_id=song_id,
        position=_position(_first(record, ITEM_POSITION_ALIASES)),
        key_override=text_or_none(_first(record, ITEM_KEY_OVERRIDE_ALIASES)),
        singer_override=text_or_none(_first(record, ITEM_SINGER_OVERRIDE_ALIASES)),
        notes=text_or_none(_first(record, NOTES_ALIASES)),
    )


# ---------------------------------------------------------------------------
# Write replies
# ---------------------------------------------------------------------------

def classify_write_reply(
    payload: Any,
    collection: CollectionSpec,
    acceptance_markers: tuple[str, ...] = ("started",)
) -> WriteReply:
    """
    Classify the response to a write.

    Accepted forms:
        {"song": {...}}                    COMMITTED
        {...}  (bare record)               COMMITTED
        [{...}, ...]  (first element)      COMMITTED (or whatever it holds)
        {"data"|"items"|"result": [{...}]} COMMITTED (first element)
        {"message": "Workflow was started"} ACCEPTED
        anything else                      EMPTY
    """
    if isinstance(payload, list):
        if not payload:
            return WriteReply(ReplyKind.EMPTY)
        return classify_write_reply(payload[0], collection, acceptance_markers)

    if isinstance(payload, str):
        if _is_acceptance(payload, acceptance_markers):
            return WriteReply(ReplyKind.ACCEPTED, message=payload)
        return WriteReply(ReplyKind.EMPTY)

    if not isinstance(payload, dict) or not payload:
        return WriteReply(ReplyKind.EMPTY)

    if isinstance(payload.get(collection.singular_key), dict):
        return WriteReply(ReplyKind.COMMITTED, record=payload[collection.singular_key])

    if any(_first(payload, (key,)) is not None for key in collection.record_keys):
        return WriteReply(ReplyKind.COMMITTED, record=payload)

    for key in ("data", "items", "result", collection.name):
        wrapped = payload.get(key)
        if isinstance(wrapped, list) and wrapped:
            return classify_write_reply(wrapped[0], collection, acceptance_markers)

    message = payload.get("message")
    if isinstance(message, str) and _is_acceptance(message, acceptance_markers):
        return WriteReply(ReplyKind.ACCEPTED, message=message)

    return WriteReply(ReplyKind.EMPTY)


def _is_acceptance(message: str, markers: tuple[str, ...]) -> bool:
    lowered = message.lower()
    return any(marker.lower() in lowered for marker in markers)


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def normalize_date(value: Any) -> str | None:
    """
    Normalize a date to "YYYY-MM-DD" where possible.

    "12/02/2025" -> "2025-12-02" (month/day/year)
    "2025-12-02" -> unchanged
    anything else -> unchanged, never raises
    """
    text = text_or_none(value)
    if text is None:
        return None

    if "/" in text:
        parts = [part.strip() for part in text.split("/")]
        if len(parts) != 3 or not all(part.isdigit() for part in parts):
            return text
        month, day, year = parts
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    return text


def coerce_id(value: Any) -> str | None:
    """Coerce a remote identifier to its string form; None if absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def placeholder_id() -> str:
    """Return a fresh identifier for a record the remote sent without one."""
    return str(uuid.uuid4())


def _first(record: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    """Return the first alias value that is neither missing, null nor ""."""
    for alias in aliases:
        value = record.get(alias)
        if value is not None and value != "":
            return value
    return None


def text_or_none(value: Any) -> str | None:
    """
    Optional text field rule: blank or missing becomes None.

    Numbers are rendered as text. Non-blank strings are kept as given.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return coerce_id(value)
    if isinstance(value, str):
        return value if value.strip() else None
    return None


def _position(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return 0
