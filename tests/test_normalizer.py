"""Test response normalization"""

import pytest

from setlist_sync.catalog.models import SetlistItem
from setlist_sync.catalog.normalizer import (
    SETLISTS,
    SONGS,
    ReplyKind,
    ResponseShape,
    classify_shape,
    classify_write_reply,
    coerce_id,
    normalize_date,
    normalize_setlists,
    normalize_songs,
)
from setlist_sync.core.exceptions import PayloadShapeError, TransportError


SONG_ROWS = [
    {"id": 1, "title": "Wonderwall", "artist": "Oasis", "key": "Em"},
    {"id": "2", "title": "Hotel California", "artist": "Eagles", "tempoBpm": 75},
]


class TestShapeClassification:
    """Test top-level shape detection"""

    @pytest.mark.parametrize("payload", [None, {}, []])
    def test_empty_values(self, payload):
        """null, {} and [] are all empty"""
        assert classify_shape(payload, SONGS) is ResponseShape.EMPTY

    def test_wrapped_collection(self):
        assert classify_shape({"songs": SONG_ROWS}, SONGS) is ResponseShape.WRAPPED
        assert classify_shape({"data": SONG_ROWS}, SONGS) is ResponseShape.WRAPPED

    def test_items_is_not_a_setlist_wrapper(self):
        """A bare setlist record has its own items list"""
        record = {"id": "1", "name": "Gig", "items": []}
        assert classify_shape(record, SETLISTS) is ResponseShape.SINGLE_RECORD

    def test_nested_shapes(self):
        assert classify_shape(
            [{"success": True, "setlists": [{"id": "1"}]}], SETLISTS
        ) is ResponseShape.NESTED_COLLECTIONS
        assert classify_shape(
            [{"success": True, "setlist": {"id": "1"}}], SETLISTS
        ) is ResponseShape.NESTED_RECORDS

    def test_indexed_object_needs_consecutive_keys(self):
        assert classify_shape({"0": {}, "1": {}}, SONGS) is ResponseShape.INDEXED_OBJECT
        assert classify_shape({"1": {}, "2": {}}, SONGS) is ResponseShape.SINGLE_RECORD

    @pytest.mark.parametrize("payload", ["text", 42, 4.2, True])
    def test_scalars_are_unknown(self, payload):
        assert classify_shape(payload, SONGS) is ResponseShape.UNKNOWN

    def test_scalar_payload_raises(self):
        """Unknown shapes fail explicitly as a transport problem"""
        with pytest.raises(PayloadShapeError) as exc_info:
            normalize_songs("Workflow was started")
        assert isinstance(exc_info.value, TransportError)


class TestShapeInvariance:
    """The same logical collection decodes identically from every shape"""

    @pytest.mark.parametrize("payload", [
        {"songs": SONG_ROWS},
        {"result": SONG_ROWS},
        SONG_ROWS,
        [{"success": True, "songs": SONG_ROWS}],
        {"0": SONG_ROWS[0], "1": SONG_ROWS[1]},
        {"1": SONG_ROWS[1], "0": SONG_ROWS[0]},
        [{"song": SONG_ROWS[0]}, {"song": SONG_ROWS[1]}],
    ])
    def test_song_shapes(self, payload):
        songs = normalize_songs(payload)

        assert [song.id for song in songs] == ["1", "2"]
        assert songs[0].title == "Wonderwall"
        assert songs[0].key == "Em"
        assert songs[1].tempo == "75"
        assert songs[1].artist == "Eagles"

    def test_single_record(self):
        songs = normalize_songs({"song": SONG_ROWS[0]})
        assert len(songs) == 1
        assert songs[0].id == "1"

    def test_non_object_elements_are_skipped(self):
        songs = normalize_songs([SONG_ROWS[0], "garbage", 7])
        assert [song.id for song in songs] == ["1"]


class TestSongFields:
    """Test per-field aliasing and coercion"""

    def test_missing_id_gets_unique_placeholder(self):
        first = normalize_songs([{"title": "A"}])[0]
        second = normalize_songs([{"title": "A"}])[0]
        assert first.id and second.id
        assert first.id != second.id

    def test_empty_strings_become_none(self):
        song = normalize_songs([{"id": "1", "title": "A", "artist": "", "notes": "  "}])[0]
        assert song.artist is None
        assert song.notes is None

    @pytest.mark.parametrize("alias", ["tempo", "tempoBpm", "tempoBmp", "bpm"])
    def test_tempo_aliases(self, alias):
        song = normalize_songs([{"id": "1", "title": "A", alias: "120"}])[0]
        assert song.tempo == "120"

    def test_normalized_songs_are_settled(self):
        assert normalize_songs(SONG_ROWS)[0].settled

    @pytest.mark.parametrize("value, expected", [
        (42, "42"),
        (42.0, "42"),
        (" 7 ", "7"),
        ("", None),
        (None, None),
        (True, None),
    ])
    def test_coerce_id(self, value, expected):
        assert coerce_id(value) == expected


class TestSetlists:
    """Test setlist and item decoding"""

    def test_item_song_reference_aliases(self):
        payload = [{"id": "1", "name": "Gig", "items": [
            {"id": "10", "songId": "1", "position": 0},
            {"id": "11", "song_id": "2", "position": 1},
            {"id": "12", "songID": "3", "position": 2},
            {"id": "13", "SongId": 4, "position": 3},
        ]}]
        setlist = normalize_setlists(payload)[0]
        assert setlist.song_ids == ("1", "2", "3", "4")

    def test_unresolvable_items_are_dropped(self):
        """Items without any song reference disappear without an error"""
        payload = [{"id": "1", "name": "Gig", "items": [
            {"id": "10", "songId": "1", "position": 0},
            {"id": "11", "position": 1},
            {"id": "12", "songId": "", "position": 2},
            {"id": "13", "songId": "3", "position": 3},
        ]}]
        setlist = normalize_setlists(payload)[0]

        assert len(setlist.items) == 2
        assert [item.position for item in setlist.items] == [0, 1]
        assert setlist.song_ids == ("1", "3")

    def test_items_sorted_and_renumbered(self):
        payload = {"setlists": [{"id": "1", "name": "Gig", "items": [
            {"id": "a", "songId": "2", "position": 5},
            {"id": "b", "songId": "1", "position": "2"},
        ]}]}
        setlist = normalize_setlists(payload)[0]
        assert setlist.items == (
            SetlistItem(id="b", song_id="1", position=0),
            SetlistItem(id="a", song_id="2", position=1),
        )

    def test_items_as_json_string(self):
        payload = [{"id": "1", "name": "Gig", "items": '[{"id": "1", "songId": "9", "position": 0}]'}]
        assert normalize_setlists(payload)[0].song_ids == ("9",)

    def test_linking_id_wins_over_row_id(self):
        setlist = normalize_setlists([{"id": 17, "setlistId": "5", "name": "Gig"}])[0]
        assert setlist.id == "5"
        assert setlist.row_id == "17"

    @pytest.mark.parametrize("alias", ["setlistId", "setlist_id", "setlistID", "SetlistId"])
    def test_linking_id_aliases(self, alias):
        setlist = normalize_setlists([{"id": "1", alias: "9", "name": "Gig"}])[0]
        assert setlist.id == "9"

    def test_nested_record_list(self):
        payload = [{"success": True, "setlist": {"id": "1", "name": "Gig", "date": "12/02/2025"}}]
        setlists = normalize_setlists(payload)
        assert len(setlists) == 1
        assert setlists[0].date == "2025-12-02"

    def test_empty_setlist_collection(self):
        assert normalize_setlists([]) == []
        assert normalize_setlists(None) == []


class TestDates:
    """Test date normalization"""

    @pytest.mark.parametrize("value, expected", [
        ("12/02/2025", "2025-12-02"),
        ("1/5/2024", "2024-01-05"),
        ("2025-12-02", "2025-12-02"),
        ("not-a-date", "not-a-date"),
        ("12/xx/2025", "12/xx/2025"),
        ("", None),
        (None, None),
    ])
    def test_normalize_date(self, value, expected):
        assert normalize_date(value) == expected


class TestWriteReplies:
    """Test write reply classification"""

    def test_wrapped_record(self):
        reply = classify_write_reply({"song": {"id": "42", "title": "A"}}, SONGS)
        assert reply.kind is ReplyKind.COMMITTED
        assert reply.record["id"] == "42"

    def test_bare_record_and_first_array_element(self):
        assert classify_write_reply({"id": "1", "title": "A"}, SONGS).kind is ReplyKind.COMMITTED
        reply = classify_write_reply([{"id": "1", "name": "Gig"}, {"id": "2"}], SETLISTS)
        assert reply.kind is ReplyKind.COMMITTED
        assert reply.record["name"] == "Gig"

    @pytest.mark.parametrize("key", ["data", "items", "result"])
    def test_list_wrappers(self, key):
        reply = classify_write_reply({key: [{"id": "3", "title": "A"}]}, SONGS)
        assert reply.kind is ReplyKind.COMMITTED
        assert reply.record["id"] == "3"

    def test_acceptance_message(self):
        reply = classify_write_reply({"message": "Workflow was STARTED"}, SONGS)
        assert reply.kind is ReplyKind.ACCEPTED
        assert classify_write_reply([{"message": "Workflow was started"}], SONGS).kind is ReplyKind.ACCEPTED

    def test_custom_markers(self):
        reply = classify_write_reply({"message": "queued"}, SONGS, acceptance_markers=("queued",))
        assert reply.kind is ReplyKind.ACCEPTED

    @pytest.mark.parametrize("payload", [{}, [], None, {"success": True}, {"message": "done"}])
    def test_empty_replies(self, payload):
        assert classify_write_reply(payload, SONGS).kind is ReplyKind.EMPTY
