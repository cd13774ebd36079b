"""Test canonical data models"""

import pytest
from dataclasses import FrozenInstanceError, replace

from setlist_sync.catalog.models import Setlist, SetlistItem, Song, resequence


class TestSong:
    """Test Song dataclass"""

    def test_song_is_immutable(self):
        song = Song(id="1", title="Wonderwall")
        with pytest.raises(FrozenInstanceError):
            song.title = "Other"

    def test_label(self):
        assert Song(id="1", title="Wonderwall", artist="Oasis").label == "Wonderwall - Oasis"
        assert Song(id="1", title="Wonderwall").label == "Wonderwall"

    def test_settled_flag_ignored_by_equality(self):
        """A provisional copy equals the confirmed copy field by field"""
        song = Song(id="1", title="Wonderwall", artist="Oasis")
        assert replace(song, settled=False) == song

    @pytest.mark.parametrize("artist, other_artist, expected", [
        ("Oasis", "Oasis", True),
        (None, None, True),
        ("Oasis", None, False),
        (None, "Oasis", False),
        ("Oasis", "Blur", False),
    ])
    def test_same_title_and_artist(self, artist, other_artist, expected):
        """A present/absent artist mismatch never matches"""
        song = Song(id="1", title="Wonderwall", artist=artist)
        other = Song(id="99", title="Wonderwall", artist=other_artist)
        assert song.same_title_and_artist(other) is expected

    def test_different_titles_never_match(self):
        assert not Song(id="1", title="A").same_title_and_artist(Song(id="1", title="B"))

    def test_to_payload_sends_every_column(self):
        payload = Song(id="3", title="Hotel California", tempo="75").to_payload()
        assert payload == {
            "id": "3",
            "title": "Hotel California",
            "artist": "",
            "singer": "",
            "key": "",
            "tempoBmp": "75",
            "notes": "",
        }


class TestSetlist:
    """Test Setlist and SetlistItem"""

    def test_item_payload_uses_null_for_missing_overrides(self):
        payload = SetlistItem(id="4", song_id="2", position=1, key_override="E").to_payload()
        assert payload == {
            "id": "4",
            "songId": "2",
            "position": 1,
            "keyOverride": "E",
            "singerOverride": None,
            "notes": None,
        }

    def test_setlist_payload_excludes_items(self):
        setlist = Setlist(
            id="7", name="Friday night", venue="The Blue Note",
            items=(SetlistItem(id="1", song_id="1", position=0),)
        )
        payload = setlist.to_payload()
        assert "items" not in payload
        assert payload["venue"] == "The Blue Note"
        assert payload["city"] == ""

    def test_row_id_ignored_by_equality(self):
        assert Setlist(id="7", name="Gig", row_id="12") == Setlist(id="7", name="Gig")

    def test_with_items_renumbers(self):
        setlist = Setlist(id="7", name="Gig").with_items([
            SetlistItem(id="b", song_id="2", position=4),
            SetlistItem(id="a", song_id="1", position=0),
        ])
        assert setlist.song_ids == ("2", "1")
        assert [item.position for item in setlist.items] == [0, 1]


class TestResequence:
    """Test position renumbering"""

    def test_resequence_gaps(self):
        items = [
            SetlistItem(id="1", song_id="1", position=3),
            SetlistItem(id="2", song_id="2", position=9),
        ]
        assert [item.position for item in resequence(items)] == [0, 1]

    def test_resequence_is_idempotent(self):
        items = resequence([
            SetlistItem(id="1", song_id="1", position=5),
            SetlistItem(id="2", song_id="2", position=5),
        ])
        again = resequence(items)
        assert again == items
        assert all(a is b for a, b in zip(again, items))

    def test_resequence_empty(self):
        assert resequence([]) == ()
