"""Test provisional identifiers and identity matching"""

import pytest

from setlist_sync.catalog.identifiers import (
    find_setlist,
    find_song,
    next_identifier,
    next_item_id,
    next_song_id,
    remap_song_reference,
)
from setlist_sync.catalog.models import Setlist, SetlistItem, Song


class TestNextIdentifier:
    """Test max-plus-one proposals"""

    @pytest.mark.parametrize("ids, expected", [
        ([], "1"),
        (["1", "2", "3"], "4"),
        (["1", "7", "a3f9"], "8"),
        (["10", "9"], "11"),
        (["abc", "3f2e-uuid"], "1"),
        ([" 5 "], "6"),
    ])
    def test_next_identifier(self, ids, expected):
        assert next_identifier(ids) == expected

    def test_next_song_id(self):
        songs = [Song(id="1", title="A"), Song(id="12", title="B")]
        assert next_song_id(songs) == "13"

    def test_item_ids_are_shared_across_setlists(self):
        setlists = [
            Setlist(id="1", name="A", items=(SetlistItem(id="3", song_id="1", position=0),)),
            Setlist(id="2", name="B", items=(SetlistItem(id="8", song_id="1", position=0),)),
        ]
        assert next_item_id(setlists) == "9"

    def test_item_ids_include_pending_overlays(self):
        setlists = [Setlist(id="1", name="A", items=(SetlistItem(id="3", song_id="1", position=0),))]
        staged = [SetlistItem(id="11", song_id="2", position=1)]
        assert next_item_id(setlists, staged) == "12"


class TestFindSong:
    """Test song identity matching"""

    SONGS = [
        Song(id="1", title="Wonderwall", artist="Oasis"),
        Song(id="2", title="Wonderwall"),
    ]

    def test_identifier_wins(self):
        proposal = Song(id="2", title="Something else")
        assert find_song(self.SONGS, proposal).id == "2"

    def test_fallback_by_title_and_artist(self):
        proposal = Song(id="99", title="Wonderwall", artist="Oasis")
        assert find_song(self.SONGS, proposal).id == "1"

    def test_fallback_respects_missing_artist(self):
        """A record without an artist never confirms a proposal with one"""
        songs = [Song(id="5", title="Wonderwall")]
        proposal = Song(id="99", title="Wonderwall", artist="Oasis")
        assert find_song(songs, proposal) is None

    def test_fallback_can_be_disabled(self):
        proposal = Song(id="99", title="Wonderwall", artist="Oasis")
        assert find_song(self.SONGS, proposal, allow_fallback=False) is None


class TestFindSetlist:
    """Test setlist identity matching"""

    def test_identifier_then_name(self):
        setlists = [Setlist(id="4", name="Friday night"), Setlist(id="9", name="Wedding")]
        assert find_setlist(setlists, Setlist(id="9", name="x")).name == "Wedding"
        assert find_setlist(setlists, Setlist(id="2", name="Friday night")).id == "4"
        assert find_setlist(setlists, Setlist(id="2", name="Nope")) is None

    def test_blank_name_never_matches(self):
        setlists = [Setlist(id="4", name="")]
        assert find_setlist(setlists, Setlist(id="2", name="")) is None


class TestRemapSongReference:
    """Test rewriting provisional song references"""

    def test_only_matching_items_change(self):
        items = (
            SetlistItem(id="1", song_id="4", position=0),
            SetlistItem(id="2", song_id="5", position=1),
        )
        remapped = remap_song_reference(items, "4", "40")
        assert [item.song_id for item in remapped] == ["40", "5"]
        assert remapped[1] is items[1]
