"""Test polling confirmation of accepted writes"""

import pytest

from conftest import RecordingSleep

from setlist_sync.catalog.models import Setlist, SetlistItem, Song
from setlist_sync.core.config import ConfirmationConfig
from setlist_sync.core.exceptions import TransportError
from setlist_sync.remote.confirmation import (
    ConfirmationMachine,
    ConfirmationPolicy,
    ConfirmationState,
    RetryPolicy,
    item_added,
    items_synced,
    setlist_created,
    setlist_updated,
    song_created,
    song_updated,
)


WONDERWALL = Song(id="4", title="Wonderwall", artist="Oasis")


class Reads:
    """Fetch function returning one scripted collection per call"""

    def __init__(self, *collections):
        self.collections = list(collections)
        self.count = 0

    async def __call__(self):
        self.count += 1
        result = self.collections.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def machine(reads, match, attempts=4, delay=1.5):
    sleep = RecordingSleep()
    return ConfirmationMachine(
        reads, match, RetryPolicy(attempts, delay),
        kind="song", entity_id="4", label="Wonderwall - Oasis", sleep=sleep,
    ), sleep


class TestConfirmationMachine:
    """Test the poll loop"""

    @pytest.mark.asyncio
    async def test_confirms_when_visible(self):
        confirmed = Song(id="4", title="Wonderwall", artist="Oasis")
        reads = Reads([], [Song(id="1", title="Creep")], [confirmed])
        confirmation_machine, sleep = machine(reads, song_created(WONDERWALL))

        result = await confirmation_machine.run()

        assert result.confirmed
        assert result.entity is confirmed
        assert result.attempts == 3
        assert result.snapshot == [confirmed]
        assert sleep.delays == [1.5, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_artistless_row_never_confirms(self):
        """A 'Wonderwall' without an artist is a different song"""
        reads = Reads(*[[Song(id="9", title="Wonderwall")] for _ in range(4)])
        confirmation_machine, sleep = machine(reads, song_created(WONDERWALL))

        result = await confirmation_machine.run()

        assert result.state is ConfirmationState.EXHAUSTED
        assert result.entity is None
        assert result.attempts == 4
        assert reads.count == 4
        assert len(sleep.delays) == 4

    @pytest.mark.asyncio
    async def test_exhaustion_is_reported(self, caplog):
        confirmation_machine, _ = machine(Reads([], []), song_created(WONDERWALL), attempts=2)
        await confirmation_machine.run()
        assert "not confirmed after 2 attempts" in caplog.text

    @pytest.mark.asyncio
    async def test_fetch_error_stops_polling(self):
        reads = Reads([], TransportError("HTTP error! status: 500", status=500), [WONDERWALL])
        confirmation_machine, _ = machine(reads, song_created(WONDERWALL))

        with pytest.raises(TransportError):
            await confirmation_machine.run()
        assert reads.count == 2

    @pytest.mark.asyncio
    async def test_runs_only_once(self):
        confirmation_machine, _ = machine(Reads([WONDERWALL]), song_created(WONDERWALL))
        await confirmation_machine.run()
        with pytest.raises(RuntimeError):
            await confirmation_machine.run()


class TestPolicies:
    """Test attempt budgets"""

    def test_defaults(self):
        policy = ConfirmationPolicy()
        assert (policy.create.attempts, policy.create.delay) == (6, 1.5)
        assert (policy.update.attempts, policy.update.delay) == (3, 1.0)

    def test_from_config(self):
        policy = ConfirmationPolicy.from_config(ConfirmationConfig(create_attempts=2, update_delay=0.5))
        assert policy.create == RetryPolicy(2, 1.5)
        assert policy.update == RetryPolicy(3, 0.5)

    @pytest.mark.parametrize("attempts, delay", [(0, 1.0), (3, -1.0)])
    def test_invalid_policy(self, attempts, delay):
        with pytest.raises(ValueError):
            RetryPolicy(attempts, delay)


class TestMatchers:
    """Test how written entities are recognised in a fresh read"""

    def test_song_updated_needs_new_values(self):
        proposal = Song(id="4", title="Wonderwall", artist="Oasis", key="F#m")
        match = song_updated(proposal)

        assert match([WONDERWALL]) is None
        assert match([Song(id="4", title="Wonderwall", artist="Oasis", key="F#m")]) is not None

    def test_song_updated_ignores_title_fallback(self):
        match = song_updated(WONDERWALL)
        assert match([Song(id="99", title="Wonderwall", artist="Oasis")]) is None

    def test_setlist_created_by_linking_name(self):
        """The remote may link the new setlist under another id"""
        proposal = Setlist(id="3", name="Wedding")
        found = setlist_created(proposal)([Setlist(id="31", name="Wedding")])
        assert found.id == "31"

    def test_setlist_updated_compares_top_level_fields(self):
        proposal = Setlist(id="3", name="Wedding", city="Boston")
        match = setlist_updated(proposal)
        assert match([Setlist(id="3", name="Wedding")]) is None
        assert match([Setlist(id="3", name="Wedding", city="Boston")]) is not None

    def test_items_synced_compares_song_order(self):
        setlist = Setlist(id="3", name="Wedding")
        items = [SetlistItem(id="1", song_id="2", position=0), SetlistItem(id="2", song_id="1", position=1)]
        match = items_synced(setlist, items)

        stale = setlist.with_items([SetlistItem(id="1", song_id="1", position=0),
                                    SetlistItem(id="2", song_id="2", position=1)])
        assert match([stale]) is None
        assert match([setlist.with_items(items)]) is not None

    def test_item_added_by_id_or_position(self):
        setlist = Setlist(id="3", name="Wedding")
        item = SetlistItem(id="9", song_id="5", position=1)
        match = item_added(setlist, item)

        before = setlist.with_items([SetlistItem(id="1", song_id="1", position=0)])
        renamed = setlist.with_items([SetlistItem(id="1", song_id="1", position=0),
                                      SetlistItem(id="77", song_id="5", position=1)])
        assert match([before]) is None
        assert match([renamed]) is not None
        assert match([setlist.with_items([item])]) is not None
        assert match([]) is None
