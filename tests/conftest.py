"""Test configuration and fixtures"""

import asyncio
import copy

import pytest

from setlist_sync.core.config import EndpointConfig
from setlist_sync.core.exceptions import TransportError
from setlist_sync.remote.confirmation import ConfirmationPolicy, RetryPolicy
from setlist_sync.remote.gateway import RemoteGateway
from setlist_sync.state.store import SetlistStore


BASE_URL = "https://n8n.test/webhook"

ENDPOINTS = EndpointConfig(
    get_songs=f"{BASE_URL}/get-songs",
    save_song=f"{BASE_URL}/save-song",
    get_setlists=f"{BASE_URL}/get-setlists",
    save_setlist=f"{BASE_URL}/save-setlist",
    save_setlist_item=f"{BASE_URL}/save-setlist-item",
    delete_setlist=f"{BASE_URL}/delete-setlist",
)

ACCEPTED = {"message": "Workflow was started"}


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class ScriptedTransport:
    """Transport returning queued bodies (or raising queued errors) in order"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def request(self, method, url, payload=None):
        self.calls.append((method, url, copy.deepcopy(payload)))
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)


class FakeRemote:
    """
    In-memory stand-in for the n8n webhooks.

    Stores raw rows the way the spreadsheet does and answers requests
    the way the workflows do. With `async_writes` set, every write is
    answered with "Workflow was started" and only becomes visible after
    `visible_after` further reads.

    `failures` scripts errors per request in order; a None entry lets
    that request through. hold_writes() parks every write until
    release_writes(), so a test can act while a write is in flight.
    """

    def __init__(self):
        self.songs = []
        self.setlists = []
        self.calls = []
        self.async_writes = False
        self.visible_after = 1
        self.song_ids = None
        self.setlist_link_ids = None
        self.failures = []
        self.gate = None
        self._pending = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    # -- seeding helpers -----------------------------------------------------

    def add_song_row(self, song_id, title, artist=None, **fields):
        row = {"id": song_id, "title": title, "artist": artist or "", **fields}
        self.songs.append(row)
        return row

    def add_setlist_row(self, setlist_id, name, items=(), **fields):
        row = {"id": setlist_id, "name": name, **fields, "items": [
            {"id": item_id, "songId": song_id, "position": position}
            for position, (item_id, song_id) in enumerate(items)
        ]}
        self.setlists.append(row)
        return row

    def hold_writes(self):
        self.gate = asyncio.Event()

    def release_writes(self):
        self.gate.set()

    def writes(self, mode=None):
        return [
            payload for method, url, payload in self.calls
            if method == "POST" and (mode is None or payload["mode"] == mode)
        ]

    def reads(self):
        return [url for method, url, payload in self.calls if method == "GET"]

    # -- transport interface -------------------------------------------------

    async def request(self, method, url, payload=None):
        if method == "POST" and self.gate is not None:
            await self.gate.wait()
        self.calls.append((method, url, copy.deepcopy(payload)))
        failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise failure

        if method == "GET":
            self._tick()
            if url == ENDPOINTS.get_songs:
                return {"songs": copy.deepcopy(self.songs)}
            if url == ENDPOINTS.get_setlists:
                return copy.deepcopy(self.setlists)
            raise TransportError("HTTP error! status: 404", status=404, body="Not Found")

        apply = self._writer(url, copy.deepcopy(payload))
        if self.async_writes:
            self._pending.append([self.visible_after, apply])
            return dict(ACCEPTED)
        return apply()

    def flush(self):
        """Make every pending asynchronous write visible now"""
        for _, apply in self._pending:
            apply()
        self._pending = []

    def _tick(self):
        still_pending = []
        for entry in self._pending:
            entry[0] -= 1
            if entry[0] <= 0:
                entry[1]()
            else:
                still_pending.append(entry)
        self._pending = still_pending

    def _writer(self, url, payload):
        mode = payload["mode"]
        if url == ENDPOINTS.save_song:
            return lambda: self._write_song(mode, payload["song"])
        if url == ENDPOINTS.save_setlist:
            return lambda: self._write_setlist(mode, payload["setlist"])
        if url == ENDPOINTS.save_setlist_item:
            return lambda: self._write_items(mode, payload)
        if url == ENDPOINTS.delete_setlist:
            return lambda: self._delete_setlist(payload["setlist"]["id"])
        raise AssertionError(f"Unexpected write to {url}")

    def _write_song(self, mode, song):
        if mode == "delete":
            self.songs = [row for row in self.songs if row["id"] != song["id"]]
            for row in self.setlists:
                row["items"] = [item for item in row["items"] if item["songId"] != song["id"]]
            return {}
        if mode == "create":
            if self.song_ids is not None:
                song["id"] = next(self.song_ids)
            self.songs.append(song)
            return {"song": song}
        for index, row in enumerate(self.songs):
            if row["id"] == song["id"]:
                self.songs[index] = song
        return {"song": song}

    def _write_setlist(self, mode, setlist):
        if mode == "create":
            row = {**setlist, "items": []}
            if self.setlist_link_ids is not None:
                row["setlistId"] = next(self.setlist_link_ids)
            self.setlists.append(row)
            return {"setlist": row}
        row = self._setlist_row(setlist["id"])
        row.update(setlist)
        return {"setlist": row}

    def _write_items(self, mode, payload):
        row = self._setlist_row(payload["setlist"]["id"])
        if mode == "add_item":
            row["items"].append(payload["item"])
        else:
            row["items"] = payload["items"]
        return {"success": True}

    def _delete_setlist(self, setlist_id):
        self.setlists = [
            row for row in self.setlists
            if setlist_id not in (row["id"], row.get("setlistId"))
        ]
        return {}

    def _setlist_row(self, setlist_id):
        for row in self.setlists:
            if setlist_id in (row.get("setlistId"), row["id"]):
                return row
        raise TransportError("HTTP error! status: 404", status=404, body="Setlist not found")


@pytest.fixture
def endpoints():
    """Fully configured endpoint URLs"""
    return ENDPOINTS


@pytest.fixture
def sleep():
    """Recording sleep so confirmation runs take no real time"""
    return RecordingSleep()


@pytest.fixture
def remote():
    """In-memory remote with three songs and one setlist"""
    fake = FakeRemote()
    fake.add_song_row("1", "Sweet Child O' Mine", "Guns N' Roses", singer="John", key="D")
    fake.add_song_row("2", "Wonderwall", "Oasis", singer="Sarah", key="Em")
    fake.add_song_row("3", "Hotel California", "Eagles", singer="Mike", key="Bm")
    fake.add_setlist_row("1", "Friday night", items=[("1", "1"), ("2", "2")], venue="The Blue Note")
    return fake


@pytest.fixture
def policy():
    """Small confirmation budgets"""
    return ConfirmationPolicy(
        create=RetryPolicy(attempts=4, delay=1.5),
        update=RetryPolicy(attempts=2, delay=1.0),
    )


@pytest.fixture
def store(remote, policy, sleep):
    """Store wired to the in-memory remote (not loaded yet)"""
    return SetlistStore(RemoteGateway(ENDPOINTS, remote), policy, sleep=sleep)


def id_sequence(*ids):
    """Iterator of server-assigned ids for FakeRemote.song_ids / setlist_link_ids"""
    return iter(ids)
