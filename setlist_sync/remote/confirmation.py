"""
Confirmation of writes the remote accepted asynchronously.

When a write is answered with "Workflow was started" instead of the
committed row, the write is not yet visible. ConfirmationMachine polls the
matching read operation until a matcher finds the entity or the attempt
budget runs out:

    SUBMITTED --run()--> CONFIRMING --match--> CONFIRMED
                             |
                             +--attempts exhausted--> EXHAUSTED

Each attempt waits `delay` seconds, fetches, then matches. There is no
backoff and no overall deadline beyond attempts x delay. A fetch failure
ends the run by propagating the error; optimistic state is left alone by
the caller.

EXHAUSTED is not an error. The caller keeps a best-effort entity built
from what it submitted and marks it unsettled; the event is logged to the
unconfirmed writes report.

This module is the only place in setlist_sync where anything is retried.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from setlist_sync.catalog.identifiers import find_setlist, find_song
from setlist_sync.catalog.models import Setlist, SetlistItem, Song
from setlist_sync.core.config import ConfirmationConfig
from setlist_sync.core.logger import get_logger, log_unconfirmed_write

logger = get_logger(__name__)

T = TypeVar("T")
C = TypeVar("C")

Sleep = Callable[[float], Awaitable[Any]]


class ConfirmationState(Enum):
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-delay polling budget.

    Attributes:
        attempts: Number of polls.
        delay: Seconds to wait before each poll.
    """
    attempts: int
    delay: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {self.attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must not be negative, got {self.delay}")


@dataclass(frozen=True)
class ConfirmationPolicy:
    """
    Polling budgets for create and update confirmations.

    Creates get the larger budget: a new row takes longer to show up in
    the remote's reads than a changed one.
    """
    create: RetryPolicy = field(default_factory=lambda: RetryPolicy(attempts=6, delay=1.5))
    update: RetryPolicy = field(default_factory=lambda: RetryPolicy(attempts=3, delay=1.0))

    @classmethod
    def from_config(cls, config: ConfirmationConfig) -> "ConfirmationPolicy":
        return cls(
            create=RetryPolicy(config.create_attempts, config.create_delay),
            update=RetryPolicy(config.update_attempts, config.update_delay),
        )


@dataclass(frozen=True)
class Confirmation(Generic[T, C]):
    """
    Result of a confirmation run.

    Attributes:
        state: CONFIRMED or EXHAUSTED.
        entity: The located entity when CONFIRMED, else None.
        attempts: Polls made.
        snapshot: The collection fetched by the matching poll. The caller
                  reuses it instead of fetching the same collection again.
    """
    state: ConfirmationState
    entity: T | None
    attempts: int
    snapshot: C | None = None

    @property
    def confirmed(self) -> bool:
        return self.state is ConfirmationState.CONFIRMED


class ConfirmationMachine(Generic[C, T]):
    """
    Poll a read operation until a write becomes visible.

    Args:
        fetch: Coroutine function returning the collection to search
               (e.g. gateway.fetch_songs).
        match: Returns the written entity found in a collection, or None.
        policy: Attempt budget and delay.
        kind: "song", "setlist" or "items", for logging.
        entity_id: Provisional identifier, for logging.
        label: Short description, for logging.
        sleep: Awaitable delay function. Tests pass a recorder so no real
               time passes.

    Example:
        machine = ConfirmationMachine(
            gateway.fetch_songs, song_created(song), policy.create,
            kind="song", entity_id=song.id, label=song.label,
        )
        result = await machine.run()
        if result.confirmed:
            song = result.entity
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[C]],
        match: Callable[[C], T | None],
        policy: RetryPolicy,
        kind: str = "entity",
        entity_id: str = "",
        label: str = "",
        sleep: Sleep = asyncio.sleep
    ) -> None:
        self.fetch = fetch
        self.match = match
        self.policy = policy
        self.kind = kind
        self.entity_id = entity_id
        self.label = label
        self.sleep = sleep
        self.state = ConfirmationState.SUBMITTED
        self.attempts = 0

    async def run(self) -> Confirmation[T, C]:
        """
        Poll until the entity is found or attempts run out.

        Returns:
            Confirmation with state CONFIRMED or EXHAUSTED.

        Raises:
            Whatever `fetch` raises; polling stops at the first failure.
        """
        if self.state is not ConfirmationState.SUBMITTED:
            raise RuntimeError(f"Confirmation already ran (state: {self.state.value})")

        self.state = ConfirmationState.CONFIRMING
        logger.debug(
            f"Confirming {self.kind} {self.entity_id}: up to {self.policy.attempts} "
            f"attempt(s), {self.policy.delay:g}s apart"
        )

        while self.attempts < self.policy.attempts:
            await self.sleep(self.policy.delay)
            self.attempts += 1

            collection = await self.fetch()
            found = self.match(collection)
            if found is not None:
                self.state = ConfirmationState.CONFIRMED
                logger.debug(
                    f"{self.kind.capitalize()} {self.entity_id} confirmed "
                    f"on attempt {self.attempts}"
                )
                return Confirmation(self.state, found, self.attempts, collection)

            logger.debug(
                f"{self.kind.capitalize()} {self.entity_id} not visible yet "
                f"(attempt {self.attempts}/{self.policy.attempts})"
            )

        self.state = ConfirmationState.EXHAUSTED
        log_unconfirmed_write(self.kind, self.entity_id, self.label, self.attempts)
        return Confirmation(self.state, None, self.attempts)


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------

def song_created(proposal: Song) -> Callable[[list[Song]], Song | None]:
    """Match a created song by id, then by title and artist."""
    def match(songs: list[Song]) -> Song | None:
        return find_song(songs, proposal, allow_fallback=True)
    return match


def song_updated(proposal: Song) -> Callable[[list[Song]], Song | None]:
    """
    Match an updated song by id with every submitted field visible.

    An id match alone would find the stale row.
    """
    def match(songs: list[Song]) -> Song | None:
        found = find_song(songs, proposal, allow_fallback=False)
        if found is not None and found == proposal:
            return found
        return None
    return match


def setlist_created(proposal: Setlist) -> Callable[[list[Setlist]], Setlist | None]:
    """Match a created setlist by id, then by name."""
    def match(setlists: list[Setlist]) -> Setlist | None:
        return find_setlist(setlists, proposal, allow_fallback=True)
    return match


def setlist_updated(proposal: Setlist) -> Callable[[list[Setlist]], Setlist | None]:
    """Match an updated setlist by id with its submitted top-level fields visible."""
    def match(setlists: list[Setlist]) -> Setlist | None:
        found = find_setlist(setlists, proposal, allow_fallback=False)
        if found is not None and found.to_payload() == proposal.to_payload():
            return found
        return None
    return match


def items_synced(
    setlist: Setlist,
    items: Iterable[SetlistItem]
) -> Callable[[list[Setlist]], Setlist | None]:
    """Match once the setlist's song sequence equals the submitted one."""
    expected = tuple(item.song_id for item in items)

    def match(setlists: list[Setlist]) -> Setlist | None:
        found = find_setlist(setlists, setlist, allow_fallback=True)
        if found is not None and found.song_ids == expected:
            return found
        return None
    return match


def item_added(
    setlist: Setlist,
    item: SetlistItem
) -> Callable[[list[Setlist]], Setlist | None]:
    """Match once the item's id, or its song at its position, is visible."""
    def match(setlists: list[Setlist]) -> Setlist | None:
        found = find_setlist(setlists, setlist, allow_fallback=True)
        if found is None:
            return None
        if any(existing.id == item.id for existing in found.items):
            return found
        if item.position < len(found.items) and found.items[item.position].song_id == item.song_id:
            return found
        return None
    return match
