from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Set, Tuple

import pytest

from giveaway_engine.engine import EngineOptions, GiveawayEngine
from giveaway_engine.models import Announcement, Entrant
from giveaway_engine.ports import EntryCallback, MessagingPort
from giveaway_engine.storage import MemoryStore

REACTION = "🎉"
CHANNEL_ID = "100"


class FakeMessaging(MessagingPort):
    """In-memory stand-in for the Discord adapter."""

    def __init__(self, channels=(CHANNEL_ID,)) -> None:
        self.channels = set(channels)
        self.announcements: Dict[str, Announcement] = {}
        self.edits: List[Tuple[str, Announcement]] = []
        self.reactions: Dict[str, Dict[str, Entrant]] = {}
        self.own_reactions: List[Tuple[str, str]] = []
        self.subscriptions: Dict[str, List[Tuple[str, EntryCallback]]] = {}
        self.removed: List[Tuple[str, str]] = []
        self.transient: List[Tuple[str, str, float]] = []
        self._next_id = 5000
        # Operations named here block until the event is set.
        self.gates: Dict[str, asyncio.Event] = {}
        self.waiting: Set[str] = set()
        # Remaining number of calls that raise, per operation.
        self.failures: Dict[str, int] = {}

    def register_message(self, message_id: str) -> None:
        self.reactions.setdefault(message_id, {})

    def react(self, message_id: str, entrant: Entrant, symbol: str = REACTION) -> None:
        self.reactions.setdefault(message_id, {})[entrant.id] = entrant
        for wanted, callback in list(self.subscriptions.get(message_id, [])):
            if wanted == symbol:
                callback(entrant)

    def subscriber_count(self, message_id: str) -> int:
        return len(self.subscriptions.get(message_id, []))

    def hold(self, name: str) -> asyncio.Event:
        gate = self.gates[name] = asyncio.Event()
        return gate

    async def _checkpoint(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            self.waiting.add(name)
            try:
                await gate.wait()
            finally:
                self.waiting.discard(name)
        if self.failures.get(name):
            self.failures[name] -= 1
            raise RuntimeError(f"{name} failed")

    async def resolve_channel(self, channel_id: str) -> bool:
        return channel_id in self.channels

    async def post_announcement(self, channel_id: str, announcement: Announcement) -> str:
        self._next_id += 1
        message_id = str(self._next_id)
        self.announcements[message_id] = announcement
        self.register_message(message_id)
        return message_id

    async def edit_announcement(
        self, channel_id: str, message_id: str, announcement: Announcement
    ) -> None:
        await self._checkpoint("edit_announcement")
        self.announcements[message_id] = announcement
        self.edits.append((message_id, announcement))

    async def add_reaction(self, channel_id: str, message_id: str, symbol: str) -> None:
        self.own_reactions.append((message_id, symbol))

    async def fetch_entrants(self, channel_id: str, message_id: str, symbol: str) -> List[Entrant]:
        await self._checkpoint("fetch_entrants")
        return list(self.reactions.get(message_id, {}).values())

    def subscribe_entry_reactions(
        self, channel_id: str, message_id: str, symbol: str, on_entry: EntryCallback
    ) -> Callable[[], None]:
        entry = (symbol, on_entry)
        self.subscriptions.setdefault(message_id, []).append(entry)

        def unsubscribe() -> None:
            callbacks = self.subscriptions.get(message_id, [])
            if entry in callbacks:
                callbacks.remove(entry)

        return unsubscribe

    async def remove_reaction(
        self, channel_id: str, message_id: str, symbol: str, user_id: str
    ) -> None:
        self.reactions.get(message_id, {}).pop(user_id, None)
        self.removed.append((message_id, user_id))

    async def post_transient(self, channel_id: str, content: str, ttl: float) -> None:
        self.transient.append((channel_id, content, ttl))


class CountingStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.saves = 0
        self.edits = 0

    async def save(self, record) -> None:
        self.saves += 1
        await super().save(record)

    async def edit(self, giveaway_id, record) -> None:
        self.edits += 1
        await super().edit(giveaway_id, record)


class FixedClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def messaging() -> FakeMessaging:
    return FakeMessaging()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def options() -> EngineOptions:
    return EngineOptions(reaction=REACTION, custom_check_timeout=0.5, rejection_notice_ttl=5)


@pytest.fixture
async def engine(messaging, store, options, clock):
    engine = GiveawayEngine(messaging, store, options, clock=clock)
    yield engine
    await engine.close()


@pytest.fixture
async def live_engine(messaging, store, options):
    """Engine running on the wall clock, for countdown tests."""
    engine = GiveawayEngine(messaging, store, options)
    yield engine
    await engine.close()
