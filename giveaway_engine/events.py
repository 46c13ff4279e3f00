"""Typed publish/subscribe channel for giveaway lifecycle events."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Tuple, Union

from .models import Entrant, GiveawayRecord

log = logging.getLogger(__name__)


class EventKind(enum.Enum):
    STARTED = "started"
    ENDED = "ended"
    REROLLED = "rerolled"
    EDITED = "edited"
    REACTION_ADDED = "reaction_added"
    REQUIREMENTS_FAILED = "requirements_failed"
    REQUIREMENTS_PASSED = "requirements_passed"


@dataclass(slots=True, frozen=True)
class GiveawayStarted:
    kind: ClassVar[EventKind] = EventKind.STARTED
    giveaway: GiveawayRecord


@dataclass(slots=True, frozen=True)
class GiveawayEnded:
    kind: ClassVar[EventKind] = EventKind.ENDED
    giveaway: GiveawayRecord
    winners: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class GiveawayRerolled:
    kind: ClassVar[EventKind] = EventKind.REROLLED
    giveaway: GiveawayRecord
    winners: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class GiveawayEdited:
    kind: ClassVar[EventKind] = EventKind.EDITED
    previous: GiveawayRecord
    giveaway: GiveawayRecord


@dataclass(slots=True, frozen=True)
class ReactionAdded:
    kind: ClassVar[EventKind] = EventKind.REACTION_ADDED
    giveaway: GiveawayRecord
    entrant: Entrant


@dataclass(slots=True, frozen=True)
class RequirementsFailed:
    kind: ClassVar[EventKind] = EventKind.REQUIREMENTS_FAILED
    giveaway: GiveawayRecord
    entrant: Entrant
    reason: str


@dataclass(slots=True, frozen=True)
class RequirementsPassed:
    kind: ClassVar[EventKind] = EventKind.REQUIREMENTS_PASSED
    giveaway: GiveawayRecord
    entrant: Entrant


GiveawayEvent = Union[
    GiveawayStarted,
    GiveawayEnded,
    GiveawayRerolled,
    GiveawayEdited,
    ReactionAdded,
    RequirementsFailed,
    RequirementsPassed,
]

Handler = Callable[[Any], Any]


class EventBus:
    """Synchronous in-process event delivery.

    A handler that raises is logged and skipped; the remaining handlers still
    receive the event. Handlers returning a coroutine have it scheduled on the
    running loop.
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventKind, List[Handler]] = {kind: [] for kind in EventKind}
        self._background: set[asyncio.Task] = set()

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        self._handlers[kind].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[kind].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: GiveawayEvent) -> None:
        for handler in list(self._handlers[event.kind]):
            try:
                result = handler(event)
            except Exception:
                log.exception("Handler %r failed for %s event", handler, event.kind.value)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, event.kind)

    def _schedule(self, awaitable: Any, kind: EventKind) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("No running loop to deliver async %s handler.", kind.value)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Async event handler failed", exc_info=exc)
