from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .errors import ChannelUnavailable, NotFound
from .events import (
    EventBus,
    GiveawayEdited,
    GiveawayEnded,
    GiveawayRerolled,
    GiveawayStarted,
    ReactionAdded,
    RequirementsFailed,
    RequirementsPassed,
)
from .i18n import DEFAULT_LANGUAGE, Translator
from .models import (
    Announcement,
    CustomCheck,
    EditSpec,
    Entrant,
    GiveawayRecord,
    GiveawaySpec,
    RequirementSet,
)
from .ports import MessagingPort
from .requirements import describe_requirements, evaluate
from .selector import select_winners
from .storage import GiveawayStore

log = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class EngineOptions:
    reaction: str
    bots_can_win: bool = False
    language: str = DEFAULT_LANGUAGE
    custom_check_timeout: Optional[float] = 10.0
    rejection_notice_ttl: float = 10.0
    finalize_retry_delay: float = 30.0


def _snapshot(record: GiveawayRecord) -> GiveawayRecord:
    return dataclasses.replace(record, winners=list(record.winners))


class _EntryCollector:
    """Queues entry reactions for one giveaway and validates them in arrival order."""

    def __init__(self, engine: "GiveawayEngine", record: GiveawayRecord) -> None:
        if record.message_id is None:
            raise ValueError(f"Giveaway {record.id} has no announcement to collect entries on.")
        self.engine = engine
        self.giveaway_id = record.id
        self._queue: asyncio.Queue[Optional[Entrant]] = asyncio.Queue()
        self._closed = False
        self._unsubscribe = engine.messaging.subscribe_entry_reactions(
            record.channel_id, record.message_id, engine.options.reaction, self.enqueue
        )
        self._task = asyncio.create_task(self._run())

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, entrant: Entrant) -> None:
        if not self._closed:
            self._queue.put_nowait(entrant)

    def stop(self) -> None:
        """Stop accepting entries; an in-flight validation is allowed to finish."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._queue.put_nowait(None)

    def cancel(self) -> asyncio.Task:
        self.stop()
        self._task.cancel()
        return self._task

    async def _run(self) -> None:
        while True:
            entrant = await self._queue.get()
            if entrant is None or self._closed:
                return
            try:
                await self.engine._handle_entry(self.giveaway_id, entrant, self)
            except Exception:
                log.exception(
                    "Failed to process entry of user %s for giveaway %s",
                    entrant.id,
                    self.giveaway_id,
                )


class GiveawayEngine:
    """Coordinates giveaway lifecycle, persistence, and platform interactions."""

    def __init__(
        self,
        messaging: MessagingPort,
        store: GiveawayStore,
        options: EngineOptions,
        *,
        events: Optional[EventBus] = None,
        custom_checks: Optional[Mapping[str, CustomCheck]] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.messaging = messaging
        self.store = store
        self.options = options
        self.events = events or EventBus()
        self.translator = Translator(options.language)
        self._custom_checks: Dict[str, CustomCheck] = dict(custom_checks or {})
        self._clock = clock
        self._rng = rng
        self._countdowns: Dict[str, asyncio.Task] = {}
        self._collectors: Dict[str, _EntryCollector] = {}
        self._finalizing: set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        # Inline predicates are not persisted; kept here per giveaway id.
        self._inline_checks: Dict[str, CustomCheck] = {}

    def register_custom_check(self, name: str, predicate: CustomCheck) -> None:
        self._custom_checks[name] = predicate

    # --- Lifecycle operations ---------------------------------------------

    async def start(self, spec: GiveawaySpec) -> GiveawayRecord:
        if spec.winner_count <= 0:
            raise ValueError("winner_count must be greater than zero")
        if spec.duration <= 0:
            raise ValueError("duration must be greater than zero")

        if not await self.messaging.resolve_channel(spec.channel_id):
            raise ChannelUnavailable(spec.channel_id)

        now = self._clock()
        requirements = spec.requirements
        if requirements is not None and requirements.is_empty():
            requirements = None
        record = GiveawayRecord(
            id=await self._generate_giveaway_id(),
            channel_id=spec.channel_id,
            prize=spec.prize,
            winner_count=spec.winner_count,
            end_at=now + spec.duration,
            created_at=now,
            requirements=requirements,
        )

        message_id = await self.messaging.post_announcement(
            record.channel_id, self._build_announcement(record)
        )
        await self.messaging.add_reaction(
            record.channel_id, message_id, self.options.reaction
        )
        record.message_id = message_id
        await self.store.save(record)
        self._remember_inline_check(record.id, requirements)

        self._schedule_finish(record)
        self._start_collection(record)

        log.info(
            "Giveaway %s (%s) started in channel %s, ends at %s.",
            record.id,
            record.prize,
            record.channel_id,
            record.end_at,
        )
        self.events.publish(GiveawayStarted(_snapshot(record)))
        return record

    async def end(self, giveaway_id: str, is_reroll: bool = False) -> Optional[List[str]]:
        """Finalize a giveaway; returns the winners, or ``None`` when nothing was done."""
        if giveaway_id in self._finalizing:
            log.debug("Giveaway %s is already being finalized.", giveaway_id)
            return None
        async with self._lock_for(giveaway_id):
            record = await self.store.get(giveaway_id)
            if record is None or record.ended:
                log.debug("Giveaway %s not found or already ended; skipping end.", giveaway_id)
                return None
            return await self._finalize(record, is_reroll=is_reroll)

    async def reroll(self, giveaway_id: str) -> Optional[List[str]]:
        """Draw winners again.

        An active giveaway is finalized on the spot and tagged as a reroll. An
        ended giveaway gets a fresh draw from its current entrants, avoiding the
        previous winners while anyone else is eligible.
        """
        async with self._lock_for(giveaway_id):
            record = await self.store.get(giveaway_id)
            if record is None:
                log.debug("Giveaway %s not found; skipping reroll.", giveaway_id)
                return None
            if not record.ended:
                return await self._finalize(record, is_reroll=True)

            winners = await self._choose_winners(record, exclude=record.winners)
            await self._announce_result(record, winners)
            record.winners = winners
            await self.store.save(record)

        log.info("Giveaway %s rerolled with %d winner(s).", record.id, len(winners))
        self.events.publish(GiveawayRerolled(_snapshot(record), tuple(winners)))
        return winners

    async def edit(self, giveaway_id: str, spec: EditSpec) -> GiveawayRecord:
        if spec.winner_count is not None and spec.winner_count <= 0:
            raise ValueError("winner_count must be greater than zero")

        async with self._lock_for(giveaway_id):
            record = await self.store.get(giveaway_id)
            if record is None or record.ended:
                raise NotFound(giveaway_id)

            previous = _snapshot(record)
            if spec.prize is not None:
                record.prize = spec.prize
            if spec.winner_count is not None:
                record.winner_count = spec.winner_count
            if spec.requirements is not None:
                record.requirements = (
                    None if spec.requirements.is_empty() else spec.requirements
                )

            if record.message_id is not None:
                await self.messaging.edit_announcement(
                    record.channel_id, record.message_id, self._build_announcement(record)
                )
            await self.store.edit(giveaway_id, record)
            if spec.requirements is not None:
                self._remember_inline_check(giveaway_id, record.requirements)

        log.info("Giveaway %s updated.", record.id)
        self.events.publish(GiveawayEdited(previous, _snapshot(record)))
        return record

    async def restore(self) -> int:
        """Re-arm countdowns and entry collection for every giveaway that has not ended."""
        restored = 0
        for record in await self.store.get_all():
            if record.ended or record.id in self._finalizing:
                continue
            self._schedule_finish(record)
            if record.message_id is not None:
                self._start_collection(record)
            else:
                log.warning(
                    "Giveaway %s has no announcement; entries cannot be collected.",
                    record.id,
                )
            restored += 1
        log.info("Restored %d active giveaway(s).", restored)
        return restored

    async def delete(self, giveaway_id: str) -> bool:
        async with self._lock_for(giveaway_id):
            self._cancel_finish(giveaway_id)
            self._stop_collection(giveaway_id)
            self._inline_checks.pop(giveaway_id, None)
            record = await self.store.get(giveaway_id)
            if record is None:
                return False
            await self.store.delete(giveaway_id)
        self._locks.pop(giveaway_id, None)
        log.info("Giveaway %s deleted.", giveaway_id)
        return True

    async def get(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        return await self.store.get(giveaway_id)

    async def list_giveaways(self, *, active_only: bool = False) -> List[GiveawayRecord]:
        records = await self.store.get_all()
        if active_only:
            records = [record for record in records if not record.ended]
        return sorted(records, key=lambda record: record.end_at)

    async def close(self) -> None:
        """Cancel every countdown and entry collector."""
        tasks = [task for task in self._countdowns.values() if not task.done()]
        for task in tasks:
            task.cancel()
        tasks.extend(collector.cancel() for collector in self._collectors.values())
        self._countdowns.clear()
        self._collectors.clear()
        await asyncio.gather(*tasks, return_exceptions=True)

    # --- Finalization -------------------------------------------------------

    def _lock_for(self, giveaway_id: str) -> asyncio.Lock:
        lock = self._locks.get(giveaway_id)
        if lock is None:
            lock = self._locks[giveaway_id] = asyncio.Lock()
        return lock

    async def _finalize(self, record: GiveawayRecord, *, is_reroll: bool) -> List[str]:
        """Draw, announce and persist the outcome; the caller holds the giveaway lock."""
        giveaway_id = record.id
        self._finalizing.add(giveaway_id)
        self._cancel_finish(giveaway_id)
        self._stop_collection(giveaway_id)
        try:
            winners = await self._choose_winners(record)
            await self._announce_result(record, winners)
            finished = dataclasses.replace(record, ended=True, winners=winners)
            await self.store.save(finished)
        except Exception:
            log.warning(
                "Finalizing giveaway %s failed; retrying in %ss.",
                giveaway_id,
                self.options.finalize_retry_delay,
            )
            self._schedule_finish(record, retry_after=self.options.finalize_retry_delay)
            if record.message_id is not None:
                self._start_collection(record)
            raise
        finally:
            self._finalizing.discard(giveaway_id)

        log.info(
            "Giveaway %s finished with %d winner(s)%s.",
            giveaway_id,
            len(winners),
            " (reroll)" if is_reroll else "",
        )
        if is_reroll:
            self.events.publish(GiveawayRerolled(_snapshot(finished), tuple(winners)))
        else:
            self.events.publish(GiveawayEnded(_snapshot(finished), tuple(winners)))
        return winners

    # --- Entry collection ---------------------------------------------------

    async def _handle_entry(
        self, giveaway_id: str, entrant: Entrant, collector: _EntryCollector
    ) -> None:
        record = await self.store.get(giveaway_id)
        if record is None or record.ended or record.message_id is None:
            return

        self.events.publish(ReactionAdded(_snapshot(record), entrant))

        result = await evaluate(
            entrant,
            self._effective_requirements(record),
            custom_checks=self._custom_checks,
            timeout=self.options.custom_check_timeout,
            translator=self.translator,
        )
        if collector.closed:
            log.debug(
                "Discarding eligibility result for user %s; giveaway %s has ended.",
                entrant.id,
                giveaway_id,
            )
            return

        if result.passed:
            self.events.publish(RequirementsPassed(_snapshot(record), entrant))
            return

        reason = result.reason or self.translator("requirements.custom_failed")
        log.debug("User %s rejected from giveaway %s: %s", entrant.id, giveaway_id, reason)
        await self.messaging.remove_reaction(
            record.channel_id, record.message_id, self.options.reaction, entrant.id
        )
        await self.messaging.post_transient(
            record.channel_id,
            self.translator("entry.rejected", mention=entrant.mention, reason=reason),
            self.options.rejection_notice_ttl,
        )
        self.events.publish(RequirementsFailed(_snapshot(record), entrant, reason))

    def _remember_inline_check(
        self, giveaway_id: str, requirements: Optional[RequirementSet]
    ) -> None:
        custom = requirements.custom if requirements is not None else None
        if callable(custom):
            self._inline_checks[giveaway_id] = custom
        else:
            self._inline_checks.pop(giveaway_id, None)

    def _effective_requirements(self, record: GiveawayRecord) -> Optional[RequirementSet]:
        inline = self._inline_checks.get(record.id)
        if inline is None:
            return record.requirements
        if record.requirements is None:
            return RequirementSet(custom=inline)
        return dataclasses.replace(record.requirements, custom=inline)

    def _start_collection(self, record: GiveawayRecord) -> None:
        self._stop_collection(record.id)
        self._collectors[record.id] = _EntryCollector(self, record)

    def _stop_collection(self, giveaway_id: str) -> None:
        collector = self._collectors.pop(giveaway_id, None)
        if collector:
            collector.stop()

    # --- Scheduling ----------------------------------------------------------

    def _schedule_finish(self, record: GiveawayRecord, *, retry_after: float = 0) -> None:
        self._cancel_finish(record.id)
        giveaway_id = record.id
        due = max(record.end_at, self._clock() + int(retry_after * 1000))

        async def waiter() -> None:
            try:
                remaining = due - self._clock()
                while remaining > 0:
                    await asyncio.sleep(remaining / 1000)
                    remaining = due - self._clock()
                await self.end(giveaway_id)
            except asyncio.CancelledError:
                log.debug("Finish task for giveaway %s cancelled", giveaway_id)
                raise
            except Exception:
                log.exception("Failed to end giveaway %s", giveaway_id)
            finally:
                if self._countdowns.get(giveaway_id) is asyncio.current_task():
                    self._countdowns.pop(giveaway_id, None)

        self._countdowns[giveaway_id] = asyncio.create_task(waiter())

    def _cancel_finish(self, giveaway_id: str) -> None:
        task = self._countdowns.pop(giveaway_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

    # --- Helpers -------------------------------------------------------------

    async def _choose_winners(
        self, record: GiveawayRecord, exclude: Iterable[str] = ()
    ) -> List[str]:
        if record.message_id is None:
            return []
        entrants = await self.messaging.fetch_entrants(
            record.channel_id, record.message_id, self.options.reaction
        )
        population = [
            entrant.id
            for entrant in entrants
            if self.options.bots_can_win or not entrant.bot
        ]
        excluded = set(exclude)
        if excluded:
            population = [p for p in population if p not in excluded] or population
        return select_winners(population, record.winner_count, rng=self._rng)

    async def _announce_result(self, record: GiveawayRecord, winners: List[str]) -> None:
        if record.message_id is None:
            return
        await self.messaging.edit_announcement(
            record.channel_id,
            record.message_id,
            self._build_announcement(record, winners=winners, ended=True),
        )

    def _build_announcement(
        self,
        record: GiveawayRecord,
        *,
        winners: Optional[List[str]] = None,
        ended: bool = False,
    ) -> Announcement:
        t = self.translator
        footer = t("announcement.footer", id=record.id)
        if ended:
            mentions = (
                ", ".join(f"<@{winner_id}>" for winner_id in winners)
                if winners
                else t("announcement.no_winners")
            )
            return Announcement(
                title=t("announcement.title_ended", prize=record.prize),
                description="\n".join(
                    [
                        t("announcement.winners", mentions=mentions),
                        t("announcement.ended", timestamp=self._clock() // 1000),
                    ]
                ),
                ended=True,
                footer=footer,
            )

        lines = [
            t("announcement.enter", reaction=self.options.reaction),
            t("announcement.winner_count", count=record.winner_count),
            t("announcement.ends", timestamp=record.end_at // 1000),
        ]
        requirement_lines = describe_requirements(record.requirements, t)
        if requirement_lines:
            lines.append("")
            lines.append(t("announcement.requirements"))
            lines.extend(f"- {line}" for line in requirement_lines)
        return Announcement(
            title=t("announcement.title", prize=record.prize),
            description="\n".join(lines),
            footer=footer,
        )

    async def _generate_giveaway_id(self) -> str:
        while True:
            candidate = secrets.token_hex(4)
            if await self.store.get(candidate) is None:
                return candidate
