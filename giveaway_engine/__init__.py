"""Reaction giveaways with eligibility rules and restart recovery."""

from .engine import EngineOptions, GiveawayEngine
from .errors import ChannelUnavailable, GiveawayError, NotFound, PersistenceFailure
from .events import EventBus, EventKind
from .models import (
    Announcement,
    CheckResult,
    EditSpec,
    Entrant,
    GiveawayRecord,
    GiveawaySpec,
    RequirementSet,
)
from .ports import MessagingPort
from .requirements import evaluate
from .selector import select_winners
from .storage import GiveawayStore, JSONStore, MemoryStore, SQLiteStore

__all__ = [
    "Announcement",
    "ChannelUnavailable",
    "CheckResult",
    "EditSpec",
    "EngineOptions",
    "Entrant",
    "EventBus",
    "EventKind",
    "GiveawayEngine",
    "GiveawayError",
    "GiveawayRecord",
    "GiveawaySpec",
    "GiveawayStore",
    "JSONStore",
    "MemoryStore",
    "MessagingPort",
    "NotFound",
    "PersistenceFailure",
    "RequirementSet",
    "SQLiteStore",
    "evaluate",
    "select_winners",
]
