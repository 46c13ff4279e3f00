"""Data models used for giveaway persistence and runtime state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, List, Optional, Union


@dataclass(slots=True, frozen=True)
class CheckResult:
    """Outcome of an eligibility check."""
    passed: bool
    reason: Optional[str] = None


CustomCheck = Callable[[str], Awaitable[CheckResult]]


@dataclass(slots=True)
class RequirementSet:
    """Optional eligibility rules attached to a giveaway.

    ``custom`` is either an inline async predicate or the name of a predicate
    registered on the engine. Only named predicates survive persistence.
    """
    required_roles: FrozenSet[str] = field(default_factory=frozenset)
    account_age_min: Optional[int] = None
    joined_server_before: Optional[int] = None
    custom: Union[str, CustomCheck, None] = None

    def is_empty(self) -> bool:
        return (
            not self.required_roles
            and self.account_age_min is None
            and self.joined_server_before is None
            and self.custom is None
        )

    def to_payload(self) -> dict:
        """Serialize to a JSON-friendly mapping (inline predicates are dropped)."""
        return {
            "required_roles": sorted(self.required_roles),
            "account_age_min": self.account_age_min,
            "joined_server_before": self.joined_server_before,
            "custom": self.custom if isinstance(self.custom, str) else None,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "RequirementSet":
        account_age_min = payload.get("account_age_min")
        joined_before = payload.get("joined_server_before")
        custom = payload.get("custom")
        return cls(
            required_roles=frozenset(str(r) for r in payload.get("required_roles") or ()),
            account_age_min=int(account_age_min) if account_age_min is not None else None,
            joined_server_before=int(joined_before) if joined_before is not None else None,
            custom=str(custom) if custom else None,
        )


@dataclass(slots=True)
class GiveawayRecord:
    """Represents an active or finished giveaway."""
    id: str
    channel_id: str
    prize: str
    winner_count: int
    end_at: int
    created_at: int
    message_id: Optional[str] = None
    ended: bool = False
    requirements: Optional[RequirementSet] = None
    winners: List[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        """Serialize the giveaway to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "message_id": self.message_id,
            "prize": self.prize,
            "winner_count": self.winner_count,
            "end_at": self.end_at,
            "created_at": self.created_at,
            "ended": self.ended,
            "requirements": (
                self.requirements.to_payload() if self.requirements is not None else None
            ),
            "winners": list(self.winners),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "GiveawayRecord":
        """Reconstruct a record from serialized payload data."""
        message_id = payload.get("message_id")
        requirements = payload.get("requirements")
        return cls(
            id=str(payload["id"]),
            channel_id=str(payload["channel_id"]),
            message_id=str(message_id) if message_id is not None else None,
            prize=str(payload["prize"]),
            winner_count=int(payload["winner_count"]),
            end_at=int(payload["end_at"]),
            created_at=int(payload.get("created_at", 0)),
            ended=bool(payload.get("ended", False)),
            requirements=(
                RequirementSet.from_payload(requirements) if requirements else None
            ),
            winners=[str(w) for w in payload.get("winners") or ()],
        )


@dataclass(slots=True)
class GiveawaySpec:
    """Inputs for starting a giveaway. ``duration`` is in milliseconds."""
    channel_id: str
    prize: str
    winner_count: int
    duration: int
    requirements: Optional[RequirementSet] = None


@dataclass(slots=True)
class EditSpec:
    """Fields to replace on an active giveaway; ``None`` keeps the current value."""
    prize: Optional[str] = None
    winner_count: Optional[int] = None
    requirements: Optional[RequirementSet] = None


@dataclass(slots=True, frozen=True)
class Entrant:
    """A user who applied the entry reaction, with the guild data the checks need."""
    id: str
    bot: bool = False
    created_at: int = 0
    joined_at: Optional[int] = None
    role_ids: FrozenSet[str] = frozenset()

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"


@dataclass(slots=True, frozen=True)
class Announcement:
    """Platform-neutral rendering of a giveaway message."""
    title: str
    description: str
    ended: bool = False
    footer: Optional[str] = None
