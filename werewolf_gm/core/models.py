from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

PlayerId = int

WILDCARD_PHASE = "*"
DEFAULT_TRANSITION_PRIORITY = 10
NEEDS_RUNOFF = "needs_runoff"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhaseId(str, Enum):
    PREPARATION = "preparation"
    FIRST_NIGHT = "first_night"
    FIRST_DAY = "first_day"
    VOTE = "vote"
    RUNOFF_VOTE = "runoff_vote"
    EXECUTION = "execution"
    NIGHT = "night"
    DAY = "day"
    GAME_END = "game_end"


class PhaseStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ActionType(str, Enum):
    FORTUNE = "fortune"
    GUARD = "guard"
    ATTACK = "attack"


class ResultReason(str, Enum):
    NOT_EXECUTABLE = "NOT_EXECUTABLE"
    ALREADY_DEAD = "ALREADY_DEAD"
    TARGET_DEAD = "TARGET_DEAD"
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"
    GUARDED = "GUARDED"
    IMMUNE = "IMMUNE"
    GAME_ABORTED = "GAME_ABORTED"
    EXECUTION_ERROR = "EXECUTION_ERROR"


class Team(str, Enum):
    VILLAGE = "village"
    WEREWOLF = "werewolf"
    FOX = "fox"


class FortuneResult(str, Enum):
    WHITE = "white"
    BLACK = "black"


class DeathCause(str, Enum):
    ATTACK = "werewolf_attack"
    FOX_CURSE = "fox_curse"
    EXECUTION = "execution"


@dataclass(frozen=True, slots=True)
class VisibilityPolicy:
    show_dead_players: bool = True
    show_roles: bool = False
    show_votes: bool = False


PhaseHook = Callable[["Phase", int], None]


@dataclass(frozen=True, slots=True)
class Phase:
    """Immutable definition of a named game phase.

    ``on_start`` and ``on_end`` are optional hooks invoked by the phase
    manager with the phase and the current turn.
    """

    id: str
    display_name: str
    allowed_actions: FrozenSet[str] = frozenset()
    required_actions: FrozenSet[str] = frozenset()
    time_limit: Optional[int] = None
    visibility_policy: VisibilityPolicy = field(default_factory=VisibilityPolicy)
    description: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    on_start: Optional[PhaseHook] = field(default=None, compare=False, repr=False)
    on_end: Optional[PhaseHook] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("phase id is required")
        if not self.display_name:
            raise ValueError("phase display_name is required")
        object.__setattr__(self, "allowed_actions", frozenset(self.allowed_actions))
        object.__setattr__(self, "required_actions", frozenset(self.required_actions))
        if not self.required_actions <= self.allowed_actions:
            raise ValueError("required_actions must be a subset of allowed_actions")
        if self.time_limit is not None:
            object.__setattr__(self, "time_limit", max(0, int(self.time_limit)))
        object.__setattr__(self, "metadata", dict(self.metadata))

    def is_action_allowed(self, action_type: str) -> bool:
        if not action_type or not isinstance(action_type, str):
            return False
        return action_type in self.allowed_actions

    def with_visibility(self, **changes: bool) -> "Phase":
        valid = {k: v for k, v in changes.items() if k in VisibilityPolicy.__dataclass_fields__}
        return replace(self, visibility_policy=replace(self.visibility_policy, **valid))


TransitionCondition = Callable[[Any], bool]


def _always(_: Any) -> bool:
    return True


@dataclass(frozen=True, slots=True)
class PhaseTransitionRule:
    source_phase: str
    target_phase: str
    condition: TransitionCondition = field(default=_always, compare=False)
    priority: int = DEFAULT_TRANSITION_PRIORITY

    def applies_to(self, phase_id: str) -> bool:
        return self.source_phase == WILDCARD_PHASE or self.source_phase == phase_id


@dataclass(slots=True)
class PhaseContext:
    phase_id: str
    turn: int
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    status: PhaseStatus = PhaseStatus.IN_PROGRESS
    data: Dict[str, Any] = field(default_factory=dict)

    def complete(self) -> None:
        self.end_time = utcnow()
        self.status = PhaseStatus.COMPLETED


@dataclass(slots=True)
class TurnRecord:
    turn: int
    previous_turn: int
    started_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Action:
    id: str
    type: str
    actor: PlayerId
    target: PlayerId
    turn: int
    priority: int
    options: Dict[str, Any] = field(default_factory=dict)
    executed: bool = False
    cancelled: bool = False
    result: Optional[Dict[str, Any]] = None

    def is_executable(self) -> bool:
        return not self.executed and not self.cancelled

    def cancel(self) -> None:
        if self.executed:
            raise ValueError("executed action cannot be cancelled")
        if self.cancelled:
            raise ValueError("action already cancelled")
        self.cancelled = True

    def mark_executed(self, result: Dict[str, Any]) -> None:
        if self.cancelled:
            raise ValueError("cancelled action cannot be executed")
        self.result = result
        self.executed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "actor": self.actor,
            "target": self.target,
            "turn": self.turn,
            "priority": self.priority,
            "executed": self.executed,
            "cancelled": self.cancelled,
            "result": dict(self.result) if self.result is not None else None,
        }


@dataclass(slots=True)
class GameState:
    started: bool = False
    ended: bool = False
    abnormal_end: bool = False
    turn: int = 0
    phase: Optional[str] = None
    winner: Optional[str] = None
    win_reason: Optional[str] = None
    winning_players: List[PlayerId] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_death: Optional[Dict[str, Any]] = None
