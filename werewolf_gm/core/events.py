from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple, Union

from werewolf_gm.core import event_matcher
from werewolf_gm.core.models import utcnow

if TYPE_CHECKING:
    from werewolf_gm.core.errors import ErrorRecord

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Closed set of notifications. The value is the dotted name template."""

    PHASE_START = "phase.start.{subject}"
    PHASE_END = "phase.end.{subject}"
    TURN_START = "turn.start"
    TURN_NEW = "turn.new"
    ACTION_REGISTER = "action.register"
    ACTION_CANCEL = "action.cancel"
    ACTION_EXECUTE = "action.execute.{subject}"
    ACTION_EXECUTE_COMPLETE = "action.execute.complete"
    ACTION_RESULT = "action.{subject}.result"
    ACTION_AUTO_EXECUTED = "action.auto_executed"
    WEREWOLF_ATTACK_TARGET = "werewolf.attack.target"
    PLAYER_DEATH = "player.death"
    PLAYER_CURSED = "player.cursed"
    PLAYER_GUARDED = "player.guarded"
    PLAYER_GUARD_SUCCESS = "player.guard.success"
    PLAYER_ATTACK_FAILED = "player.attack.failed"
    PLAYER_ATTACK_IMMUNE = "player.attack.immune"
    PLAYER_ATTACK_SUCCESS = "player.attack.success"
    GAME_STARTED = "game.started"
    GAME_END = "game.end"
    GAME_ABNORMAL_END = "game.abnormal_end"
    FIRST_NIGHT_FORTUNE_RULE = "first_night.fortune.rule"
    ERROR = "error"
    ERROR_LEVEL = "error.{subject}"
    ERROR_CODE = "error.code.{subject}"

    @property
    def needs_subject(self) -> bool:
        return "{subject}" in self.value

    def event_name(self, subject: Optional[str] = None) -> str:
        if self.needs_subject:
            if not subject:
                raise ValueError(f"event kind {self.name} requires a subject")
            return self.value.format(subject=subject)
        return self.value


_ERROR_KEYS = ("code", "message", "level")

REQUIRED_PAYLOAD_KEYS: Dict[EventKind, Tuple[str, ...]] = {
    EventKind.PHASE_START: ("phase_id", "turn"),
    EventKind.PHASE_END: ("phase_id", "turn"),
    EventKind.TURN_START: ("turn",),
    EventKind.TURN_NEW: ("turn", "previous_turn"),
    EventKind.ACTION_REGISTER: ("action_id", "type", "actor_id", "target_id", "turn"),
    EventKind.ACTION_CANCEL: ("action_id", "turn"),
    EventKind.ACTION_EXECUTE: ("action_id", "result"),
    EventKind.ACTION_EXECUTE_COMPLETE: ("turn", "executed_count"),
    EventKind.ACTION_RESULT: ("actor_id", "target_id", "turn"),
    EventKind.ACTION_AUTO_EXECUTED: ("action_id", "type", "actor_id", "turn"),
    EventKind.WEREWOLF_ATTACK_TARGET: ("target_id", "votes", "turn"),
    EventKind.PLAYER_DEATH: ("player_id", "cause", "turn"),
    EventKind.PLAYER_CURSED: ("player_id", "by", "turn"),
    EventKind.PLAYER_GUARDED: ("player_id", "guard_id", "turn"),
    EventKind.PLAYER_GUARD_SUCCESS: ("player_id", "guard_id", "turn"),
    EventKind.PLAYER_ATTACK_FAILED: ("player_id", "reason", "turn"),
    EventKind.PLAYER_ATTACK_IMMUNE: ("player_id", "turn"),
    EventKind.PLAYER_ATTACK_SUCCESS: ("player_id", "turn"),
    EventKind.GAME_STARTED: ("phase_id", "turn"),
    EventKind.GAME_END: ("winner", "reason", "turn"),
    EventKind.GAME_ABNORMAL_END: ("reason", "turn"),
    EventKind.FIRST_NIGHT_FORTUNE_RULE: ("rule", "actor_id", "target_id"),
    EventKind.ERROR: _ERROR_KEYS,
    EventKind.ERROR_LEVEL: _ERROR_KEYS,
    EventKind.ERROR_CODE: _ERROR_KEYS,
}


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    subject: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))
        object.__setattr__(self, "payload", dict(self.payload))
        missing = [key for key in REQUIRED_PAYLOAD_KEYS[self.kind] if key not in self.payload]
        if missing:
            raise ValueError(f"event {self.kind.name} missing payload keys: {missing}")
        # resolves the name eagerly so a missing subject fails at construction
        self.kind.event_name(self.subject)

    @property
    def name(self) -> str:
        return self.kind.event_name(self.subject)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]


Listener = Callable[[Event], None]


@dataclass(slots=True)
class _Subscription:
    pattern: str
    callback: Listener
    priority: int
    once: bool
    order: int


class EventBus:
    """Synchronous publish/subscribe for engine notifications.

    A listener registered for ``phase`` also hears ``phase.start.night``;
    patterns may use ``*`` and ``**`` (see :mod:`event_matcher`).
    """

    def __init__(self, history_limit: int = 0) -> None:
        self._subscriptions: List[_Subscription] = []
        self._order = count()
        self._history: Optional[Deque[Event]] = deque(maxlen=history_limit) if history_limit > 0 else None

    def on(
        self,
        pattern: Union[str, EventKind],
        callback: Listener,
        priority: int = 0,
        once: bool = False,
    ) -> Listener:
        if isinstance(pattern, EventKind):
            if pattern.needs_subject:
                pattern = pattern.value.replace("{subject}", event_matcher.SINGLE)
            else:
                pattern = pattern.value
        if not pattern:
            raise ValueError("event pattern is required")
        if not callable(callback):
            raise ValueError("listener must be callable")
        self._subscriptions.append(
            _Subscription(pattern=pattern, callback=callback, priority=priority, once=once, order=next(self._order))
        )
        return callback

    def once(self, pattern: Union[str, EventKind], callback: Listener, priority: int = 0) -> Listener:
        return self.on(pattern, callback, priority=priority, once=True)

    def off(self, pattern: str, callback: Optional[Listener] = None) -> int:
        before = len(self._subscriptions)
        self._subscriptions = [
            sub
            for sub in self._subscriptions
            if not (sub.pattern == pattern and (callback is None or sub.callback is callback))
        ]
        return before - len(self._subscriptions)

    def listener_count(self, pattern: Optional[str] = None) -> int:
        if pattern is None:
            return len(self._subscriptions)
        return sum(1 for sub in self._subscriptions if sub.pattern == pattern)

    def clear(self) -> None:
        self._subscriptions.clear()

    def emit(
        self,
        kind: EventKind,
        payload: Optional[Mapping[str, Any]] = None,
        subject: Optional[str] = None,
    ) -> Event:
        event = Event(kind=kind, payload=payload or {}, subject=subject)
        if self._history is not None:
            self._history.append(event)

        targets = self._match(event.name)
        for sub in targets:
            if sub.once:
                self._subscriptions = [s for s in self._subscriptions if s is not sub]
            try:
                sub.callback(event)
            except Exception:  # noqa: BLE001
                logger.exception("[EventBus] listener for %s failed on %s", sub.pattern, event.name)
        return event

    def emit_error(self, record: "ErrorRecord") -> None:
        payload = {
            "code": record.code,
            "message": record.message,
            "level": record.level.value,
            "context": dict(record.context),
        }
        self.emit(EventKind.ERROR, payload)
        self.emit(EventKind.ERROR_LEVEL, payload, subject=record.level.value)
        self.emit(EventKind.ERROR_CODE, payload, subject=record.code)

    def get_history(self, pattern: Optional[str] = None, limit: Optional[int] = None) -> List[Event]:
        if self._history is None:
            return []
        events = [e for e in self._history if pattern is None or event_matcher.matches(pattern, e.name)]
        return events[-limit:] if limit else events

    def _match(self, name: str) -> List[_Subscription]:
        parents = set(event_matcher.namespace_parents(name))
        matched = [
            sub
            for sub in self._subscriptions
            if sub.pattern == name
            or sub.pattern in parents
            or (event_matcher.is_pattern(sub.pattern) and event_matcher.matches(sub.pattern, name))
        ]
        matched.sort(key=lambda sub: (-sub.priority, sub.order))
        return matched
