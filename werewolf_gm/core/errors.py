from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Mapping, Optional, Union

from werewolf_gm.core.models import utcnow

if TYPE_CHECKING:
    from werewolf_gm.core.events import EventBus

logger = logging.getLogger(__name__)


class ErrorLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class ErrorCode(str, Enum):
    INVALID_PLAYER = "INVALID_PLAYER"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    UNAUTHORIZED_ACTION = "UNAUTHORIZED_ACTION"
    INVALID_ACTION_TYPE = "INVALID_ACTION_TYPE"
    INVALID_ACTION_FORMAT = "INVALID_ACTION_FORMAT"
    CONSECUTIVE_GUARD_PROHIBITED = "CONSECUTIVE_GUARD_PROHIBITED"
    INVALID_PHASE_TRANSITION = "INVALID_PHASE_TRANSITION"
    INVALID_PHASE = "INVALID_PHASE"
    DUPLICATE_PHASE = "DUPLICATE_PHASE"
    INVALID_PHASE_DEFINITION = "INVALID_PHASE_DEFINITION"
    INVALID_TRANSITION_RULE = "INVALID_TRANSITION_RULE"
    GAME_NOT_STARTED = "GAME_NOT_STARTED"
    GAME_ALREADY_STARTED = "GAME_ALREADY_STARTED"
    GAME_ALREADY_ENDED = "GAME_ALREADY_ENDED"
    INVALID_PHASE_FOR_OPERATION = "INVALID_PHASE_FOR_OPERATION"
    ACTION_NOT_FOUND = "ACTION_NOT_FOUND"
    ACTION_ALREADY_EXECUTED = "ACTION_ALREADY_EXECUTED"
    INVALID_TURN = "INVALID_TURN"
    ACTION_EXECUTION_ERROR = "ACTION_EXECUTION_ERROR"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    INSUFFICIENT_PLAYERS = "INSUFFICIENT_PLAYERS"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True, slots=True)
class ErrorDefinition:
    message: str
    level: ErrorLevel = ErrorLevel.ERROR


ERROR_CATALOG: Dict[ErrorCode, ErrorDefinition] = {
    ErrorCode.INVALID_PLAYER: ErrorDefinition("player does not exist"),
    ErrorCode.PLAYER_NOT_FOUND: ErrorDefinition("player not found"),
    ErrorCode.UNAUTHORIZED_ACTION: ErrorDefinition("player is not allowed to perform this action"),
    ErrorCode.INVALID_ACTION_TYPE: ErrorDefinition("unsupported action type"),
    ErrorCode.INVALID_ACTION_FORMAT: ErrorDefinition("malformed action request"),
    ErrorCode.CONSECUTIVE_GUARD_PROHIBITED: ErrorDefinition(
        "guarding the same target on consecutive nights is prohibited"
    ),
    ErrorCode.INVALID_PHASE_TRANSITION: ErrorDefinition("no transition is available from the current phase"),
    ErrorCode.INVALID_PHASE: ErrorDefinition("phase does not exist"),
    ErrorCode.DUPLICATE_PHASE: ErrorDefinition("phase id is already registered"),
    ErrorCode.INVALID_PHASE_DEFINITION: ErrorDefinition("phase definition is invalid"),
    ErrorCode.INVALID_TRANSITION_RULE: ErrorDefinition("transition rule requires source and target phases"),
    ErrorCode.GAME_NOT_STARTED: ErrorDefinition("game has not started"),
    ErrorCode.GAME_ALREADY_STARTED: ErrorDefinition("game has already started", ErrorLevel.WARNING),
    ErrorCode.GAME_ALREADY_ENDED: ErrorDefinition("game has already ended", ErrorLevel.WARNING),
    ErrorCode.INVALID_PHASE_FOR_OPERATION: ErrorDefinition("operation is not allowed in the current phase"),
    ErrorCode.ACTION_NOT_FOUND: ErrorDefinition("action not found"),
    ErrorCode.ACTION_ALREADY_EXECUTED: ErrorDefinition("action has already been executed"),
    ErrorCode.INVALID_TURN: ErrorDefinition("invalid turn number"),
    ErrorCode.ACTION_EXECUTION_ERROR: ErrorDefinition("action execution failed"),
    ErrorCode.INVALID_CONFIGURATION: ErrorDefinition("invalid configuration"),
    ErrorCode.INSUFFICIENT_PLAYERS: ErrorDefinition("not enough players to start the game"),
    ErrorCode.UNKNOWN_ERROR: ErrorDefinition("unexpected error", ErrorLevel.FATAL),
}


class GameError(ValueError):
    """Validation or state error raised by the engine.

    ``code`` always holds an :class:`ErrorCode`; callers match on it rather
    than on the message text.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
        level: Optional[ErrorLevel] = None,
    ) -> None:
        definition = ERROR_CATALOG[code]
        self.code = code
        self.message = message or definition.message
        self.details: Dict[str, Any] = dict(details or {})
        self.level = level or definition.level
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code.value}] {self.message} | details: {self.details}"
        return f"[{self.code.value}] {self.message}"


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    code: str
    message: str
    level: ErrorLevel
    context: Mapping[str, Any]
    timestamp: datetime


class ErrorReporter:
    def __init__(self, bus: Optional["EventBus"] = None, history_limit: int = 100) -> None:
        self.bus = bus
        self._history: Deque[ErrorRecord] = deque(maxlen=history_limit)
        self._counts: Counter[str] = Counter()

    def create_error(
        self,
        code: Union[ErrorCode, str],
        message: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> GameError:
        return GameError(ErrorCode(code), message, details)

    def handle_error(self, error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ErrorRecord:
        if isinstance(error, GameError):
            code, level = error.code.value, error.level
        else:
            code, level = ErrorCode.ACTION_EXECUTION_ERROR.value, ErrorLevel.ERROR
        record = ErrorRecord(
            code=code,
            message=str(error),
            level=level,
            context=dict(context or {}),
            timestamp=utcnow(),
        )
        self._history.append(record)
        self._counts[code] += 1

        if level in (ErrorLevel.ERROR, ErrorLevel.FATAL):
            logger.error("[Error] %s: %s context=%s", code, record.message, record.context)
        else:
            logger.warning("[Error] %s: %s context=%s", code, record.message, record.context)

        if self.bus is not None:
            self.bus.emit_error(record)
        return record

    def get_error_history(self, limit: Optional[int] = None) -> List[ErrorRecord]:
        history = list(self._history)
        return history[-limit:] if limit else history

    def get_error_count(self, code: Union[ErrorCode, str]) -> int:
        return self._counts[ErrorCode(code).value]
