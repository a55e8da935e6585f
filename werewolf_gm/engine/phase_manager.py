from __future__ import annotations

import copy
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Union

from werewolf_gm.core.errors import ErrorCode, ErrorReporter
from werewolf_gm.core.events import EventBus, EventKind
from werewolf_gm.core.game_config import Regulations
from werewolf_gm.core.models import (
    DEFAULT_TRANSITION_PRIORITY,
    NEEDS_RUNOFF,
    Phase,
    PhaseContext,
    PhaseId,
    PhaseTransitionRule,
    TurnRecord,
    utcnow,
)
from werewolf_gm.engine.phases import build_standard_transitions, create_standard_phases

logger = logging.getLogger(__name__)

TransitionSpec = Union[PhaseTransitionRule, Mapping[str, Any]]


class PhaseManager:
    """Owns the current phase, the turn counter and the phase history.

    Transitions are data: rules are evaluated in descending priority and the
    first one whose source matches (or is ``*``) and whose condition holds
    wins. Conditions receive this manager, so they can read ``regulations``,
    ``get_phase_context()`` and ``is_victory()``.
    """

    def __init__(
        self,
        bus: EventBus,
        errors: ErrorReporter,
        regulations: Optional[Regulations] = None,
        victory_check: Optional[Callable[[], bool]] = None,
        initial_phase: str = PhaseId.PREPARATION.value,
        initial_turn: int = 1,
        max_history_size: int = 100,
        phases: Optional[Mapping[str, Phase]] = None,
        transitions: Optional[Iterable[TransitionSpec]] = None,
    ) -> None:
        self.bus = bus
        self.errors = errors
        self.regulations = regulations or Regulations()
        self.victory_check = victory_check

        self.phases: Dict[str, Phase] = dict(phases) if phases is not None else create_standard_phases()
        if initial_phase not in self.phases:
            raise self.errors.create_error(
                ErrorCode.INVALID_PHASE,
                f"initial phase {initial_phase} does not exist",
                {"phase_id": initial_phase, "available": sorted(self.phases)},
            )
        self.current_phase: Phase = self.phases[initial_phase]
        self.current_turn = initial_turn if initial_turn and initial_turn > 0 else 1

        self.phase_history: Deque[PhaseContext] = deque(maxlen=max(1, max_history_size))
        self.turn_history: List[TurnRecord] = []
        self.current_context: Optional[PhaseContext] = None

        self.transitions: List[PhaseTransitionRule] = []
        for rule in build_standard_transitions() if transitions is None else transitions:
            self.register_transition(rule)

    def get_current_phase(self) -> Phase:
        return self.current_phase

    def get_current_turn(self) -> int:
        return self.current_turn

    def is_victory(self) -> bool:
        return bool(self.victory_check()) if self.victory_check else False

    def start(self) -> Phase:
        """Enter the initial phase without finalizing anything."""

        self._enter_phase(self.current_phase)
        return self.current_phase

    def move_to_next_phase(self) -> Phase:
        current_id = self.current_phase.id

        if current_id == PhaseId.VOTE.value and PhaseId.RUNOFF_VOTE.value in self.phases:
            context = self.get_phase_context()
            if context is not None and context.data.get(NEEDS_RUNOFF) is True:
                return self.move_to_phase(PhaseId.RUNOFF_VOTE.value)

        for rule in self.transitions:
            if rule.applies_to(current_id) and rule.condition(self):
                return self.move_to_phase(rule.target_phase)

        raise self.errors.create_error(
            ErrorCode.INVALID_PHASE_TRANSITION,
            f"no transition available from phase {current_id}",
            {"current_phase": current_id},
        )

    def move_to_phase(self, target_id: str) -> Phase:
        target = self.phases.get(target_id)
        if target is None:
            raise self.errors.create_error(
                ErrorCode.INVALID_PHASE,
                f"phase {target_id} does not exist",
                {"phase_id": target_id},
            )

        previous_id = self.current_phase.id
        self._finalize_current_phase()
        self.current_phase = target

        if target_id == PhaseId.DAY.value and previous_id == PhaseId.NIGHT.value:
            self._increment_turn()

        logger.info("[Phase] %s -> %s (turn %s)", previous_id, target_id, self.current_turn)
        self._enter_phase(target)
        return target

    def _enter_phase(self, phase: Phase) -> None:
        if phase.on_start is not None:
            phase.on_start(phase, self.current_turn)
        self.bus.emit(
            EventKind.PHASE_START,
            {"phase_id": phase.id, "turn": self.current_turn, "display_name": phase.display_name},
            subject=phase.id,
        )
        self.set_phase_context({})

    def _finalize_current_phase(self) -> None:
        phase = self.current_phase
        if phase.on_end is not None:
            phase.on_end(phase, self.current_turn)
        self.bus.emit(
            EventKind.PHASE_END,
            {"phase_id": phase.id, "turn": self.current_turn, "display_name": phase.display_name},
            subject=phase.id,
        )
        if self.current_context is not None:
            self.current_context.complete()
            self.phase_history.append(self.current_context)
            self.current_context = None

    def _increment_turn(self) -> int:
        previous = self.current_turn
        self.current_turn += 1
        self.turn_history.append(TurnRecord(turn=self.current_turn, previous_turn=previous))
        logger.info("[Phase] turn %s -> %s", previous, self.current_turn)
        payload = {"turn": self.current_turn, "previous_turn": previous}
        self.bus.emit(EventKind.TURN_START, payload)
        self.bus.emit(EventKind.TURN_NEW, payload)
        return self.current_turn

    def set_phase_context(self, data: Mapping[str, Any]) -> PhaseContext:
        self.current_context = PhaseContext(
            phase_id=self.current_phase.id,
            turn=self.current_turn,
            data=dict(data),
        )
        return self.current_context

    def update_phase_context_data(self, partial: Mapping[str, Any]) -> PhaseContext:
        if self.current_context is None:
            return self.set_phase_context(partial)
        self.current_context.data.update(partial)
        return self.current_context

    def get_phase_context(self) -> Optional[PhaseContext]:
        return self.current_context

    def get_previous_phase_context(self) -> Optional[PhaseContext]:
        return self.phase_history[-1] if self.phase_history else None

    def register_phase(self, phase: Phase) -> Phase:
        if not isinstance(phase, Phase) or not phase.id:
            raise self.errors.create_error(ErrorCode.INVALID_PHASE_DEFINITION, "phase must be a Phase with an id")
        if phase.id in self.phases:
            raise self.errors.create_error(
                ErrorCode.DUPLICATE_PHASE,
                f"phase {phase.id} is already registered",
                {"phase_id": phase.id},
            )
        self.phases[phase.id] = phase
        return phase

    def register_transition(self, rule: TransitionSpec) -> PhaseTransitionRule:
        if not isinstance(rule, PhaseTransitionRule):
            source = rule.get("source_phase")
            target = rule.get("target_phase")
            if not source or not target:
                raise self.errors.create_error(
                    ErrorCode.INVALID_TRANSITION_RULE,
                    details={"source_phase": source, "target_phase": target},
                )
            kwargs: Dict[str, Any] = {}
            if rule.get("condition") is not None:
                kwargs["condition"] = rule["condition"]
            priority = rule.get("priority")
            rule = PhaseTransitionRule(
                source_phase=source,
                target_phase=target,
                priority=DEFAULT_TRANSITION_PRIORITY if priority is None else int(priority),
                **kwargs,
            )
        elif not rule.source_phase or not rule.target_phase:
            raise self.errors.create_error(ErrorCode.INVALID_TRANSITION_RULE)

        index = len(self.transitions)
        for i, existing in enumerate(self.transitions):
            if existing.priority < rule.priority:
                index = i
                break
        self.transitions.insert(index, rule)
        return rule

    def get_transitions(self) -> List[PhaseTransitionRule]:
        return list(self.transitions)

    def get_phase_by_id(self, phase_id: str) -> Optional[Phase]:
        return self.phases.get(phase_id)

    def get_phase_history(self, limit: Optional[int] = None) -> List[PhaseContext]:
        history = list(self.phase_history)
        return history[-limit:] if limit else history

    def get_phase_history_by_turn(self, turn: int) -> List[PhaseContext]:
        return [ctx for ctx in self.phase_history if ctx.turn == turn]

    def get_turn_history(self) -> List[TurnRecord]:
        return list(self.turn_history)

    def get_remaining_time(self) -> Optional[float]:
        limit = self.current_phase.time_limit
        if limit is None or self.current_context is None:
            return None
        elapsed = (utcnow() - self.current_context.start_time).total_seconds()
        return max(0.0, limit - elapsed)

    def is_time_limit_reached(self) -> bool:
        remaining = self.get_remaining_time()
        return remaining is not None and remaining <= 0

    def export_state(self) -> Dict[str, Any]:
        return {
            "phase_id": self.current_phase.id,
            "turn": self.current_turn,
            "context": copy.deepcopy(self.current_context),
            "history": copy.deepcopy(list(self.phase_history)),
            "turn_history": copy.deepcopy(self.turn_history),
        }

    def restore_state(self, state: Mapping[str, Any]) -> None:
        self.current_phase = self.phases[state["phase_id"]]
        self.current_turn = int(state["turn"])
        self.current_context = copy.deepcopy(state["context"])
        self.phase_history.clear()
        self.phase_history.extend(copy.deepcopy(state["history"]))
        self.turn_history = copy.deepcopy(list(state["turn_history"]))
