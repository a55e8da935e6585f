from __future__ import annotations

from typing import Any, Dict, List

from werewolf_gm.core.models import (
    NEEDS_RUNOFF,
    WILDCARD_PHASE,
    ActionType,
    Phase,
    PhaseId,
    PhaseTransitionRule,
    VisibilityPolicy,
)

GAME_END_PRIORITY = 100

_NIGHT_ACTIONS = {ActionType.FORTUNE.value, ActionType.GUARD.value, ActionType.ATTACK.value}

STANDARD_PHASE_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    PhaseId.PREPARATION.value: {
        "display_name": "Preparation",
        "description": "setup before the game starts",
        "allowed_actions": {"setup"},
    },
    PhaseId.FIRST_NIGHT.value: {
        "display_name": "First Night",
        "description": "the opening night",
        "allowed_actions": _NIGHT_ACTIONS,
    },
    PhaseId.FIRST_DAY.value: {
        "display_name": "First Day",
        "description": "the opening day discussion",
        "allowed_actions": {"discuss"},
    },
    PhaseId.VOTE.value: {
        "display_name": "Vote",
        "description": "vote on who to execute",
        "allowed_actions": {"vote"},
        "visibility_policy": VisibilityPolicy(show_votes=True),
    },
    PhaseId.RUNOFF_VOTE.value: {
        "display_name": "Runoff Vote",
        "description": "second vote between tied candidates",
        "allowed_actions": {"vote"},
        "visibility_policy": VisibilityPolicy(show_votes=True),
    },
    PhaseId.EXECUTION.value: {
        "display_name": "Execution",
        "description": "carry out the vote result",
    },
    PhaseId.NIGHT.value: {
        "display_name": "Night",
        "description": "roles use their night abilities",
        "allowed_actions": _NIGHT_ACTIONS,
    },
    PhaseId.DAY.value: {
        "display_name": "Day",
        "description": "daytime discussion",
        "allowed_actions": {"discuss"},
    },
    PhaseId.GAME_END.value: {
        "display_name": "Game End",
        "description": "the game is over and the winner is announced",
        "visibility_policy": VisibilityPolicy(show_roles=True, show_votes=True),
    },
}


def create_standard_phases() -> Dict[str, Phase]:
    return {phase_id: Phase(id=phase_id, **definition) for phase_id, definition in STANDARD_PHASE_DEFINITIONS.items()}


def _first_day_execution(manager: Any) -> bool:
    return bool(manager.regulations.first_day_execution)


def _needs_runoff(manager: Any) -> bool:
    context = manager.get_phase_context()
    return bool(context and context.data.get(NEEDS_RUNOFF))


def _no_victory(manager: Any) -> bool:
    return not manager.is_victory()


def _victory(manager: Any) -> bool:
    return bool(manager.is_victory())


def build_standard_transitions() -> List[PhaseTransitionRule]:
    """Transition table for the standard game; conditions receive the PhaseManager."""

    P = PhaseId
    return [
        PhaseTransitionRule(P.PREPARATION.value, P.FIRST_NIGHT.value),
        PhaseTransitionRule(P.FIRST_NIGHT.value, P.FIRST_DAY.value),
        PhaseTransitionRule(P.FIRST_DAY.value, P.VOTE.value, _first_day_execution),
        PhaseTransitionRule(P.FIRST_DAY.value, P.NIGHT.value, lambda m: not _first_day_execution(m), priority=20),
        PhaseTransitionRule(P.VOTE.value, P.RUNOFF_VOTE.value, _needs_runoff, priority=20),
        PhaseTransitionRule(P.VOTE.value, P.EXECUTION.value, lambda m: not _needs_runoff(m)),
        PhaseTransitionRule(P.RUNOFF_VOTE.value, P.EXECUTION.value),
        PhaseTransitionRule(P.EXECUTION.value, P.NIGHT.value, _no_victory),
        PhaseTransitionRule(P.NIGHT.value, P.DAY.value, _no_victory),
        PhaseTransitionRule(P.DAY.value, P.VOTE.value),
        PhaseTransitionRule(WILDCARD_PHASE, P.GAME_END.value, _victory, priority=GAME_END_PRIORITY),
    ]
