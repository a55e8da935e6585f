from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from werewolf_gm.core.models import Action, ActionType, PhaseId

ActionHandler = Callable[[Action], Dict[str, Any]]


@dataclass(frozen=True, slots=True)
class ActionTypeSpec:
    name: str
    priority: int
    display_name: str
    phase: str = PhaseId.NIGHT.value
    handler: Optional[ActionHandler] = None


FORTUNE_PRIORITY = 100
GUARD_PRIORITY = 80
ATTACK_PRIORITY = 60


def create_standard_action_types() -> Dict[str, ActionTypeSpec]:
    return {
        ActionType.FORTUNE.value: ActionTypeSpec(ActionType.FORTUNE.value, FORTUNE_PRIORITY, "Fortune"),
        ActionType.GUARD.value: ActionTypeSpec(ActionType.GUARD.value, GUARD_PRIORITY, "Guard"),
        ActionType.ATTACK.value: ActionTypeSpec(ActionType.ATTACK.value, ATTACK_PRIORITY, "Attack"),
    }
