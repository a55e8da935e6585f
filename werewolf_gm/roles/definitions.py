from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from werewolf_gm.core.models import ActionType, FortuneResult, Team


class RoleName(str, Enum):
    VILLAGER = "villager"
    WEREWOLF = "werewolf"
    SEER = "seer"
    KNIGHT = "knight"
    MEDIUM = "medium"
    MADMAN = "madman"
    FOX = "fox"


@dataclass(frozen=True, slots=True)
class RoleDefinition:
    name: str
    team: str
    night_action: Optional[str] = None
    fortune_result: str = FortuneResult.WHITE.value
    attack_immune: bool = False
    cursed_by_fortune: bool = False
    active_from_turn: int = 1

    @property
    def has_night_action(self) -> bool:
        return self.night_action is not None


ROLE_CATALOG: Dict[str, RoleDefinition] = {
    RoleName.VILLAGER.value: RoleDefinition(RoleName.VILLAGER.value, Team.VILLAGE.value),
    RoleName.WEREWOLF.value: RoleDefinition(
        RoleName.WEREWOLF.value,
        Team.WEREWOLF.value,
        night_action=ActionType.ATTACK.value,
        fortune_result=FortuneResult.BLACK.value,
    ),
    RoleName.SEER.value: RoleDefinition(RoleName.SEER.value, Team.VILLAGE.value, night_action=ActionType.FORTUNE.value),
    RoleName.KNIGHT.value: RoleDefinition(RoleName.KNIGHT.value, Team.VILLAGE.value, night_action=ActionType.GUARD.value),
    RoleName.MEDIUM.value: RoleDefinition(RoleName.MEDIUM.value, Team.VILLAGE.value),
    # counted with the village for victory, wins with the wolves
    RoleName.MADMAN.value: RoleDefinition(RoleName.MADMAN.value, Team.WEREWOLF.value),
    RoleName.FOX.value: RoleDefinition(
        RoleName.FOX.value,
        Team.FOX.value,
        attack_immune=True,
        cursed_by_fortune=True,
    ),
}


def get_role_definition(name: str) -> RoleDefinition:
    definition = ROLE_CATALOG.get(name)
    if definition is None:
        raise ValueError(f"unknown role: {name}")
    return definition
