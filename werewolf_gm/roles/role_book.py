from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from werewolf_gm.core.models import FortuneResult, PlayerId
from werewolf_gm.roles.definitions import ROLE_CATALOG, RoleDefinition, get_role_definition


class RoleBook:
    """In-memory role assignments backed by the role catalog."""

    def __init__(
        self,
        assignments: Optional[Mapping[PlayerId, str]] = None,
        catalog: Optional[Mapping[str, RoleDefinition]] = None,
    ) -> None:
        self.catalog: Dict[str, RoleDefinition] = dict(catalog or ROLE_CATALOG)
        self._assignments: Dict[PlayerId, RoleDefinition] = {}
        for player_id, role_name in (assignments or {}).items():
            self.assign(player_id, role_name)

    def assign(self, player_id: PlayerId, role_name: str) -> RoleDefinition:
        definition = self.catalog.get(role_name) or get_role_definition(role_name)
        self._assignments[player_id] = definition
        return definition

    def get_role(self, player_id: PlayerId) -> Optional[RoleDefinition]:
        return self._assignments.get(player_id)

    def can_use_action(self, player_id: PlayerId, action_type: str) -> bool:
        role = self.get_role(player_id)
        return role is not None and role.night_action == action_type

    def get_fortune_result(self, target_id: PlayerId) -> str:
        role = self.get_role(target_id)
        if role is None:
            return FortuneResult.WHITE.value
        return role.fortune_result

    def get_roles_with_night_action(self, turn: int) -> List[Dict[str, Any]]:
        return [
            {"player_id": player_id, "name": role.name, "action_type": role.night_action}
            for player_id, role in sorted(self._assignments.items())
            if role.has_night_action and turn >= role.active_from_turn
        ]

    def players_with_role(self, role_name: str) -> List[PlayerId]:
        return sorted(pid for pid, role in self._assignments.items() if role.name == role_name)

    def assignments(self) -> Dict[PlayerId, str]:
        return {pid: role.name for pid, role in self._assignments.items()}
