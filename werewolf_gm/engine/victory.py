from __future__ import annotations

from typing import Any, Dict, List, Optional

from werewolf_gm.core.models import Team
from werewolf_gm.core.providers import PlayerProvider, RoleProvider
from werewolf_gm.roles.definitions import RoleName


class VictoryJudge:
    """Default win check: no wolves left, or wolves at parity. A living fox steals either win."""

    def __init__(self, players: PlayerProvider, roles: RoleProvider) -> None:
        self.players = players
        self.roles = roles

    def check(self) -> Optional[Dict[str, Any]]:
        alive = list(self.players.get_alive_players())
        wolves: List[Any] = []
        foxes: List[Any] = []
        others: List[Any] = []
        for player in alive:
            role = self.roles.get_role(player.player_id)
            name = getattr(role, "name", None)
            if name == RoleName.WEREWOLF.value:
                wolves.append(player)
            elif name == RoleName.FOX.value:
                foxes.append(player)
            else:
                others.append(player)

        if not wolves:
            winner, reason = Team.VILLAGE.value, "all werewolves are dead"
        elif len(wolves) >= len(others) + len(foxes):
            winner, reason = Team.WEREWOLF.value, "werewolves equal or outnumber the others"
        else:
            return None

        if foxes:
            winner, reason = Team.FOX.value, f"fox survived the {winner} victory"

        return {
            "winner": winner,
            "reason": reason,
            "winning_players": self._team_members(winner),
        }

    def _team_members(self, team: str) -> List[Any]:
        everyone = getattr(self.players, "get_all_players", self.players.get_alive_players)
        members = []
        for player in everyone():
            role = self.roles.get_role(player.player_id)
            if getattr(role, "team", None) == team:
                members.append(player.player_id)
        return members
