from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from werewolf_gm.core.models import PlayerId


@dataclass(slots=True)
class Player:
    player_id: PlayerId
    name: str
    is_alive: bool = True
    death_cause: Optional[str] = None
    guarded_by: Optional[PlayerId] = None
    fortune_results: List[Dict[str, Any]] = field(default_factory=list)
    guard_history: List[Dict[str, Any]] = field(default_factory=list)


class PlayerRoster:
    def __init__(self, players: Optional[Iterable[Player]] = None) -> None:
        self._players: Dict[PlayerId, Player] = {}
        for player in players or []:
            self._players[player.player_id] = player

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "PlayerRoster":
        return cls(Player(player_id=idx, name=name) for idx, name in enumerate(names))

    def add_player(self, player_id: PlayerId, name: str) -> Player:
        if player_id in self._players:
            raise ValueError("player already registered")
        player = Player(player_id=player_id, name=name)
        self._players[player_id] = player
        return player

    def get_player(self, player_id: PlayerId) -> Optional[Player]:
        return self._players.get(player_id)

    def get_all_players(self) -> List[Player]:
        return [self._players[pid] for pid in sorted(self._players)]

    def get_alive_players(self) -> List[Player]:
        return [p for p in self.get_all_players() if p.is_alive]

    def kill_player(self, player_id: PlayerId, cause: str) -> bool:
        player = self._must_get(player_id)
        if not player.is_alive:
            return False
        player.is_alive = False
        player.death_cause = cause
        player.guarded_by = None
        return True

    def set_guard_status(self, player_id: PlayerId, guard_id: PlayerId) -> None:
        self._must_get(player_id).guarded_by = guard_id

    def is_guarded(self, player_id: PlayerId) -> bool:
        player = self._players.get(player_id)
        return player is not None and player.guarded_by is not None

    def clear_guard_status(self) -> None:
        for player in self._players.values():
            player.guarded_by = None

    def export_state(self) -> Dict[PlayerId, Player]:
        return copy.deepcopy(self._players)

    def restore_state(self, state: Dict[PlayerId, Player]) -> None:
        self._players = copy.deepcopy(state)

    def _must_get(self, player_id: PlayerId) -> Player:
        player = self._players.get(player_id)
        if not player:
            raise ValueError("player not found")
        return player
