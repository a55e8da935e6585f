"""Contracts for the collaborators the engine consumes but does not own."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from werewolf_gm.core.models import PlayerId


@runtime_checkable
class PlayerLike(Protocol):
    player_id: PlayerId
    is_alive: bool


class RoleInfo(Protocol):
    name: str
    team: str


class RoleProvider(Protocol):
    def can_use_action(self, player_id: PlayerId, action_type: str) -> bool: ...

    def get_role(self, player_id: PlayerId) -> Optional[RoleInfo]: ...

    def get_fortune_result(self, target_id: PlayerId) -> str: ...

    def get_roles_with_night_action(self, turn: int) -> List[Dict[str, Any]]: ...


class PlayerProvider(Protocol):
    """Player store. ``set_guard_status``/``is_guarded``/``clear_guard_status``
    and ``export_state``/``restore_state`` are optional; the engine checks for
    them with ``hasattr`` before calling.
    """

    def get_player(self, player_id: PlayerId) -> Optional[PlayerLike]: ...

    def get_alive_players(self) -> Sequence[PlayerLike]: ...

    def kill_player(self, player_id: PlayerId, cause: str) -> bool: ...


class VictoryChecker(Protocol):
    def check(self) -> Optional[Dict[str, Any]]: ...
