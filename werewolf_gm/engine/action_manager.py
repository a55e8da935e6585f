from __future__ import annotations

import copy
import logging
import random
from typing import Any, Dict, List, Mapping, Optional

from werewolf_gm.core.errors import ErrorCode, ErrorReporter
from werewolf_gm.core.events import EventBus, EventKind
from werewolf_gm.core.game_config import Regulations
from werewolf_gm.core.models import (
    Action,
    ActionType,
    DeathCause,
    PlayerId,
    ResultReason,
)
from werewolf_gm.core.providers import PlayerProvider, RoleProvider
from werewolf_gm.engine.actions import ActionHandler, ActionTypeSpec, create_standard_action_types

logger = logging.getLogger(__name__)

TIE_BREAK_FIRST_REGISTERED = "first_registered"
TIE_BREAK_RANDOM = "random"


def is_fortune_cursed(role: Any) -> bool:
    if role is None:
        return False
    return bool(getattr(role, "cursed_by_fortune", False)) or getattr(role, "name", None) == "fox"


class ActionManager:
    """Registered night actions for one game.

    Actions are never removed; they end either executed or cancelled.
    """

    def __init__(
        self,
        bus: EventBus,
        errors: ErrorReporter,
        players: PlayerProvider,
        roles: RoleProvider,
        regulations: Optional[Regulations] = None,
        tie_break: str = TIE_BREAK_FIRST_REGISTERED,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bus = bus
        self.errors = errors
        self.players = players
        self.roles = roles
        self.regulations = regulations or Regulations()
        if tie_break not in (TIE_BREAK_FIRST_REGISTERED, TIE_BREAK_RANDOM):
            raise ValueError(f"unknown attack tie-break: {tie_break}")
        self.tie_break = tie_break
        self.rng = rng or random.Random()
        self.action_types: Dict[str, ActionTypeSpec] = create_standard_action_types()
        self.actions: List[Action] = []
        self.abnormal_end = False
        self._sequence = 0

    def register_action_type(
        self,
        name: str,
        priority: int,
        display_name: Optional[str] = None,
        phase: str = "night",
        handler: Optional[ActionHandler] = None,
    ) -> ActionTypeSpec:
        if not name:
            raise self.errors.create_error(ErrorCode.INVALID_ACTION_TYPE, "action type name is required")
        spec = ActionTypeSpec(name=name, priority=int(priority), display_name=display_name or name, phase=phase, handler=handler)
        self.action_types[name] = spec
        return spec

    def get_display_name(self, action_type: str) -> str:
        spec = self.action_types.get(action_type)
        return spec.display_name if spec else action_type

    def register_action(self, data: Mapping[str, Any]) -> Action:
        for key in ("type", "actor", "target", "turn"):
            if data.get(key) is None:
                raise self.errors.create_error(
                    ErrorCode.INVALID_ACTION_FORMAT,
                    f"action field '{key}' is required",
                    {"field": key},
                )
        action_type = str(data["type"])
        actor_id: PlayerId = data["actor"]
        target_id: PlayerId = data["target"]
        try:
            turn = int(data["turn"])
        except (TypeError, ValueError):
            raise self.errors.create_error(
                ErrorCode.INVALID_ACTION_FORMAT,
                f"action turn must be an integer, got {data['turn']!r}",
                {"field": "turn"},
            ) from None

        actor = self.players.get_player(actor_id)
        if actor is None:
            raise self.errors.create_error(
                ErrorCode.INVALID_PLAYER, f"player {actor_id} does not exist", {"player_id": actor_id}
            )
        if self.players.get_player(target_id) is None:
            raise self.errors.create_error(
                ErrorCode.PLAYER_NOT_FOUND, f"target player {target_id} does not exist", {"player_id": target_id}
            )
        if not actor.is_alive:
            raise self.errors.create_error(
                ErrorCode.UNAUTHORIZED_ACTION, f"player {actor_id} is dead and cannot act", {"player_id": actor_id}
            )
        spec = self.action_types.get(action_type)
        if spec is None:
            raise self.errors.create_error(
                ErrorCode.INVALID_ACTION_TYPE, f"unsupported action type: {action_type}", {"type": action_type}
            )
        if not self.roles.can_use_action(actor_id, action_type):
            raise self.errors.create_error(
                ErrorCode.UNAUTHORIZED_ACTION,
                f"player {actor_id} cannot perform {action_type}",
                {"player_id": actor_id, "type": action_type},
            )
        if action_type == ActionType.ATTACK.value and self.is_attack_resolved(turn):
            raise self.errors.create_error(
                ErrorCode.ACTION_ALREADY_EXECUTED,
                f"the werewolf attack for turn {turn} has already been resolved",
                {"player_id": actor_id, "turn": turn},
            )
        if (
            action_type == ActionType.GUARD.value
            and not self.regulations.allow_consecutive_guard
            and self.get_previous_guard_target(actor_id, turn) == target_id
        ):
            raise self.errors.create_error(
                ErrorCode.CONSECUTIVE_GUARD_PROHIBITED,
                details={"player_id": actor_id, "target_id": target_id, "turn": turn},
            )

        self._sequence += 1
        action = Action(
            id=f"action-{self._sequence}",
            type=action_type,
            actor=actor_id,
            target=target_id,
            turn=turn,
            priority=int(data.get("priority", spec.priority)),
            options=dict(data.get("options") or {}),
        )
        self.actions.append(action)
        self.bus.emit(
            EventKind.ACTION_REGISTER,
            {
                "action_id": action.id,
                "type": action.type,
                "actor_id": action.actor,
                "target_id": action.target,
                "turn": action.turn,
            },
        )
        return action

    def execute_action(self, action: Action) -> Dict[str, Any]:
        if not action.is_executable():
            return {"success": False, "reason": ResultReason.NOT_EXECUTABLE.value}

        if self.abnormal_end:
            action.cancel()
            return {"success": False, "reason": ResultReason.GAME_ABORTED.value}

        try:
            result = self._run(action)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[Action] %s (%s) failed", action.id, action.type)
            result = {"success": False, "reason": ResultReason.EXECUTION_ERROR.value, "error": str(exc)}
            action.mark_executed(result)
            self.errors.handle_error(exc, {"action_id": action.id, "type": action.type, "turn": action.turn})
            return result

        action.mark_executed(result)
        self.bus.emit(
            EventKind.ACTION_EXECUTE,
            {
                "action_id": action.id,
                "actor_id": action.actor,
                "target_id": action.target,
                "turn": action.turn,
                "result": dict(result),
            },
            subject=action.type,
        )
        return result

    def _run(self, action: Action) -> Dict[str, Any]:
        if action.type == ActionType.FORTUNE.value:
            return self._run_fortune(action)
        if action.type == ActionType.GUARD.value:
            return self._run_guard(action)
        if action.type == ActionType.ATTACK.value:
            return self._run_attack(action)

        spec = self.action_types.get(action.type)
        if spec is not None and spec.handler is not None:
            return dict(spec.handler(action))
        return {"success": True, "target_id": action.target}

    def _run_fortune(self, action: Action) -> Dict[str, Any]:
        target = self.players.get_player(action.target)
        if target is None:
            return {"success": False, "reason": ResultReason.TARGET_NOT_FOUND.value, "target_id": action.target}
        if not target.is_alive:
            return {"success": False, "reason": ResultReason.ALREADY_DEAD.value, "target_id": action.target}

        outcome = action.options.get("force_result") or self.roles.get_fortune_result(action.target)
        result: Dict[str, Any] = {
            "success": True,
            "target_id": action.target,
            "result": outcome,
            "fox_cursed": False,
        }

        if is_fortune_cursed(self.roles.get_role(action.target)):
            self.players.kill_player(action.target, DeathCause.FOX_CURSE.value)
            result["fox_cursed"] = True
            logger.info("[Action] player %s cursed by fortune of %s", action.target, action.actor)
            self.bus.emit(
                EventKind.PLAYER_CURSED,
                {"player_id": action.target, "by": action.actor, "turn": action.turn},
            )
            self.bus.emit(
                EventKind.PLAYER_DEATH,
                {"player_id": action.target, "cause": DeathCause.FOX_CURSE.value, "turn": action.turn},
            )
        return result

    def _run_guard(self, action: Action) -> Dict[str, Any]:
        target = self.players.get_player(action.target)
        if target is None:
            return {"success": False, "reason": ResultReason.TARGET_NOT_FOUND.value, "target_id": action.target}
        if not target.is_alive:
            return {"success": False, "reason": ResultReason.TARGET_DEAD.value, "target_id": action.target}
        return {"success": True, "guarded": True, "target_id": action.target}

    def _run_attack(self, action: Action) -> Dict[str, Any]:
        # the kill itself is applied by the engine once guard flags are in place
        target = self.players.get_player(action.target)
        if target is None:
            return {"success": False, "reason": ResultReason.TARGET_NOT_FOUND.value, "target_id": action.target}
        if not target.is_alive:
            return {
                "success": True,
                "killed": False,
                "reason": ResultReason.ALREADY_DEAD.value,
                "target_id": action.target,
            }
        return {"success": True, "killed": False, "target_id": action.target}

    def execute_actions(self, phase: Optional[str], turn: int) -> int:
        if self.abnormal_end:
            turn_actions = self.get_actions_by_turn(turn)
            for action in turn_actions:
                if action.is_executable():
                    action.cancel()
            self.bus.emit(
                EventKind.GAME_ABNORMAL_END,
                {"reason": "abnormal_end", "turn": turn, "phase": phase, "actions": len(turn_actions)},
            )
            self.bus.emit(
                EventKind.ACTION_EXECUTE_COMPLETE,
                {"phase": phase, "turn": turn, "executed_count": 0, "aborted": True},
            )
            return 0

        pending = [a for a in self.actions if a.is_executable() and a.turn == turn]
        pending.sort(key=lambda a: -a.priority)

        attacks = [a for a in pending if a.type == ActionType.ATTACK.value]
        if len(attacks) > 1:
            self.process_werewolf_attacks(attacks, turn)

        executed = 0
        for action in pending:
            if action.cancelled:
                continue
            self.execute_action(action)
            executed += 1

        self.bus.emit(
            EventKind.ACTION_EXECUTE_COMPLETE,
            {"phase": phase, "turn": turn, "executed_count": executed},
        )
        return executed

    def process_werewolf_attacks(self, attacks: List[Action], turn: int) -> Optional[PlayerId]:
        """Reduce several attack votes to one target and cancel the rest.

        Ties go to the target whose first vote was registered earliest, or to
        a seeded random pick when the tie-break is ``random``.
        """

        ordered = sorted(attacks, key=self.actions.index)
        votes: Dict[PlayerId, int] = {}
        for action in ordered:
            votes[action.target] = votes.get(action.target, 0) + 1
        if not votes:
            return None

        top = max(votes.values())
        tied = [target for target, count in votes.items() if count == top]
        if len(tied) > 1 and self.tie_break == TIE_BREAK_RANDOM:
            chosen = self.rng.choice(tied)
        else:
            chosen = tied[0]

        # one attack survives: the earliest vote for the chosen target
        kept: Optional[Action] = None
        for action in ordered:
            if action.target == chosen and kept is None:
                kept = action
                continue
            if action.is_executable():
                action.cancel()
                self._emit_cancel(action, "attack_conflict" if action.target != chosen else "duplicate_attack")

        logger.info("[Action] attack target for turn %s resolved to %s votes=%s", turn, chosen, votes)
        self.bus.emit(
            EventKind.WEREWOLF_ATTACK_TARGET,
            {"target_id": chosen, "votes": dict(votes), "tied": tied, "turn": turn},
        )
        return chosen

    def cancel_action(self, action_id: str, reason: Optional[str] = None) -> bool:
        action = self.get_action(action_id)
        if action is None or not action.is_executable():
            return False
        action.cancel()
        self._emit_cancel(action, reason)
        return True

    def _emit_cancel(self, action: Action, reason: Optional[str]) -> None:
        self.bus.emit(
            EventKind.ACTION_CANCEL,
            {
                "action_id": action.id,
                "type": action.type,
                "actor_id": action.actor,
                "target_id": action.target,
                "turn": action.turn,
                "reason": reason,
            },
        )

    def get_action(self, action_id: str) -> Optional[Action]:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def get_action_results(self, player_id: PlayerId) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in self.actions if a.actor == player_id and a.executed]

    def get_registered_actions(self, phase: Optional[str] = None, turn: Optional[int] = None) -> List[Action]:
        actions = self.actions
        if turn is not None:
            actions = [a for a in actions if a.turn == turn]
        if phase is not None:
            actions = [a for a in actions if a.type in self.action_types and self.action_types[a.type].phase == phase]
        return list(actions)

    def get_actions_by_turn(self, turn: int) -> List[Action]:
        return [a for a in self.actions if a.turn == turn]

    def get_actions_for_player(self, player_id: PlayerId) -> List[Action]:
        return [a for a in self.actions if a.actor == player_id]

    def get_pending_actions_count(self, turn: Optional[int] = None) -> int:
        return sum(1 for a in self.actions if a.is_executable() and (turn is None or a.turn == turn))

    def is_action_allowed(self, player_id: PlayerId, action_type: str) -> bool:
        player = self.players.get_player(player_id)
        if player is None or not player.is_alive:
            return False
        if action_type not in self.action_types:
            return False
        return bool(self.roles.can_use_action(player_id, action_type))

    def is_attack_resolved(self, turn: int) -> bool:
        return any(a.type == ActionType.ATTACK.value and a.turn == turn and a.executed for a in self.actions)

    def get_previous_guard_target(self, actor_id: PlayerId, turn: int) -> Optional[PlayerId]:
        for action in reversed(self.actions):
            if (
                action.type == ActionType.GUARD.value
                and action.actor == actor_id
                and action.turn == turn - 1
                and not action.cancelled
            ):
                return action.target
        return None

    def get_fortune_history(self, player_id: PlayerId) -> List[Dict[str, Any]]:
        return [
            {
                "turn": a.turn,
                "target_id": a.target,
                "result": a.result.get("result"),
                "fox_cursed": bool(a.result.get("fox_cursed")),
            }
            for a in self.actions
            if a.type == ActionType.FORTUNE.value and a.actor == player_id and a.executed and a.result and a.result.get("success")
        ]

    def get_guard_history(self, player_id: PlayerId) -> List[Dict[str, Any]]:
        return [
            {"turn": a.turn, "target_id": a.target, "success": bool(a.result.get("success"))}
            for a in self.actions
            if a.type == ActionType.GUARD.value and a.actor == player_id and a.executed and a.result
        ]

    def export_state(self) -> Dict[str, Any]:
        return {
            "actions": copy.deepcopy(self.actions),
            "sequence": self._sequence,
            "abnormal_end": self.abnormal_end,
        }

    def restore_state(self, state: Mapping[str, Any]) -> None:
        self.actions = copy.deepcopy(list(state["actions"]))
        self._sequence = int(state["sequence"])
        self.abnormal_end = bool(state["abnormal_end"])
