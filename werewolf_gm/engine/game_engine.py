from __future__ import annotations

import copy
import logging
import random
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from werewolf_gm.core.errors import ErrorCode, ErrorReporter, GameError
from werewolf_gm.core.events import Event, EventBus, EventKind
from werewolf_gm.core.game_config import EngineConfig, default_game_config
from werewolf_gm.core.models import (
    Action,
    ActionType,
    DeathCause,
    FortuneResult,
    GameState,
    Phase,
    PhaseId,
    PlayerId,
    ResultReason,
    utcnow,
)
from werewolf_gm.core.providers import PlayerProvider, RoleProvider, VictoryChecker
from werewolf_gm.engine.action_manager import ActionManager, is_fortune_cursed
from werewolf_gm.engine.phase_manager import PhaseManager
from werewolf_gm.engine.victory import VictoryJudge
from werewolf_gm.roles.definitions import ROLE_CATALOG, RoleName

logger = logging.getLogger(__name__)

ActionProcessor = Callable[[Action, Dict[str, Any]], None]

RESULT_PROCESSING_ORDER = (ActionType.FORTUNE.value, ActionType.GUARD.value, ActionType.ATTACK.value)


class GameEngine:
    def __init__(
        self,
        players: PlayerProvider,
        roles: RoleProvider,
        config: Optional[EngineConfig] = None,
        bus: Optional[EventBus] = None,
        errors: Optional[ErrorReporter] = None,
        victory: Optional[VictoryChecker] = None,
    ) -> None:
        self.config = config or default_game_config()
        self.regulations = self.config.regulations
        self.bus = bus or EventBus()
        self.errors = errors or ErrorReporter(self.bus)
        self.players = players
        self.roles = roles
        self.victory = victory or VictoryJudge(players, roles)
        self.rng = random.Random(self.config.seed)
        self.state = GameState(turn=self.config.initial_turn)

        self.phase_manager = PhaseManager(
            self.bus,
            self.errors,
            regulations=self.regulations,
            victory_check=lambda: self.check_victory() is not None,
            initial_phase=self.config.initial_phase,
            initial_turn=self.config.initial_turn,
            max_history_size=self.config.max_history_size,
        )
        self.action_manager = ActionManager(
            self.bus,
            self.errors,
            players,
            roles,
            regulations=self.regulations,
            tie_break=self.config.attack_tie_break,
            rng=self.rng,
        )
        self.action_processors: Dict[str, List[ActionProcessor]] = {}

        for phase_id in self.config.action_phases:
            self.bus.on(f"phase.start.{phase_id}", self._clear_guard_flags, priority=100)

    def register_action_processor(self, action_type: str, processor: ActionProcessor) -> None:
        if action_type not in self.action_processors:
            self.action_processors[action_type] = []
        self.action_processors[action_type].append(processor)

    # lifecycle

    def start(self) -> Phase:
        if self.state.started:
            raise self.errors.create_error(ErrorCode.GAME_ALREADY_STARTED)
        alive = list(self.players.get_alive_players())
        if len(alive) < self.config.min_players:
            raise self.errors.create_error(
                ErrorCode.INSUFFICIENT_PLAYERS,
                details={"required": self.config.min_players, "actual": len(alive)},
            )

        self.state.started = True
        self.state.start_time = utcnow()
        phase = self.phase_manager.start()
        self._sync_state()
        logger.info("[Engine] game started with %s players in phase %s", len(alive), phase.id)
        self.bus.emit(EventKind.GAME_STARTED, {"phase_id": phase.id, "turn": self.state.turn, "players": len(alive)})
        return phase

    def next_phase(self) -> Phase:
        self._require_running()
        phase = self.phase_manager.move_to_next_phase()
        self._after_transition(phase)
        return phase

    def move_to_phase(self, phase_id: str) -> Phase:
        self._require_running()
        phase = self.phase_manager.move_to_phase(phase_id)
        self._after_transition(phase)
        return phase

    def _after_transition(self, phase: Phase) -> None:
        self._sync_state()
        if phase.id == PhaseId.GAME_END.value:
            self._finish(self.check_victory())

    def abort(self, reason: str = "aborted") -> None:
        self._require_running()
        self.state.abnormal_end = True
        self.action_manager.abnormal_end = True
        # cancels whatever is still pending for the turn
        self.action_manager.execute_actions(self.phase_manager.current_phase.id, self.phase_manager.current_turn)
        self.state.ended = True
        self.state.end_time = utcnow()
        self.state.win_reason = reason
        logger.warning("[Engine] game aborted on turn %s: %s", self.state.turn, reason)

    def check_victory(self) -> Optional[Dict[str, Any]]:
        return self.victory.check()

    def _finish(self, victory: Optional[Dict[str, Any]]) -> None:
        if self.phase_manager.current_phase.id != PhaseId.GAME_END.value:
            self.phase_manager.move_to_phase(PhaseId.GAME_END.value)
            self._sync_state()

        victory = victory or {}
        self.state.ended = True
        self.state.end_time = utcnow()
        self.state.winner = victory.get("winner")
        self.state.win_reason = victory.get("reason", "ended by game master")
        self.state.winning_players = list(victory.get("winning_players", []))
        logger.info("[Engine] game over on turn %s, winner=%s", self.state.turn, self.state.winner)
        self.bus.emit(
            EventKind.GAME_END,
            {
                "winner": self.state.winner,
                "reason": self.state.win_reason,
                "winning_players": list(self.state.winning_players),
                "turn": self.state.turn,
            },
        )

    # actions

    def register_action(self, request: Mapping[str, Any]) -> Action:
        self._require_action_phase()
        turn = self.phase_manager.current_turn
        data = dict(request)
        if data.get("turn") is not None and int(data["turn"]) != turn:
            raise self.errors.create_error(
                ErrorCode.INVALID_TURN,
                f"actions can only be registered for the current turn {turn}",
                {"turn": data["turn"]},
            )
        data["turn"] = turn

        if turn == 1 and data.get("type") == ActionType.FORTUNE.value:
            data = self._apply_first_night_fortune_rule(data)
        return self.action_manager.register_action(data)

    def _apply_first_night_fortune_rule(self, data: Dict[str, Any]) -> Dict[str, Any]:
        rule = self.regulations.first_night_fortune
        if rule == "free":
            return data

        requested = data.get("target")
        if rule == "random_white":
            options = dict(data.get("options") or {})
            options["force_result"] = FortuneResult.WHITE.value
            data["options"] = options
        elif rule == "random_target":
            candidates = [p.player_id for p in self.players.get_alive_players() if p.player_id != data.get("actor")]
            if candidates:
                data["target"] = self.rng.choice(candidates)

        self.bus.emit(
            EventKind.FIRST_NIGHT_FORTUNE_RULE,
            {"rule": rule, "actor_id": data.get("actor"), "target_id": data.get("target"), "requested_target": requested},
        )
        return data

    def cancel_action(self, action_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        self._require_action_phase()
        action = self.action_manager.get_action(action_id)
        if action is None:
            raise self.errors.create_error(ErrorCode.ACTION_NOT_FOUND, details={"action_id": action_id})
        if action.executed:
            raise self.errors.create_error(ErrorCode.ACTION_ALREADY_EXECUTED, details={"action_id": action_id})

        success = self.action_manager.cancel_action(action_id, reason)
        alternatives = self._candidate_targets(action.actor, action.type, action.turn)
        return {"success": success, "action_id": action_id, "alternatives": alternatives}

    def execute_actions(self) -> int:
        """Run one register -> execute -> process cycle for the current turn.

        Any exception restores the state captured before the cycle and is
        re-raised.
        """

        self._require_action_phase()
        phase_id = self.phase_manager.current_phase.id
        turn = self.phase_manager.current_turn
        snapshot = self.create_state_snapshot()

        try:
            self._synthesize_missing_actions(turn)
            pending_ids = {a.id for a in self.action_manager.get_actions_by_turn(turn) if a.is_executable()}
            executed = self.action_manager.execute_actions(phase_id, turn)
            self._process_results(turn, pending_ids)

            victory = self.check_victory()
            if victory is not None:
                self._finish(victory)
        except Exception:
            self.restore_state_snapshot(snapshot)
            logger.warning("[Engine] action cycle for turn %s failed, state rolled back", turn)
            raise
        return executed

    def _synthesize_missing_actions(self, turn: int) -> None:
        # cancelled and executed actions both count as having acted
        registered = {(a.actor, a.type) for a in self.action_manager.get_actions_by_turn(turn)}
        attack_resolved = self.action_manager.is_attack_resolved(turn)
        for entry in self.roles.get_roles_with_night_action(turn):
            player_id = entry["player_id"]
            action_type = entry.get("action_type") or self._night_action_for(entry.get("name"))
            if action_type is None or (player_id, action_type) in registered:
                continue
            if action_type == ActionType.ATTACK.value and attack_resolved:
                continue
            player = self.players.get_player(player_id)
            if player is None or not player.is_alive:
                continue

            candidates = self._candidate_targets(player_id, action_type, turn)
            if not candidates:
                continue
            try:
                action = self.register_action(
                    {"type": action_type, "actor": player_id, "target": self.rng.choice(candidates), "options": {"auto": True}}
                )
            except GameError as exc:
                logger.warning("[Engine] auto %s for player %s skipped: %s", action_type, player_id, exc)
                continue

            registered.add((player_id, action_type))
            self.bus.emit(
                EventKind.ACTION_AUTO_EXECUTED,
                {"action_id": action.id, "type": action_type, "actor_id": player_id, "target_id": action.target, "turn": turn},
            )

    @staticmethod
    def _night_action_for(role_name: Optional[str]) -> Optional[str]:
        definition = ROLE_CATALOG.get(role_name or "")
        return definition.night_action if definition else None

    def _candidate_targets(self, actor_id: PlayerId, action_type: str, turn: int) -> List[PlayerId]:
        candidates = [p.player_id for p in self.players.get_alive_players() if p.player_id != actor_id]
        if action_type == ActionType.ATTACK.value:
            candidates = [pid for pid in candidates if not self._is_werewolf(pid)]
        elif action_type == ActionType.GUARD.value and not self.regulations.allow_consecutive_guard:
            previous = self.action_manager.get_previous_guard_target(actor_id, turn)
            candidates = [pid for pid in candidates if pid != previous]
        return candidates

    def _is_werewolf(self, player_id: PlayerId) -> bool:
        role = self.roles.get_role(player_id)
        return getattr(role, "name", None) == RoleName.WEREWOLF.value

    # result processing

    def _process_results(self, turn: int, action_ids: Set[str]) -> None:
        executed = [a for a in self.action_manager.get_actions_by_turn(turn) if a.id in action_ids and a.executed]
        for action in executed:
            if action.type == ActionType.FORTUNE.value:
                self._process_fortune(action)
        for action in executed:
            if action.type == ActionType.GUARD.value:
                self._process_guard(action)
        for action in executed:
            if action.type == ActionType.ATTACK.value:
                self._process_attack(action)
        for action in executed:
            if action.type not in RESULT_PROCESSING_ORDER:
                self._process_custom(action)

    def _process_fortune(self, action: Action) -> None:
        result = action.result or {}
        fox_cursed = False
        if result.get("success"):
            fox_cursed = bool(result.get("fox_cursed")) or self._process_fox_curse(action)
            actor = self.players.get_player(action.actor)
            history = getattr(actor, "fortune_results", None)
            if history is not None:
                history.append({"turn": action.turn, "target_id": action.target, "result": result.get("result")})

        self._emit_result(
            action,
            {"success": bool(result.get("success")), "result": result.get("result"), "fox_cursed": fox_cursed},
        )

    def _process_fox_curse(self, action: Action) -> bool:
        target = self.players.get_player(action.target)
        if target is None or not target.is_alive:
            return False
        if not is_fortune_cursed(self.roles.get_role(action.target)):
            return False
        self._kill(action.target, DeathCause.FOX_CURSE.value, action.turn)
        self.bus.emit(EventKind.PLAYER_CURSED, {"player_id": action.target, "by": action.actor, "turn": action.turn})
        return True

    def _process_guard(self, action: Action) -> None:
        result = action.result or {}
        if result.get("success"):
            if hasattr(self.players, "set_guard_status"):
                self.players.set_guard_status(action.target, action.actor)
            actor = self.players.get_player(action.actor)
            history = getattr(actor, "guard_history", None)
            if history is not None:
                history.append({"turn": action.turn, "target_id": action.target})
            self.bus.emit(
                EventKind.PLAYER_GUARDED,
                {"player_id": action.target, "guard_id": action.actor, "turn": action.turn},
            )
        self._emit_result(action, {"success": bool(result.get("success"))})

    def _process_attack(self, action: Action) -> None:
        result = action.result if action.result is not None else {}
        target_id = action.target

        if not result.get("success") or result.get("reason") == ResultReason.ALREADY_DEAD.value:
            reason = result.get("reason", ResultReason.EXECUTION_ERROR.value)
            self.bus.emit(EventKind.PLAYER_ATTACK_FAILED, {"player_id": target_id, "reason": reason, "turn": action.turn})
        elif self._is_guarded(target_id, action.turn):
            result.update(killed=False, reason=ResultReason.GUARDED.value)
            self.bus.emit(
                EventKind.PLAYER_GUARD_SUCCESS,
                {"player_id": target_id, "guard_id": self._guard_of(target_id, action.turn), "turn": action.turn},
            )
        elif getattr(self.roles.get_role(target_id), "attack_immune", False):
            result.update(killed=False, reason=ResultReason.IMMUNE.value)
            self.bus.emit(EventKind.PLAYER_ATTACK_IMMUNE, {"player_id": target_id, "turn": action.turn})
        else:
            self._kill(target_id, DeathCause.ATTACK.value, action.turn)
            result.update(killed=True)
            self.bus.emit(EventKind.PLAYER_ATTACK_SUCCESS, {"player_id": target_id, "turn": action.turn})

        action.result = result
        self._emit_result(action, {"success": bool(result.get("success")), "killed": bool(result.get("killed")), "reason": result.get("reason")})

    def _process_custom(self, action: Action) -> None:
        result = action.result or {}
        for processor in self.action_processors.get(action.type, []):
            processor(action, result)
        self._emit_result(action, dict(result))

    def _emit_result(self, action: Action, payload: Dict[str, Any]) -> None:
        payload.update(action_id=action.id, actor_id=action.actor, target_id=action.target, turn=action.turn)
        self.bus.emit(EventKind.ACTION_RESULT, payload, subject=action.type)

    def _is_guarded(self, player_id: PlayerId, turn: int) -> bool:
        if hasattr(self.players, "is_guarded"):
            return bool(self.players.is_guarded(player_id))
        return self._guard_of(player_id, turn) is not None

    def _guard_of(self, player_id: PlayerId, turn: int) -> Optional[PlayerId]:
        for action in self.action_manager.get_actions_by_turn(turn):
            if (
                action.type == ActionType.GUARD.value
                and action.target == player_id
                and action.executed
                and (action.result or {}).get("success")
            ):
                return action.actor
        return None

    def _kill(self, player_id: PlayerId, cause: str, turn: int) -> None:
        if not self.players.kill_player(player_id, cause):
            return
        self.state.last_death = {"player_id": player_id, "cause": cause, "turn": turn}
        logger.info("[Engine] player %s died (%s) on turn %s", player_id, cause, turn)
        self.bus.emit(EventKind.PLAYER_DEATH, {"player_id": player_id, "cause": cause, "turn": turn})

    def _clear_guard_flags(self, _: Event) -> None:
        if hasattr(self.players, "clear_guard_status"):
            self.players.clear_guard_status()

    # queries

    def get_action_results(
        self,
        player_id: PlayerId,
        as_actor: bool = True,
        as_target: bool = True,
        turn: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        results = []
        for action in self.action_manager.actions:
            if not action.executed or (turn is not None and action.turn != turn):
                continue
            if as_actor and action.actor == player_id:
                entry = action.to_dict()
                entry["perspective"] = "actor"
                results.append(entry)
            elif as_target and action.target == player_id and action.type != ActionType.GUARD.value:
                entry = action.to_dict()
                entry["perspective"] = "target"
                results.append(entry)
        results.sort(key=lambda entry: entry["turn"])
        return results

    def get_actions_by_turn(self, turn: int) -> List[Dict[str, Any]]:
        if turn < 1 or turn > self.phase_manager.current_turn:
            raise self.errors.create_error(
                ErrorCode.INVALID_TURN,
                details={"turn": turn, "current_turn": self.phase_manager.current_turn},
            )
        return [a.to_dict() for a in self.action_manager.get_actions_by_turn(turn)]

    def get_fortune_result(self, target_id: PlayerId) -> str:
        if self.players.get_player(target_id) is None:
            raise self.errors.create_error(ErrorCode.PLAYER_NOT_FOUND, details={"player_id": target_id})
        return self.roles.get_fortune_result(target_id)

    def get_current_state(self) -> Dict[str, Any]:
        phase = self.phase_manager.current_phase
        return {
            "started": self.state.started,
            "ended": self.state.ended,
            "abnormal_end": self.state.abnormal_end,
            "turn": self.phase_manager.current_turn,
            "phase": phase.id,
            "phase_display_name": phase.display_name,
            "winner": self.state.winner,
            "win_reason": self.state.win_reason,
            "winning_players": list(self.state.winning_players),
            "alive_players": [p.player_id for p in self.players.get_alive_players()],
            "pending_actions": self.action_manager.get_pending_actions_count(self.phase_manager.current_turn),
            "last_death": copy.deepcopy(self.state.last_death),
        }

    # snapshots

    def create_state_snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {
            "state": copy.deepcopy(self.state),
            "phases": self.phase_manager.export_state(),
            "actions": self.action_manager.export_state(),
        }
        if hasattr(self.players, "export_state"):
            snapshot["players"] = self.players.export_state()
        return snapshot

    def restore_state_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        self.state = copy.deepcopy(snapshot["state"])
        self.phase_manager.restore_state(snapshot["phases"])
        self.action_manager.restore_state(snapshot["actions"])
        if "players" in snapshot and hasattr(self.players, "restore_state"):
            self.players.restore_state(snapshot["players"])

    # guards

    def _sync_state(self) -> None:
        self.state.phase = self.phase_manager.current_phase.id
        self.state.turn = self.phase_manager.current_turn

    def _require_running(self) -> None:
        if not self.state.started:
            raise self.errors.create_error(ErrorCode.GAME_NOT_STARTED)
        if self.state.ended:
            raise self.errors.create_error(ErrorCode.GAME_ALREADY_ENDED)

    def _require_action_phase(self) -> None:
        self._require_running()
        phase_id = self.phase_manager.current_phase.id
        if phase_id not in self.config.action_phases:
            raise self.errors.create_error(
                ErrorCode.INVALID_PHASE_FOR_OPERATION,
                f"actions are not accepted during {phase_id}",
                {"phase_id": phase_id, "allowed": list(self.config.action_phases)},
            )
