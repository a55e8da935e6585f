import pytest

from werewolf_gm.core.errors import ErrorCode, GameError
from werewolf_gm.core.events import EventBus
from werewolf_gm.core.game_config import default_game_config
from werewolf_gm.core.models import NEEDS_RUNOFF
from werewolf_gm.engine.game_engine import GameEngine
from werewolf_gm.players.roster import PlayerRoster
from werewolf_gm.roles.definitions import ROLE_CATALOG, RoleDefinition
from werewolf_gm.roles.role_book import RoleBook

ROLES = {
    0: "seer",
    1: "knight",
    2: "werewolf",
    3: "fox",
    4: "villager",
    5: "villager",
    6: "villager",
}


def _make_engine(roles=None, overrides=None, **engine_options) -> tuple[GameEngine, PlayerRoster]:
    roles = roles or ROLES
    roster = PlayerRoster.from_names([f"P{i}" for i in range(len(roles))])
    config = default_game_config(overrides=overrides, seed=7, **engine_options)
    engine = GameEngine(roster, RoleBook(roles), config=config, bus=EventBus(history_limit=1000))
    return engine, roster


def _make_night_game(roles=None, overrides=None, **engine_options) -> tuple[GameEngine, PlayerRoster]:
    engine, roster = _make_engine(roles, overrides, **engine_options)
    engine.start()
    engine.move_to_phase("night")
    return engine, roster


def _advance_to_next_night(engine: GameEngine) -> None:
    assert engine.next_phase().id == "day"
    assert engine.next_phase().id == "vote"
    assert engine.next_phase().id == "execution"
    assert engine.next_phase().id == "night"


def test_start_enters_preparation_and_emits_event() -> None:
    engine, _ = _make_engine()
    phase = engine.start()

    assert phase.id == "preparation"
    assert engine.state.started is True
    assert engine.bus.get_history("game.started")[-1]["players"] == 7

    with pytest.raises(GameError) as exc_info:
        engine.start()
    assert exc_info.value.code == ErrorCode.GAME_ALREADY_STARTED


def test_start_requires_minimum_players() -> None:
    engine, _ = _make_engine(roles={0: "werewolf", 1: "villager"})
    with pytest.raises(GameError) as exc_info:
        engine.start()
    assert exc_info.value.code == ErrorCode.INSUFFICIENT_PLAYERS


def test_operations_are_gated_on_game_and_phase() -> None:
    engine, _ = _make_engine()
    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "fortune", "actor": 0, "target": 4})
    assert exc_info.value.code == ErrorCode.GAME_NOT_STARTED

    engine.start()
    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "fortune", "actor": 0, "target": 4})
    assert exc_info.value.code == ErrorCode.INVALID_PHASE_FOR_OPERATION

    with pytest.raises(GameError) as exc_info:
        engine.execute_actions()
    assert exc_info.value.code == ErrorCode.INVALID_PHASE_FOR_OPERATION


def test_register_rejects_other_turns() -> None:
    engine, _ = _make_night_game()
    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "fortune", "actor": 0, "target": 4, "turn": 3})
    assert exc_info.value.code == ErrorCode.INVALID_TURN


def test_standard_day_night_cycle() -> None:
    engine, _ = _make_engine()
    engine.start()

    visited = [engine.next_phase().id for _ in range(6)]

    assert visited == ["first_night", "first_day", "vote", "execution", "night", "day"]
    assert engine.state.turn == 2
    assert engine.get_current_state()["phase"] == "day"


def test_runoff_flag_routes_vote_to_runoff() -> None:
    engine, _ = _make_engine()
    engine.start()
    engine.move_to_phase("vote")
    engine.phase_manager.update_phase_context_data({NEEDS_RUNOFF: True})

    assert engine.next_phase().id == "runoff_vote"


def test_seer_fortune_on_fox_curses_it() -> None:
    engine, roster = _make_night_game()
    engine.register_action({"type": "fortune", "actor": 0, "target": 3})
    engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})

    engine.execute_actions()

    fortune_event = engine.bus.get_history("action.fortune.result")[-1]
    assert fortune_event["fox_cursed"] is True
    assert fortune_event["actor_id"] == 0
    assert roster.get_player(3).is_alive is False
    assert roster.get_player(3).death_cause == "fox_curse"
    assert roster.get_player(0).fortune_results == [{"turn": 1, "target_id": 3, "result": "white"}]
    assert roster.get_player(4).death_cause == "werewolf_attack"
    assert engine.state.ended is False


def test_knight_cannot_guard_same_player_two_nights_running() -> None:
    engine, roster = _make_night_game()
    engine.register_action({"type": "guard", "actor": 1, "target": 4})
    engine.register_action({"type": "attack", "actor": 2, "target": 6})
    engine.register_action({"type": "fortune", "actor": 0, "target": 5})
    engine.execute_actions()
    assert roster.get_player(1).guard_history == [{"turn": 1, "target_id": 4}]

    _advance_to_next_night(engine)
    assert engine.state.turn == 2

    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "guard", "actor": 1, "target": 4})
    assert exc_info.value.code == ErrorCode.CONSECUTIVE_GUARD_PROHIBITED

    action = engine.register_action({"type": "guard", "actor": 1, "target": 5})
    assert action.turn == 2


def test_consecutive_guard_allowed_when_regulated() -> None:
    engine, _ = _make_night_game(overrides={"allowConsecutiveGuard": True})
    engine.register_action({"type": "guard", "actor": 1, "target": 4})
    engine.register_action({"type": "attack", "actor": 2, "target": 6})
    engine.register_action({"type": "fortune", "actor": 0, "target": 5})
    engine.execute_actions()
    _advance_to_next_night(engine)

    assert engine.register_action({"type": "guard", "actor": 1, "target": 4}).target == 4


def test_guarded_player_survives_attack() -> None:
    engine, roster = _make_night_game()
    engine.register_action({"type": "guard", "actor": 1, "target": 4})
    attack = engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "fortune", "actor": 0, "target": 5})

    engine.execute_actions()

    assert roster.get_player(4).is_alive is True
    assert attack.result["reason"] == "GUARDED"
    success = engine.bus.get_history("player.guard.success")[-1]
    assert success["player_id"] == 4
    assert success["guard_id"] == 1
    assert engine.bus.get_history("player.guarded")[-1]["player_id"] == 4


def test_guard_flags_reset_each_night() -> None:
    engine, roster = _make_night_game(overrides={"allowConsecutiveGuard": True})
    engine.register_action({"type": "guard", "actor": 1, "target": 4})
    engine.register_action({"type": "attack", "actor": 2, "target": 6})
    engine.register_action({"type": "fortune", "actor": 0, "target": 5})
    engine.execute_actions()
    assert roster.is_guarded(4)

    _advance_to_next_night(engine)
    assert not roster.is_guarded(4)


def test_fox_is_immune_to_attack() -> None:
    engine, roster = _make_night_game()
    attack = engine.register_action({"type": "attack", "actor": 2, "target": 3})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})
    engine.register_action({"type": "fortune", "actor": 0, "target": 6})

    engine.execute_actions()

    assert roster.get_player(3).is_alive is True
    assert attack.result["reason"] == "IMMUNE"
    assert engine.bus.get_history("player.attack.immune")[-1]["player_id"] == 3


def test_attack_on_cursed_fox_reports_failure() -> None:
    engine, roster = _make_night_game()
    engine.register_action({"type": "fortune", "actor": 0, "target": 3})
    engine.register_action({"type": "attack", "actor": 2, "target": 3})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})

    engine.execute_actions()

    failed = engine.bus.get_history("player.attack.failed")[-1]
    assert failed["player_id"] == 3
    assert failed["reason"] == "ALREADY_DEAD"
    assert roster.get_player(3).death_cause == "fox_curse"


def test_idle_night_roles_get_random_actions() -> None:
    engine, roster = _make_night_game()
    engine.execute_actions()

    auto = engine.bus.get_history("action.auto_executed")
    assert sorted(e["actor_id"] for e in auto) == [0, 1, 2]
    actions = engine.action_manager.get_actions_by_turn(1)
    assert all(a.options.get("auto") for a in actions)
    attack = next(a for a in actions if a.type == "attack")
    assert attack.target != 2
    for action in actions:
        assert action.target != action.actor


def test_dead_night_roles_are_not_synthesized() -> None:
    engine, roster = _make_night_game()
    roster.kill_player(0, "execution")
    engine.register_action({"type": "attack", "actor": 2, "target": 4})

    engine.execute_actions()

    actors = {a.actor for a in engine.action_manager.get_actions_by_turn(1)}
    assert 0 not in actors
    assert actors == {1, 2}


def test_first_night_random_white_forces_white_result() -> None:
    engine, _ = _make_night_game(overrides={"firstNightFortune": "random_white"})
    action = engine.register_action({"type": "fortune", "actor": 0, "target": 2})
    engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})

    engine.execute_actions()

    assert action.result["result"] == "white"
    rule = engine.bus.get_history("first_night.fortune.rule")[-1]
    assert rule["rule"] == "random_white"
    assert engine.get_fortune_result(2) == "black"


def test_first_night_random_target_replaces_target() -> None:
    engine, roster = _make_night_game(overrides={"firstNightFortune": "random_target"})
    action = engine.register_action({"type": "fortune", "actor": 0, "target": 0})

    alive = {p.player_id for p in roster.get_alive_players()}
    assert action.target != 0
    assert action.target in alive
    rule = engine.bus.get_history("first_night.fortune.rule")[-1]
    assert rule["requested_target"] == 0
    assert rule["target_id"] == action.target


def test_first_night_rule_only_applies_on_turn_one() -> None:
    engine, _ = _make_night_game(overrides={"firstNightFortune": "random_white"})
    engine.register_action({"type": "fortune", "actor": 0, "target": 4})
    engine.register_action({"type": "attack", "actor": 2, "target": 6})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})
    engine.execute_actions()
    _advance_to_next_night(engine)

    action = engine.register_action({"type": "fortune", "actor": 0, "target": 2})
    assert "force_result" not in action.options
    assert len(engine.bus.get_history("first_night.fortune.rule")) == 1


def test_failed_cycle_rolls_back_to_snapshot(monkeypatch: pytest.MonkeyPatch) -> None:
    engine, roster = _make_night_game()
    engine.register_action({"type": "fortune", "actor": 0, "target": 3})
    engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})
    before = engine.create_state_snapshot()

    def broken(action):
        raise RuntimeError("attack processing failed")

    monkeypatch.setattr(engine, "_process_attack", broken)

    with pytest.raises(RuntimeError):
        engine.execute_actions()

    assert engine.create_state_snapshot() == before
    assert roster.get_player(3).is_alive is True
    assert engine.action_manager.get_pending_actions_count(1) == 3


def test_victory_ends_game_after_night() -> None:
    engine, roster = _make_night_game(roles={0: "villager", 1: "werewolf", 2: "villager"})
    engine.register_action({"type": "attack", "actor": 1, "target": 2})

    engine.execute_actions()

    assert engine.state.ended is True
    assert engine.state.phase == "game_end"
    assert engine.state.winner == "werewolf"
    assert engine.state.winning_players == [1]
    assert engine.bus.get_history("game.end")[-1]["winner"] == "werewolf"
    assert engine.state.last_death == {"player_id": 2, "cause": "werewolf_attack", "turn": 1}

    with pytest.raises(GameError) as exc_info:
        engine.next_phase()
    assert exc_info.value.code == ErrorCode.GAME_ALREADY_ENDED


def test_manual_move_to_game_end_records_state() -> None:
    engine, _ = _make_engine()
    engine.start()
    engine.move_to_phase("game_end")

    assert engine.state.ended is True
    assert engine.state.winner is None
    assert engine.state.win_reason == "ended by game master"


def test_abort_cancels_pending_actions() -> None:
    engine, _ = _make_night_game()
    action = engine.register_action({"type": "fortune", "actor": 0, "target": 4})

    engine.abort("host left")

    assert action.cancelled is True
    assert engine.state.abnormal_end is True
    assert engine.bus.get_history("game.abnormal_end")
    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "guard", "actor": 1, "target": 4})
    assert exc_info.value.code == ErrorCode.GAME_ALREADY_ENDED


def test_cancel_action_offers_alternatives() -> None:
    engine, _ = _make_night_game()
    action = engine.register_action({"type": "attack", "actor": 2, "target": 4})

    outcome = engine.cancel_action(action.id, "changed target")

    assert outcome["success"] is True
    assert outcome["action_id"] == action.id
    assert 2 not in outcome["alternatives"]
    assert 4 in outcome["alternatives"]
    assert action.cancelled is True

    with pytest.raises(GameError) as exc_info:
        engine.cancel_action("action-999")
    assert exc_info.value.code == ErrorCode.ACTION_NOT_FOUND


def test_action_results_hide_guards_from_targets() -> None:
    engine, _ = _make_night_game()
    engine.register_action({"type": "guard", "actor": 1, "target": 4})
    engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "fortune", "actor": 0, "target": 4})
    engine.execute_actions()

    as_target = engine.get_action_results(4)
    assert sorted(r["type"] for r in as_target) == ["attack", "fortune"]
    assert all(r["perspective"] == "target" for r in as_target)

    knight_view = engine.get_action_results(1, as_target=False)
    assert [r["type"] for r in knight_view] == ["guard"]
    assert engine.get_action_results(1, turn=2) == []


def test_actions_by_turn_validates_range() -> None:
    engine, _ = _make_night_game()
    engine.register_action({"type": "fortune", "actor": 0, "target": 4})

    assert [a["type"] for a in engine.get_actions_by_turn(1)] == ["fortune"]
    with pytest.raises(GameError) as exc_info:
        engine.get_actions_by_turn(2)
    assert exc_info.value.code == ErrorCode.INVALID_TURN
    with pytest.raises(GameError):
        engine.get_actions_by_turn(0)


def test_custom_action_processor_runs_after_builtin_types() -> None:
    catalog = dict(ROLE_CATALOG)
    catalog["hunter"] = RoleDefinition("hunter", "village", night_action="track")
    roles = {**ROLES, 6: "hunter"}
    roster = PlayerRoster.from_names([f"P{i}" for i in range(len(roles))])
    engine = GameEngine(
        roster,
        RoleBook(roles, catalog=catalog),
        config=default_game_config(seed=7),
        bus=EventBus(history_limit=1000),
    )
    engine.action_manager.register_action_type("track", priority=10, display_name="Track")
    seen = []
    engine.register_action_processor("track", lambda action, result: seen.append((action.target, roster.get_player(4).is_alive)))

    engine.start()
    engine.move_to_phase("night")
    engine.register_action({"type": "track", "actor": 6, "target": 2})
    engine.register_action({"type": "attack", "actor": 2, "target": 4})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})
    engine.register_action({"type": "fortune", "actor": 0, "target": 5})
    engine.execute_actions()

    assert seen == [(2, False)]
    assert engine.bus.get_history("action.track.result")[-1]["actor_id"] == 6


def test_second_execution_in_same_night_does_not_attack_again() -> None:
    roles = {0: "seer", 1: "knight", 2: "werewolf", 3: "werewolf", **{i: "villager" for i in range(4, 10)}}
    engine, roster = _make_night_game(roles=roles)
    engine.register_action({"type": "attack", "actor": 2, "target": 6})
    outvoted = engine.register_action({"type": "attack", "actor": 3, "target": 7})
    engine.register_action({"type": "guard", "actor": 1, "target": 5})
    engine.register_action({"type": "fortune", "actor": 0, "target": 4})

    engine.execute_actions()
    assert outvoted.cancelled is True
    dead = [p.player_id for p in roster.get_all_players() if not p.is_alive]
    assert dead == [6]

    assert engine.execute_actions() == 0
    assert [p.player_id for p in roster.get_all_players() if not p.is_alive] == [6]
    assert not engine.bus.get_history("action.auto_executed")
    executed_attacks = [a for a in engine.action_manager.get_actions_by_turn(1) if a.type == "attack" and a.executed]
    assert len(executed_attacks) == 1

    with pytest.raises(GameError) as exc_info:
        engine.register_action({"type": "attack", "actor": 3, "target": 8})
    assert exc_info.value.code == ErrorCode.ACTION_ALREADY_EXECUTED
