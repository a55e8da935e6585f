from werewolf_gm.core.errors import ErrorCode, ErrorReporter, GameError
from werewolf_gm.core.events import Event, EventBus, EventKind
from werewolf_gm.core.game_config import EngineConfig, Regulations, default_game_config
from werewolf_gm.core.models import Action, Phase, PhaseContext, PhaseTransitionRule
from werewolf_gm.engine.action_manager import ActionManager
from werewolf_gm.engine.game_engine import GameEngine
from werewolf_gm.engine.phase_manager import PhaseManager
from werewolf_gm.engine.victory import VictoryJudge
from werewolf_gm.players.roster import Player, PlayerRoster
from werewolf_gm.roles.role_book import RoleBook

__all__ = [
    "Action",
    "ActionManager",
    "EngineConfig",
    "ErrorCode",
    "ErrorReporter",
    "Event",
    "EventBus",
    "EventKind",
    "GameEngine",
    "GameError",
    "Phase",
    "PhaseContext",
    "PhaseManager",
    "PhaseTransitionRule",
    "Player",
    "PlayerRoster",
    "Regulations",
    "RoleBook",
    "VictoryJudge",
    "default_game_config",
]
