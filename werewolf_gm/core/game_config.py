from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from werewolf_gm.config.config_loader import load_engine_defaults, load_regulation_preset
from werewolf_gm.core.regulations import Regulations, build_regulations


@dataclass(slots=True)
class EngineConfig:
    regulations: Regulations = field(default_factory=Regulations)
    initial_phase: str = "preparation"
    initial_turn: int = 1
    max_history_size: int = 100
    action_phases: Tuple[str, ...] = ("night",)
    attack_tie_break: Literal["first_registered", "random"] = "first_registered"
    seed: Optional[int] = None
    min_players: int = 3
    warnings: List[str] = field(default_factory=list)


def default_game_config(
    preset: str = "standard",
    overrides: Optional[Dict[str, Any]] = None,
    **engine_options: Any,
) -> EngineConfig:
    loaded = load_regulation_preset(preset, overrides)
    engine = load_engine_defaults(engine_options)
    options = engine["options"]
    return EngineConfig(
        regulations=build_regulations(loaded["regulations"]),
        initial_phase=str(options.get("initial_phase", "preparation")),
        initial_turn=int(options.get("initial_turn", 1)),
        max_history_size=int(options.get("max_history_size", 100)),
        action_phases=options.get("action_phases", ("night",)),
        attack_tie_break=options.get("attack_tie_break", "first_registered"),
        seed=options.get("seed"),
        min_players=int(options.get("min_players", 3)),
        warnings=loaded["warnings"] + engine["warnings"],
    )
