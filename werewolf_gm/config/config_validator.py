from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from werewolf_gm.core.errors import ErrorCode, GameError
from werewolf_gm.core.models import PhaseId
from werewolf_gm.core.regulations import build_regulations, regulation_field_name


@dataclass(slots=True)
class ValidationResult:
    ok: bool
    warnings: List[str]
    values: Dict[str, Any] = field(default_factory=dict)


def _invalid(message: str) -> GameError:
    return GameError(ErrorCode.INVALID_CONFIGURATION, message)


class ConfigValidator:
    ENGINE_KEYS = {
        "initial_phase",
        "initial_turn",
        "max_history_size",
        "action_phases",
        "attack_tie_break",
        "seed",
        "min_players",
    }
    ATTACK_TIE_BREAKS = {"first_registered", "random"}

    @classmethod
    def normalize_regulations(cls, regulations: Mapping[str, Any]) -> Dict[str, Any]:
        """Rename camelCase keys to field names so presets and overrides merge cleanly."""
        return {regulation_field_name(key): value for key, value in regulations.items()}

    @classmethod
    def validate_regulations(cls, regulations: Mapping[str, Any]) -> ValidationResult:
        parsed = build_regulations(cls.normalize_regulations(regulations))

        warnings: List[str] = []
        if parsed.execution_rule == "no_execution" and parsed.first_day_execution:
            warnings.append("first_day_execution has no effect when execution_rule is no_execution")
        if parsed.allow_consecutive_guard and parsed.first_night_fortune == "random_white":
            warnings.append("consecutive guard with random_white first night favours the village")

        return ValidationResult(ok=True, warnings=warnings, values=parsed.model_dump())

    @classmethod
    def validate_engine_options(cls, options: Mapping[str, Any]) -> ValidationResult:
        unknown = sorted(set(options) - cls.ENGINE_KEYS)
        if unknown:
            raise _invalid(f"unknown engine options: {unknown}")

        values = dict(options)
        initial_phase = values.get("initial_phase", PhaseId.PREPARATION.value)
        if initial_phase not in {p.value for p in PhaseId}:
            raise _invalid(f"unknown initial_phase: {initial_phase}")
        if int(values.get("initial_turn", 1)) < 1:
            raise _invalid("initial_turn must be >= 1")
        if int(values.get("max_history_size", 100)) < 1:
            raise _invalid("max_history_size must be >= 1")
        if int(values.get("min_players", 3)) < 1:
            raise _invalid("min_players must be >= 1")

        phases = values.get("action_phases", ["night"])
        if isinstance(phases, str) or not phases:
            raise _invalid("action_phases must be a non-empty list of phase ids")
        values["action_phases"] = tuple(str(p) for p in phases)

        tie_break = values.get("attack_tie_break", "first_registered")
        if tie_break not in cls.ATTACK_TIE_BREAKS:
            raise _invalid(f"invalid attack_tie_break: {tie_break}")

        warnings: List[str] = []
        if "first_night" in values["action_phases"]:
            warnings.append("night abilities are enabled on the first night")
        if tie_break == "random" and values.get("seed") is None:
            warnings.append("random attack tie-break without a seed is not reproducible")

        return ValidationResult(ok=True, warnings=warnings, values=values)
