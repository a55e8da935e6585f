from __future__ import annotations

from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from werewolf_gm.core.errors import ErrorCode, GameError


class Regulations(BaseModel):
    """Per-game rule toggles. Accepts ``allowConsecutiveGuard`` style keys too."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
        strict=True,
    )

    allow_consecutive_guard: bool = False
    first_night_fortune: Literal["free", "random_white", "random_target"] = "free"
    first_day_execution: bool = True
    execution_rule: Literal["runoff", "random", "no_execution", "all_execution"] = "runoff"


def regulation_field_name(key: str) -> str:
    """Map a camelCase alias to its field name; unknown keys pass through."""
    for name in Regulations.model_fields:
        if key == name or key == to_camel(name):
            return name
    return key


def build_regulations(data: Optional[Mapping[str, Any]] = None) -> Regulations:
    try:
        return Regulations.model_validate(dict(data or {}))
    except ValidationError as exc:
        raise GameError(ErrorCode.INVALID_CONFIGURATION, "invalid regulations", {"errors": exc.errors()}) from exc
