from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from werewolf_gm.config.config_validator import ConfigValidator
from werewolf_gm.core.errors import ErrorCode, GameError

PRESET_FILE = Path(__file__).resolve().parent / "regulations.yaml"


def load_regulation_preset(
    name: str = "standard",
    overrides: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    presets = _load_builtin_file().get("regulation_presets", {})
    node = presets.get(name)
    if node is None:
        raise GameError(
            ErrorCode.INVALID_CONFIGURATION,
            f"regulation preset '{name}' not found",
            {"available": sorted(presets)},
        )

    merged = ConfigValidator.normalize_regulations(node)
    if overrides:
        merged.update(ConfigValidator.normalize_regulations(overrides))

    result = ConfigValidator.validate_regulations(merged)
    return {"preset": name, "regulations": result.values, "warnings": result.warnings}


def load_engine_defaults(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    defaults = dict(_load_builtin_file().get("engine_defaults", {}))
    if overrides:
        defaults.update(overrides)
    result = ConfigValidator.validate_engine_options(defaults)
    return {"options": result.values, "warnings": result.warnings}


def available_presets() -> List[str]:
    return sorted(_load_builtin_file().get("regulation_presets", {}))


def _load_builtin_file() -> Dict[str, Any]:
    raw = yaml.safe_load(PRESET_FILE.read_text(encoding="utf-8"))
    return raw or {}
