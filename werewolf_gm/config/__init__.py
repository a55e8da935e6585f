from werewolf_gm.config.config_loader import available_presets, load_engine_defaults, load_regulation_preset
from werewolf_gm.config.config_validator import ConfigValidator

__all__ = ["available_presets", "load_engine_defaults", "load_regulation_preset", "ConfigValidator"]
