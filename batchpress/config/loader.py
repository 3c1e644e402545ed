import yaml
from pathlib import Path
from .models import AppConfig, default_presets


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Presets given in YAML extend (or override) the built-in registry
    presets = data.get("presets")
    if isinstance(presets, dict):
        merged = {key: value.model_dump() for key, value in default_presets().items()}
        for preset_id, preset in presets.items():
            if isinstance(preset, dict) and preset_id in merged:
                base = merged[preset_id]
                params = {**base.get("params", {}), **(preset.get("params") or {})}
                merged[preset_id] = {**base, **preset, "params": params}
            else:
                merged[preset_id] = preset
        data["presets"] = merged

    return AppConfig(**data)
