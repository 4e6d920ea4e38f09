import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Flat "fps" shorthand at the root maps onto the extraction section
    fps = data.pop("fps", None)
    if fps is not None:
        data.setdefault("extraction", {})["frames_per_second"] = fps

    return AppConfig(**data)
