from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path


logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "keybard"
CONFIG_FILE = CONFIG_DIR / "engine.json"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class EngineConfig:
    drag_threshold_px: float = 5.0
    # Commit after every edit while a keyboard is connected
    live_updating: bool = False
    typing_binds_key: bool = False
    undo_history: int = 50
    hid_retries: int = 20
    hid_timeout_ms: int = 500
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        config = cls()
        for key, value in data.items():
            if key not in known:
                logger.debug(f"Config: ignoring unknown key '{key}'")
                continue
            setattr(config, key, value)
        return config

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Path | None = None) -> EngineConfig:
    """Load settings from JSON, falling back to defaults if the file is absent or broken."""
    path = path or CONFIG_FILE
    if not path.exists():
        return EngineConfig()
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Config: Failed to load {path}: {e}")
        return EngineConfig()
    if not isinstance(data, dict):
        logger.warning(f"Config: {path} does not hold a JSON object, using defaults")
        return EngineConfig()
    return EngineConfig.from_dict(data)


def save_config(config: EngineConfig, path: Path | None = None) -> None:
    path = path or CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(config.to_dict(), f, indent=2)
    except OSError as e:
        logger.warning(f"Config: Failed to save {path}: {e}")


def configure_logging(config: EngineConfig) -> None:
    level = getattr(logging, str(config.log_level).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
