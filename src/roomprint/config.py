import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("roomprint.json")

DEFAULT_CONFIG = {
    "chirp_mode": "audible",
    "sample_rate": 48000,
    "volume": 0.8,
    "pre_delay": 0.1,
    "reverb_tail": 1.5,
    "ambient_duration": 3.0,
    "regularization_epsilon": 0.001,
    "include_orientation": True,
}


class ConfigManager:
    @staticmethod
    def load(path: Path | None = None) -> dict[str, Any]:
        path = Path(path) if path is not None else CONFIG_FILE
        if not path.exists():
            return DEFAULT_CONFIG.copy()

        try:
            with open(path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings file must hold a JSON object")
            # Stored keys win; missing keys fall back to defaults
            config = DEFAULT_CONFIG.copy()
            config.update(data)
            return config
        except (OSError, ValueError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return DEFAULT_CONFIG.copy()

    @staticmethod
    def save(data: dict[str, Any], path: Path | None = None) -> None:
        path = Path(path) if path is not None else CONFIG_FILE
        try:
            with open(path, "w") as f:
                json.dump(data, f, indent=4)
            logger.info("Configuration saved to %s", path)
        except OSError as e:
            logger.error("Failed to save config to %s: %s", path, e)
