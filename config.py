import os

import yaml

from settings_schema import SettingsSchema, validate_settings

APP_VERSION = "1.0.0"

ENV_OVERRIDES = {
    "FITTRACKER_DB_PATH": "db_path",
    "FITTRACKER_DRAFT_CACHE": "draft_cache_path",
    "FITTRACKER_LOG_LEVEL": "log_level",
}


class YamlConfig:
    """Load and save a mapping to a YAML file."""

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> dict:
        if not self.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a mapping")
        return data

    def save(self, data: dict) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(dict(data), f, sort_keys=False)

    def clear(self) -> None:
        if self.exists():
            os.remove(self.path)


def load_settings(path: str = "settings.yaml") -> SettingsSchema:
    """Read settings from ``path`` and apply ``FITTRACKER_*`` overrides."""
    data = YamlConfig(path).load()
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data[key] = value
    return validate_settings(data)
