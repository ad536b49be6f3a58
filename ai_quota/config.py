import json
from pathlib import Path
from pydantic import BaseModel
from typing import Dict

DEFAULT_CONFIG_PATH = Path.home() / ".ai_quota_config.json"
DEFAULT_TIMEOUT_SECONDS = 10.0


class ProviderConfig(BaseModel):
    """Configuration for a single provider."""
    enabled: bool = True
    timeout_seconds: float | None = None
    credentials_path: str | None = None
    api_base_url: str | None = None
    token: str | None = None


class Config(BaseModel):
    """Main configuration loaded from JSON file."""
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    providers: Dict[str, ProviderConfig] = {}

    def provider(self, name: str) -> ProviderConfig:
        return self.providers.get(name) or ProviderConfig()

    def timeout_for(self, name: str, override: float | None = None) -> float:
        """Per-call override, then per-provider setting, then the global default."""
        if override is not None:
            return override
        configured = self.provider(name).timeout_seconds
        return configured if configured is not None else self.timeout_seconds


def load_config(config_path: str | None = None) -> Config:
    """Load configuration from JSON file.

    If config_path is not provided, defaults to ~/.ai_quota_config.json and
    falls back to built-in defaults when that file does not exist. Credentials
    normally come from each tool's own local store, so the file is optional.
    """
    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        if not path.exists():
            return Config()
    else:
        path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return Config.model_validate(data)
