"""
Engine configuration loaded from config.yaml.

Non-secret settings live in config.yaml and are validated into an
EngineConfig. Broker credentials never appear here; they come from the
environment (.env, loaded with python-dotenv by the runner).
"""

from pathlib import Path
from typing import Dict, Literal, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from .core.exceptions import ConfigError
from .execution.instruments import InstrumentRegistry, InstrumentSpec

DEFAULT_CONFIG_PATH = Path("config.yaml")


class EngineConfig(BaseModel):
    """
    Validated engine settings.

    Examples:
        >>> config = EngineConfig()
        >>> config.environment, config.missed_task_policy
        ('practice', 'fire')
        >>> config.build_registry().pip_size("USD_JPY")
        0.01
    """

    model_config = {"frozen": True, "extra": "forbid"}

    environment: Literal["practice", "live"] = "practice"
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    missed_task_policy: Literal["fire", "skip"] = "fire"
    store_path: str = Field(default="data/scheduled_tasks.db", min_length=1)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    log_level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_dir: str = "logs"
    instruments: Dict[str, InstrumentSpec] = Field(default_factory=dict)

    def build_registry(self) -> InstrumentRegistry:
        """Instrument registry with this config's per-instrument overrides."""
        return InstrumentRegistry(self.instruments)


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> EngineConfig:
    """
    Load and validate config.yaml.

    An empty file yields the defaults.

    Raises:
        ConfigError: If the file is missing, not valid YAML, not a mapping,
            or holds invalid values
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(raw).__name__}")

    try:
        return EngineConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
