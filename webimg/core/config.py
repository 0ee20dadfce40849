"""Application configuration (Pydantic v2). Load from webimg.yml with optional env override."""

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

from webimg.models.entities import DEFAULT_PROFILES, OutputProfile

DEFAULT_CONFIG_ENV_VAR = "WEBIMG_CONFIG"
DEFAULT_CONFIG_FILENAME = "webimg.yml"
ENV_OVERRIDES = {"WEBIMG_INPUT": "input", "WEBIMG_OUTPUT": "output"}


class Settings(BaseModel):
    """
    Run config loaded from YAML.

    When loading the default config, input/output may be overridden by WEBIMG_INPUT/WEBIMG_OUTPUT
    (but not when an explicit config_path is provided). CLI options are applied on top by the caller.
    """

    model_config = {"extra": "ignore"}

    input: str | None = None
    output: str | None = None
    exclude: list[str] = []
    relocate_converted: str | None = None
    dry_run: bool = False
    profiles: list[OutputProfile] = []
    use_custom_profiles: bool = False
    max_workers: int | None = Field(default=None, validate_default=True)
    log_level: str = "WARNING"
    forensics_dir: str | None = None

    @field_validator("max_workers", mode="before")
    @classmethod
    def default_max_workers(cls, v: Any) -> int:
        if v is None or v == "":
            return os.cpu_count() or 4
        n = int(v)
        if n < 1:
            raise ValueError("max_workers must be at least 1")
        return n

    @field_validator("exclude", mode="before")
    @classmethod
    def coerce_exclude(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(p) for p in v]

    def effective_profiles(self) -> list[OutputProfile]:
        """
        Profiles the pipeline renders. Compiled-in defaults are authoritative; configured profiles
        only take effect when use_custom_profiles is set.
        """
        if self.use_custom_profiles and self.profiles:
            return list(self.profiles)
        return list(DEFAULT_PROFILES)

    def resolved_forensics_dir(self) -> Path | None:
        if self.forensics_dir:
            return Path(self.forensics_dir)
        if self.output:
            return Path(self.output) / "logs" / "forensics"
        return None


_config: Settings | None = None


class ConfigLoader:
    """
    Helper responsible for loading Settings from YAML and environment.

    - load_from_yaml(path, apply_env_override): read a YAML file and optionally apply env overrides.
    - load_default(): resolve the default config path from WEBIMG_CONFIG / webimg.yml and
      apply WEBIMG_INPUT / WEBIMG_OUTPUT overrides when present.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def _apply_env(self, data: dict[str, Any]) -> dict[str, Any]:
        for var, key in ENV_OVERRIDES.items():
            if self._env.get(var):
                data[key] = self._env[var]
        return data

    def load_from_yaml(self, path: Path, apply_env_override: bool) -> Settings:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f)
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        if apply_env_override:
            data = self._apply_env(data)
        return Settings.model_validate(data)

    def load_default(self) -> Settings:
        """Load the default Settings, using WEBIMG_CONFIG or webimg.yml when present."""
        path_str = self._env.get(DEFAULT_CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILENAME
        path = Path(path_str)
        if path.exists():
            return self.load_from_yaml(path, apply_env_override=True)
        return Settings.model_validate(self._apply_env({}))


_loader = ConfigLoader()


def get_config(config_path: str | Path | None = None) -> Settings:
    """
    Return singleton config.

    - If config_path is given, load from it (without env overrides) and update the cache.
    - Otherwise, return the cached config if available, or load via ConfigLoader.load_default().
    """
    global _config
    if config_path is not None:
        _config = _loader.load_from_yaml(Path(config_path), apply_env_override=False)
        return _config
    if _config is not None:
        return _config
    _config = _loader.load_default()
    return _config


def set_config(settings: Settings) -> Settings:
    """Replace the cached config (CLI applies option overrides this way)."""
    global _config
    _config = settings
    return _config


def reset_config() -> None:
    """Clear cached config (for tests)."""
    global _config
    _config = None
