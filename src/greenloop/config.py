"""Session configuration loaded from ``greenloop.yaml`` and CLI overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import GreenloopError
from .memory.schema import FixMode
from .tools.checks import DEFAULT_CHECKS, CheckStep, normalise_check_steps

__all__ = [
    "AgentSettings",
    "CISettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "EscalationSettings",
    "OrchestratorConfig",
    "load_config",
]

DEFAULT_CONFIG_NAME = "greenloop.yaml"


class ConfigError(GreenloopError):
    """Raised when the configuration file cannot be read or validated."""

    kind = "config-error"


class SettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AgentSettings(SettingsModel):
    """How the fix agent is launched."""

    command: List[str] = Field(default_factory=lambda: ["claude", "ccp"])
    args: List[str] = Field(default_factory=lambda: ["--dangerously-skip-permissions"])
    timeout: float = Field(default=180.0, gt=0)
    interactive_timeout: float = Field(default=600.0, gt=0)
    expensive_prefix: str = "ultrathink"
    progress_interval: float = Field(default=10.0, ge=0)

    @field_validator("command", mode="before")
    @classmethod
    def _single_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class CISettings(SettingsModel):
    """Pacing of the CI polling phase (seconds)."""

    remote: str = "origin"
    initial_delay: float = Field(default=10.0, ge=0)
    no_run_delay: float = Field(default=10.0, ge=0)
    new_commit_delay: float = Field(default=15.0, ge=0)
    fetch_backoff: float = Field(default=10.0, ge=0)
    run_list_limit: int = Field(default=20, ge=1)
    clock_skew: float = Field(default=120.0, ge=0)
    recent_window: float = Field(default=300.0, ge=0)
    command_timeout: float = Field(default=60.0, gt=0)


class EscalationSettings(SettingsModel):
    threshold: int = Field(default=2, ge=1)
    window_seconds: float = Field(default=300.0, ge=0)
    complexity_threshold: float = Field(default=0.8, ge=0, le=1)


class OrchestratorConfig(SettingsModel):
    """Every knob of a remediation session in one place."""

    max_retries: int = Field(default=3, ge=0)
    max_auto_fixes: int = Field(default=10, ge=0)
    dry_run: bool = False
    cross_repo: bool = False
    seq: bool = False
    workers: int = Field(default=3, ge=1)
    no_verify: bool = False
    force_mode: Optional[FixMode] = None
    interactive: bool = True
    watch_cooldown: float = Field(default=5.0, ge=0)
    checks: List[CheckStep] = Field(default_factory=lambda: list(DEFAULT_CHECKS))
    repositories: List[Path] = Field(default_factory=list)
    data_dir: Optional[Path] = None
    agent: AgentSettings = Field(default_factory=AgentSettings)
    ci: CISettings = Field(default_factory=CISettings)
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)

    @field_validator("checks", mode="before")
    @classmethod
    def _expand_checks(cls, value: Any) -> List[CheckStep]:
        return normalise_check_steps(value)

    def with_overrides(self, **overrides: Any) -> "OrchestratorConfig":
        """Return a copy with every non-``None`` override applied."""

        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        payload = self.model_dump()
        payload.update(updates)
        return OrchestratorConfig.model_validate(payload)


def load_config(path: Path | str | None, *, required: bool = False) -> OrchestratorConfig:
    """Read ``path`` (YAML) into an :class:`OrchestratorConfig`.

    A missing file yields the defaults unless ``required`` is set.
    """

    if path is None:
        return OrchestratorConfig()
    config_path = Path(path)
    if not config_path.exists():
        if required:
            raise ConfigError(f"Config file not found: {config_path}")
        return OrchestratorConfig()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.")

    payload: Dict[str, Any] = dict(data)
    repositories = payload.get("repositories")
    if isinstance(repositories, list):
        payload["repositories"] = [
            (config_path.parent / Path(str(entry))).resolve() for entry in repositories
        ]
    try:
        return OrchestratorConfig.model_validate(payload)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{error}") from error
