from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from greenloop.config import ConfigError, OrchestratorConfig, load_config
from greenloop.memory.schema import FixMode
from greenloop.tools.checks import DEFAULT_CHECKS


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "greenloop.yaml"
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


def test_defaults_match_documented_values() -> None:
    config = OrchestratorConfig()

    assert config.max_retries == 3
    assert config.max_auto_fixes == 10
    assert config.workers == 3
    assert config.interactive
    assert config.checks == list(DEFAULT_CHECKS)
    assert config.agent.command == ["claude", "ccp"]
    assert config.agent.timeout == 180
    assert config.ci.initial_delay == 10
    assert config.escalation.threshold == 2


def test_missing_optional_file_yields_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "greenloop.yaml") == OrchestratorConfig()


def test_missing_required_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "custom.yaml", required=True)


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
        max_retries: 5
        force_mode: expensive
        checks:
          - npm ci
          - name: lint
            command: npm run lint
            timeout: 120
        repositories:
          - ../service-a
          - ../service-b
        agent:
          command: my-agent
          timeout: 90
        ci:
          initial_delay: 0
        """,
    )

    config = load_config(path)

    assert config.max_retries == 5
    assert config.force_mode == FixMode.EXPENSIVE
    assert [step.name for step in config.checks] == ["ci", "lint"]
    assert config.checks[1].argv == ["npm", "run", "lint"]
    assert config.checks[1].timeout == 120
    assert config.repositories == [(tmp_path.parent / "service-a").resolve(), (tmp_path.parent / "service-b").resolve()]
    assert config.agent.command == ["my-agent"]
    assert config.ci.initial_delay == 0


def test_invalid_yaml_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path, "max_retries: [1, 2\n")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(path)


def test_non_mapping_is_reported(tmp_path: Path) -> None:
    path = _write(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


def test_unknown_or_invalid_values_are_reported(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(_write(tmp_path, "max_retires: 3\n"))
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(_write(tmp_path, "workers: 0\n"))


def test_overrides_skip_none_and_revalidate() -> None:
    base = OrchestratorConfig(max_retries=4)

    assert base.with_overrides(max_retries=None, dry_run=None) is base

    updated = base.with_overrides(dry_run=True, force_mode="cheap", interactive=False)
    assert updated.dry_run
    assert updated.force_mode == FixMode.CHEAP
    assert not updated.interactive
    assert updated.max_retries == 4
    assert updated.checks == base.checks
    assert not base.dry_run
