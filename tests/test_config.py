# Copyright (c) 2025 Stephen Clau
#
# This file is part of File Source Agent.
#
# File Source Agent is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Tests for config.py.

Covers:
- SourceConfig per-source validation
- Config cross-source validation (shared paths and state files)
- load_config() from environment + sources.yml
- validate_config() filesystem checks
- get_config_value() and the safe conversion helpers
- Environment variable expansion in sources.yml values
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

from config import (
    Config,
    ConfigurationError,
    SourceConfig,
    _expand_env_vars,
    _safe_float,
    _safe_int,
    get_config_value,
    load_config,
    validate_config,
)


# ======================================================================
# Global fixtures
# ======================================================================


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from real environment and filesystem."""
    monkeypatch.chdir(tmp_path)
    for key in [
        "CONFIG_DIR",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "HEALTH_CHECK_HOST",
        "HEALTH_CHECK_PORT",
        "LOG_DIR",
        "STATE_DIR",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def write_sources(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Write a sources.yml under tmp_path and point CONFIG_DIR at it."""

    def _write(data: Any) -> Path:
        path = tmp_path / "sources.yml"
        if isinstance(data, str):
            path.write_text(data)
        else:
            path.write_text(yaml.safe_dump(data))
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        return path

    return _write


def _source(tag: str = "app", **overrides: Any) -> SourceConfig:
    options: Dict[str, Any] = {"tag": tag, "path": Path(f"/var/log/{tag}.log")}
    options.update(overrides)
    return SourceConfig(**options)


# ======================================================================
# get_config_value
# ======================================================================


class TestGetConfigValue:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")

        assert get_config_value("LOG_LEVEL", default="info") == "debug"

    def test_uses_default_when_not_found(self) -> None:
        assert get_config_value("LOG_LEVEL", default="info") == "info"

    def test_returns_none_when_optional(self) -> None:
        assert get_config_value("LOG_LEVEL") is None

    def test_empty_string_is_a_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTH_CHECK_HOST", "")

        assert get_config_value("HEALTH_CHECK_HOST", default="0.0.0.0") == ""


# ======================================================================
# Conversion helpers
# ======================================================================


class TestSafeConversions:
    def test_int_from_string(self) -> None:
        assert _safe_int("8081", "port", 8080) == 8081

    def test_int_default_for_none(self) -> None:
        assert _safe_int(None, "port", 8080) == 8080

    @pytest.mark.parametrize("value", ["abc", True, 1.5, [1]])
    def test_int_rejects(self, value: Any) -> None:
        with pytest.raises(ConfigurationError):
            _safe_int(value, "port", 8080)

    def test_float_from_int_and_string(self) -> None:
        assert _safe_float(2, "interval", 0.5) == 2.0
        assert _safe_float("0.25", "interval", 0.5) == 0.25

    @pytest.mark.parametrize("value", ["fast", False, {}])
    def test_float_rejects(self, value: Any) -> None:
        with pytest.raises(ConfigurationError):
            _safe_float(value, "interval", 0.5)


class TestExpandEnvVars:
    def test_expands_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_DIR", "/srv/logs")

        assert _expand_env_vars("${LOG_DIR}/app.log") == "/srv/logs/app.log"

    def test_unknown_variable_left_alone(self) -> None:
        assert _expand_env_vars("${NOPE_NOT_SET}/x") == "${NOPE_NOT_SET}/x"

    def test_non_string_passthrough(self) -> None:
        assert _expand_env_vars(42) == 42


# ======================================================================
# SourceConfig
# ======================================================================


class TestSourceConfig:
    def test_defaults(self) -> None:
        source = _source()

        assert source.decoder == "utf8"
        assert source.state_file is None
        assert source.interval == 0.5
        assert source.initial_position == "beginning"

    def test_coerces_paths(self) -> None:
        source = _source(path="/var/log/app.log", state_file="/var/lib/app.state")

        assert source.path == Path("/var/log/app.log")
        assert source.state_file == Path("/var/lib/app.state")

    def test_normalises_initial_position(self) -> None:
        assert _source(initial_position="END").initial_position == "end"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"tag": ""},
            {"tag": "has space"},
            {"path": ""},
            {"decoder": ""},
            {"interval": 0},
            {"interval": -1},
            {"initial_position": "middle"},
        ],
    )
    def test_rejects_invalid(self, overrides: Dict[str, Any]) -> None:
        with pytest.raises(ConfigurationError):
            _source(**overrides)


# ======================================================================
# Config
# ======================================================================


class TestConfig:
    def test_requires_sources(self) -> None:
        with pytest.raises(ConfigurationError, match="REQUIRED"):
            Config(sources={})

    def test_rejects_two_sources_on_one_file(self) -> None:
        with pytest.raises(ConfigurationError, match="same file"):
            Config(
                sources={
                    "a": _source("a", path=Path("/var/log/x.log")),
                    "b": _source("b", path=Path("/var/log/x.log")),
                }
            )

    def test_rejects_shared_state_file(self) -> None:
        with pytest.raises(ConfigurationError, match="share state_file"):
            Config(
                sources={
                    "a": _source("a", state_file=Path("/var/lib/agent.state")),
                    "b": _source("b", state_file=Path("/var/lib/agent.state")),
                }
            )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"log_level": "verbose"},
            {"log_format": "xml"},
            {"health_check_port": 0},
            {"health_check_port": 70000},
        ],
    )
    def test_rejects_invalid_process_settings(self, overrides: Dict[str, Any]) -> None:
        with pytest.raises(ConfigurationError):
            Config(sources={"app": _source()}, **overrides)


# ======================================================================
# load_config
# ======================================================================


class TestLoadConfig:
    def test_missing_sources_yml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))

        with pytest.raises(FileNotFoundError, match="sources.yml"):
            load_config()

    def test_loads_sources_and_defaults(self, write_sources, tmp_path: Path) -> None:
        write_sources(
            {
                "sources": {
                    "app": {"path": str(tmp_path / "app.log")},
                    "access": {
                        "path": str(tmp_path / "access.log"),
                        "decoder": "json",
                        "state_file": str(tmp_path / "access.state"),
                        "interval": 1,
                        "initial_position": "end",
                    },
                }
            }
        )

        config = load_config()

        assert set(config.sources) == {"app", "access"}
        access = config.sources["access"]
        assert access.decoder == "json"
        assert access.state_file == tmp_path / "access.state"
        assert access.interval == 1.0
        assert access.initial_position == "end"
        assert config.sources["app"].state_file is None
        assert config.health_check_port == 8080
        assert config.log_level == "info"
        assert config.log_format == "console"

    def test_expands_environment_in_paths(
        self, write_sources, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LOG_DIR", "/srv/logs")
        monkeypatch.setenv("STATE_DIR", "/srv/state")
        write_sources(
            {
                "sources": {
                    "app": {
                        "path": "${LOG_DIR}/app.log",
                        "state_file": "${STATE_DIR}/app.state",
                    }
                }
            }
        )

        source = load_config().sources["app"]

        assert source.path == Path("/srv/logs/app.log")
        assert source.state_file == Path("/srv/state/app.state")

    def test_process_settings_from_environment(
        self, write_sources, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_sources({"sources": {"app": {"path": "/var/log/app.log"}}})
        monkeypatch.setenv("HEALTH_CHECK_HOST", "127.0.0.1")
        monkeypatch.setenv("HEALTH_CHECK_PORT", "9090")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = load_config()

        assert config.health_check_host == "127.0.0.1"
        assert config.health_check_port == 9090
        assert config.log_level == "debug"
        assert config.log_format == "json"

    def test_invalid_port_in_environment(
        self, write_sources, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_sources({"sources": {"app": {"path": "/var/log/app.log"}}})
        monkeypatch.setenv("HEALTH_CHECK_PORT", "eighty")

        with pytest.raises(ConfigurationError):
            load_config()

    @pytest.mark.parametrize(
        "content",
        [
            "",
            "just a string",
            {"other": {}},
            {"sources": ["app"]},
            {"sources": {"app": "not a mapping"}},
            {"sources": {"app": {"decoder": "utf8"}}},
            {"sources": {"app": {"path": "/x.log", "interval": "soon"}}},
        ],
    )
    def test_rejects_bad_structure(self, write_sources, content: Any) -> None:
        write_sources(content)

        with pytest.raises(ConfigurationError):
            load_config()

    def test_invalid_yaml(self, write_sources) -> None:
        write_sources("sources: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_config()


# ======================================================================
# validate_config
# ======================================================================


class TestValidateConfig:
    def test_missing_source_file_is_only_a_warning(self, tmp_path: Path) -> None:
        config = Config(sources={"app": _source(path=tmp_path / "not-there.log")})

        assert validate_config(config) is True

    def test_state_dir_that_is_a_file(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = Config(sources={"app": _source(state_file=blocker / "app.state")})

        assert validate_config(config) is False

    def test_valid_config(self, tmp_path: Path) -> None:
        log = tmp_path / "app.log"
        log.write_text("")
        config = Config(sources={"app": _source(path=log, state_file=tmp_path / "app.state")})

        assert validate_config(config) is True
