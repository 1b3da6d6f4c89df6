"""Tests for stage definitions."""

from __future__ import annotations

import pytest

from loadramp._internal.errors import ConfigError
from loadramp.dsl.stages import Stage, build_stages, describe_stages


class TestStage:
    def test_of_parses_duration_string(self) -> None:
        stage = Stage.of("2m", 10)
        assert stage.duration == 120.0
        assert stage.target == 10

    def test_zero_duration_rejected(self) -> None:
        with pytest.raises(ConfigError):
            Stage(0.0, 5)

    def test_negative_target_rejected(self) -> None:
        with pytest.raises(ConfigError):
            Stage(10.0, -1)

    def test_bool_target_rejected(self) -> None:
        with pytest.raises(ConfigError):
            Stage(10.0, True)  # type: ignore[arg-type]

    def test_parse_cli_form(self) -> None:
        assert Stage.parse("1m30s:20") == Stage(90.0, 20)

    @pytest.mark.parametrize("bad", ["10", ":5", "30s:x", "30s:"])
    def test_parse_rejects_malformed(self, bad: str) -> None:
        with pytest.raises(ConfigError):
            Stage.parse(bad)

    def test_describe(self) -> None:
        assert Stage.of("2m", 10).describe() == "2m -> 10"


class TestBuildStages:
    def test_accepts_mixed_forms(self) -> None:
        stages = build_stages(
            [
                Stage(60.0, 5),
                ("30s", 10),
                {"duration": "2m", "target": 0},
            ]
        )
        assert stages == [Stage(60.0, 5), Stage(30.0, 10), Stage(120.0, 0)]

    def test_empty_rejected(self) -> None:
        with pytest.raises(ConfigError, match="At least one stage"):
            build_stages([])

    def test_mapping_missing_key(self) -> None:
        with pytest.raises(ConfigError, match="target"):
            build_stages([{"duration": "1m"}])

    def test_describe_stages(self) -> None:
        stages = build_stages([("2m", 10), ("5m", 10), ("2m", 0)])
        assert describe_stages(stages) == "2m -> 10, 5m -> 10, 2m -> 0"
