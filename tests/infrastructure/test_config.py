"""Tests for configuration dataclasses and loading."""

from __future__ import annotations

import json

import pytest
import yaml

from due_diligence.infrastructure.config import (
    LLMSettings,
    PipelineConfig,
    RunnerConfig,
    load_config,
)


class TestRunnerConfig:
    """Budgets and validation."""

    def test_defaults(self) -> None:
        config = RunnerConfig()
        assert config.timeout_seconds == 180.0
        assert config.budget().attempts == 2
        assert config.resume_budget().attempts == 1

    @pytest.mark.parametrize(
        "kwargs",
        [{"timeout_seconds": 0}, {"max_retries": 0}, {"resume_max_retries": 0}],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RunnerConfig(**kwargs).validate()

    def test_from_dict_ignores_unknown_keys(self) -> None:
        config = RunnerConfig.from_dict({"timeout_seconds": 30, "colour": "blue"})
        assert config.timeout_seconds == 30


class TestLLMSettings:
    """Provider settings."""

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="provider"):
            LLMSettings(provider="mystery").validate()

    def test_api_key_is_not_serialized(self) -> None:
        settings = LLMSettings(api_key="sk-secret")
        assert "api_key" not in settings.to_dict()

    def test_negative_cost_rejected(self) -> None:
        with pytest.raises(ValueError):
            LLMSettings(input_cost_per_mtok=-1).validate()


class TestPipelineConfig:
    """Top-level config and file loading."""

    def test_round_trip(self) -> None:
        config = PipelineConfig(
            runner=RunnerConfig(timeout_seconds=60, max_retries=3),
            max_concurrency=4,
            max_cost=2.5,
            default_analysis_type="tier1_complete",
        )
        restored = PipelineConfig.from_dict(config.to_dict())
        assert restored == PipelineConfig(
            runner=config.runner,
            llm=LLMSettings(),
            max_concurrency=4,
            max_cost=2.5,
            default_analysis_type="tier1_complete",
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_concurrency": -1},
            {"max_cost": 0},
            {"default_analysis_type": "everything"},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            PipelineConfig(**kwargs).validate()

    def test_load_defaults(self) -> None:
        assert load_config() == PipelineConfig()

    def test_load_yaml(self, tmp_path) -> None:
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "runner": {"timeout_seconds": 45, "max_retries": 3},
                    "llm": {"provider": "openai", "model": "gpt-4o"},
                    "pipeline": {"max_cost": 1.5},
                }
            )
        )
        config = load_config(path)
        assert config.runner.timeout_seconds == 45
        assert config.llm.provider == "openai"
        assert config.max_cost == 1.5

    def test_load_json(self, tmp_path) -> None:
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"pipeline": {"max_concurrency": 2}}))
        assert load_config(path).max_concurrency == 2

    def test_load_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == PipelineConfig()

    def test_load_rejects_non_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_load_validates(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("runner:\n  max_retries: 0\n")
        with pytest.raises(ValueError):
            load_config(path)
