"""Tests for environment-driven Settings."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from ensemble_fusion.config import Settings
from ensemble_fusion.constants import StrategyName


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DEFAULT_MODES", "SYNTHESIS_STRATEGY", "MERGE_MAX_FINDINGS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestDefaultModes:
    def test_comma_separated_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFAULT_MODES", "Deductive, bayesian ,")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.default_modes == ["deductive", "bayesian"]

    def test_list_passthrough(self) -> None:
        s = Settings(_env_file=None, default_modes=["deductive"])  # type: ignore[call-arg]
        assert s.default_modes == ["deductive"]

    def test_empty_by_default(self) -> None:
        assert Settings(_env_file=None).default_modes == []  # type: ignore[call-arg]


class TestValidation:
    def test_env_values_are_typed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SYNTHESIS_STRATEGY", "weighted")
        monkeypatch.setenv("MERGE_MAX_FINDINGS", "7")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.synthesis_strategy is StrategyName.WEIGHTED
        assert s.merge_max_findings == 7

    def test_unit_interval_is_clamped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="ensemble_fusion.config"):
            s = Settings(  # type: ignore[call-arg]
                _env_file=None, merge_dedup_threshold=1.5, merge_min_confidence=-0.2
            )
        assert s.merge_dedup_threshold == 1.0
        assert s.merge_min_confidence == 0.0
        assert "event=setting_clamped" in caplog.text

    def test_stream_buffer_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="at least 1"):
            Settings(_env_file=None, stream_buffer_size=0)  # type: ignore[call-arg]

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, synthesis_strategy="vibes")  # type: ignore[call-arg]


class TestConfigBuilders:
    def test_merge_and_synthesis(self) -> None:
        s = Settings(  # type: ignore[call-arg]
            _env_file=None,
            merge_max_findings=5,
            merge_dedup_threshold=0.9,
            synthesis_strategy=StrategyName.MAJORITY,
            synthesis_max_findings=3,
        )
        merge = s.merge_config()
        assert merge.max_findings == 5
        assert merge.dedup_threshold == 0.9
        synthesis = s.synthesis_config()
        assert synthesis.strategy is StrategyName.MAJORITY
        assert synthesis.max_findings == 3

    def test_budget_early_stop_and_cache(self) -> None:
        s = Settings(  # type: ignore[call-arg]
            _env_file=None,
            budget_max_total_tokens=1234,
            early_stop_enabled=True,
            early_stop_window_size=5,
            context_cache_dir="/tmp/packs",
        )
        assert s.budget_config().max_total_tokens == 1234
        early = s.early_stop_config()
        assert early.enabled
        assert early.window_size == 5
        assert s.cache_config().cache_dir == "/tmp/packs"
