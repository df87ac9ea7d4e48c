"""Tests for settings."""

import pytest
from pydantic import ValidationError

from ralph.loop.config import Settings
from ralph.loop.strategy import StrategyThresholds


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self) -> None:
        """Defaults match the documented thresholds."""
        cfg = Settings.model_validate({})
        assert (cfg.explore_end, cfg.focused_end) == (10, 35)
        assert (cfg.repeated_error_threshold, cfg.stuck_threshold) == (3, 5)
        assert cfg.max_memory_items == 20

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """RALPH_* variables override defaults."""
        monkeypatch.setenv("RALPH_EXPLORE_END", "4")
        monkeypatch.setenv("RALPH_TRACK_PROGRESS", "true")
        cfg = Settings.model_validate({})

        assert cfg.explore_end == 4
        assert cfg.track_progress is True
        assert StrategyThresholds.from_settings(cfg).explore_end == 4

    def test_phase_windows_ordered(self) -> None:
        """Focused cannot end before explore."""
        with pytest.raises(ValidationError, match="RALPH_FOCUSED_END"):
            Settings.model_validate({"RALPH_EXPLORE_END": 20, "RALPH_FOCUSED_END": 10})

    def test_rejects_negative(self) -> None:
        """Thresholds are validated."""
        with pytest.raises(ValidationError):
            Settings.model_validate({"RALPH_STUCK_THRESHOLD": 0})
