"""Tests for config validation."""

from __future__ import annotations

from pathlib import Path  # noqa: TCH003

import pytest

from skintrader.config.loader import ConfigError, ConfigLoader


def _loader_with(config_dir: Path, old: str, new: str) -> ConfigLoader:
    toml = config_dir / "default.toml"
    content = toml.read_text()
    assert old in content
    toml.write_text(content.replace(old, new))
    loader = ConfigLoader(config_dir=config_dir)
    loader.load()
    return loader


class TestConfigValidation:
    def test_valid_config_passes(self, config_dir: Path) -> None:
        loader = ConfigLoader(config_dir=config_dir)
        loader.load()
        loader.validate_ranges()  # Should not raise

    def test_shipped_default_config_passes(self) -> None:
        loader = ConfigLoader(config_dir=Path(__file__).parents[2] / "config")
        loader.load()
        loader.validate_ranges()

    def test_negative_hard_floor(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, 'hard_floor = "10.00"', 'hard_floor = "-1.00"')
        with pytest.raises(ConfigError, match="hard_floor"):
            loader.validate_ranges()

    def test_soft_floor_not_above_hard_floor(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, 'soft_floor = "12.00"', 'soft_floor = "10.00"')
        with pytest.raises(ConfigError, match="soft_floor"):
            loader.validate_ranges()

    @pytest.mark.parametrize("value", ['"0"', '"1.5"'])
    def test_max_risk_per_trade_out_of_range(self, config_dir: Path, value: str) -> None:
        loader = _loader_with(
            config_dir, 'max_risk_per_trade = "0.05"', f"max_risk_per_trade = {value}"
        )
        with pytest.raises(ConfigError, match="max_risk_per_trade"):
            loader.validate_ranges()

    def test_max_total_exposure_over_one(self, config_dir: Path) -> None:
        loader = _loader_with(
            config_dir, 'max_total_exposure = "0.70"', 'max_total_exposure = "1.01"'
        )
        with pytest.raises(ConfigError, match="max_total_exposure"):
            loader.validate_ranges()

    def test_min_reserve_pct_of_one(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, 'min_reserve_pct = "0.20"', 'min_reserve_pct = "1"')
        with pytest.raises(ConfigError, match="min_reserve_pct"):
            loader.validate_ranges()

    def test_max_score_over_ten(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "max_score = 7.0", "max_score = 11.0")
        with pytest.raises(ConfigError, match="risk.max_score"):
            loader.validate_ranges()

    def test_fee_rate_of_one(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, 'fee_rate = "0.15"', 'fee_rate = "1.0"')
        with pytest.raises(ConfigError, match="fee_rate"):
            loader.validate_ranges()

    def test_zero_failure_threshold(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "failure_threshold = 10", "failure_threshold = 0")
        with pytest.raises(ConfigError, match="failure_threshold"):
            loader.validate_ranges()

    def test_zero_rate_limit(self, config_dir: Path) -> None:
        loader = _loader_with(config_dir, "max_requests = 30", "max_requests = 0")
        with pytest.raises(ConfigError, match="max_requests"):
            loader.validate_ranges()

    def test_multiple_errors_reported(self, config_dir: Path) -> None:
        toml = config_dir / "default.toml"
        content = toml.read_text()
        content = content.replace('hard_floor = "10.00"', 'hard_floor = "-1.00"')
        content = content.replace("concurrency = 4", "concurrency = 0")
        toml.write_text(content)
        loader = ConfigLoader(config_dir=config_dir)
        loader.load()
        with pytest.raises(ConfigError) as exc_info:
            loader.validate_ranges()
        assert "hard_floor" in str(exc_info.value)
        assert "workers.concurrency" in str(exc_info.value)
