"""TOML configuration: ``default.toml``, then ``{env}.toml``, then env vars.

Money and percentage keys are kept as strings in TOML and read back with
``get_decimal``; nothing safety-critical is ever routed through a float.
"""

from __future__ import annotations

import os
import re
import tomllib
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, NamedTuple

ENV_PREFIX = "SKINTRADER"

_INT_RE = re.compile(r"^[+-]?\d+$")


class ConfigError(Exception):
    """Raised when config loading or validation fails."""


class RangeRule(NamedTuple):
    """``low``/``high`` bounds for one key; ``None`` leaves that side open."""

    key: str
    low: Decimal | None
    high: Decimal | None
    low_inclusive: bool = True
    high_inclusive: bool = True

    def check(self, value: Decimal) -> str | None:
        too_low = self.low is not None and (
            value < self.low if self.low_inclusive else value <= self.low
        )
        too_high = self.high is not None and (
            value > self.high if self.high_inclusive else value >= self.high
        )
        if not (too_low or too_high):
            return None
        left = "[" if self.low_inclusive else "("
        right = "]" if self.high_inclusive else ")"
        low = "-inf" if self.low is None else self.low
        high = "inf" if self.high is None else self.high
        return f"{self.key} must be in {left}{low}, {high}{right}, got {value}"


_ZERO, _ONE = Decimal("0"), Decimal("1")

RANGE_RULES: tuple[RangeRule, ...] = (
    RangeRule("budget.hard_floor", _ZERO, None),
    RangeRule("budget.max_risk_per_trade", _ZERO, _ONE, low_inclusive=False),
    RangeRule("budget.max_total_exposure", _ZERO, _ONE, low_inclusive=False),
    RangeRule("budget.min_reserve_pct", _ZERO, _ONE, high_inclusive=False),
    RangeRule("risk.max_score", _ZERO, Decimal("10")),
    RangeRule("buy.fee_rate", _ZERO, _ONE, high_inclusive=False),
    RangeRule("sell.undercut", _ZERO, None, low_inclusive=False),
    RangeRule("circuit_breaker.failure_threshold", _ZERO, None, low_inclusive=False),
    RangeRule("circuit_breaker.recovery_timeout_seconds", _ZERO, None, low_inclusive=False),
    RangeRule("rate_limiter.max_requests", _ZERO, None, low_inclusive=False),
    RangeRule("rate_limiter.window_seconds", _ZERO, None, low_inclusive=False),
    RangeRule("workers.concurrency", _ZERO, None, low_inclusive=False),
)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(config: dict[str, Any], prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Overlay ``SKINTRADER__section__key=value`` variables.

    A path that runs into a non-table value is ignored.
    """
    result = dict(config)
    marker = f"{prefix}__"
    for name, raw in os.environ.items():
        if not name.startswith(marker):
            continue
        *path, leaf = name[len(marker) :].lower().split("__")
        table = result
        for part in path:
            child = table.get(part, {})
            if not isinstance(child, dict):
                break
            child = dict(child)
            table[part] = child
            table = child
        else:
            table[leaf] = _coerce_value(raw)
    return result


def _coerce_value(value: str) -> Any:
    """Integers and booleans are converted; anything with a decimal point stays a string.

    ``"0"``/``"1"`` are integers, not booleans.
    """
    if _INT_RE.match(value):
        return int(value)
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    return value


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class ConfigLoader:
    """Merged view over the config directory for one environment."""

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str | None = None,
    ) -> None:
        self._config_dir = Path(config_dir)
        self._env = env or os.environ.get("SKINTRADER_ENV", "development")
        self._config: dict[str, Any] = {}

    @property
    def env(self) -> str:
        return self._env

    @property
    def config(self) -> dict[str, Any]:
        if not self._config:
            self.load()
        return self._config

    def load(self) -> dict[str, Any]:
        default_path = self._config_dir / "default.toml"
        if not default_path.exists():
            msg = f"Default config not found: {default_path}"
            raise ConfigError(msg)

        merged = self._load_toml(default_path)
        env_path = self._config_dir / f"{self._env}.toml"
        if env_path.exists():
            merged = _deep_merge(merged, self._load_toml(env_path))
        self._config = _apply_env_overrides(merged)
        return self._config

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Value at ``section.key`` (any depth), or ``default``."""
        node: Any = self.config
        for part in dotted_key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_decimal(self, dotted_key: str, default: str | Decimal) -> Decimal:
        value = self.get(dotted_key, default)
        parsed = _as_decimal(value)
        if parsed is None or not parsed.is_finite():
            msg = f"Config key {dotted_key} is not a decimal: {value!r}"
            raise ConfigError(msg)
        return parsed

    def require(self, dotted_key: str) -> Any:
        value = self.get(dotted_key)
        if value is None:
            msg = f"Required config key missing: {dotted_key}"
            raise ConfigError(msg)
        return value

    def validate_keys(self, required_keys: list[str]) -> None:
        missing = [k for k in required_keys if self.get(k) is None]
        if missing:
            msg = f"Missing required config keys: {', '.join(missing)}"
            raise ConfigError(msg)

    def validate_ranges(self) -> None:
        """Check every safety-critical number before any component is built.

        Raises:
            ConfigError: Listing every out-of-range or unparsable value at once.
        """
        errors: list[str] = []
        for rule in RANGE_RULES:
            raw = self.get(rule.key)
            if raw is None:
                continue
            value = _as_decimal(raw)
            if value is None:
                errors.append(f"{rule.key} is not a number: {raw!r}")
                continue
            problem = rule.check(value)
            if problem:
                errors.append(problem)

        hard_floor = _as_decimal(self.get("budget.hard_floor"))
        soft_floor = _as_decimal(self.get("budget.soft_floor"))
        if hard_floor is not None and soft_floor is not None and soft_floor <= hard_floor:
            errors.append(
                f"budget.soft_floor must be > budget.hard_floor, got {soft_floor} <= {hard_floor}"
            )

        if errors:
            msg = "Config validation failed:\n  " + "\n  ".join(errors)
            raise ConfigError(msg)

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        try:
            with path.open("rb") as fh:
                return tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {path}: {exc}"
            raise ConfigError(msg) from exc
