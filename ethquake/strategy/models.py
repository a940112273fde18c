"""Strategy data models — descriptor config, position state, pipeline result."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from apscheduler.triggers.cron import CronTrigger

from ethquake.errors import ConfigError


@dataclass(frozen=True)
class TradingParams:
    """What to trade and on which candle timeframe."""

    symbol: str
    position_size: float
    timeframe: int  # minutes


@dataclass(frozen=True)
class IndicatorParams:
    """Named EMA periods, e.g. ``{"ema_fast": 20, "ema_slow": 200}``."""

    ema: dict[str, int]

    @property
    def periods(self) -> tuple[int, ...]:
        """All configured periods, ascending."""
        return tuple(sorted(self.ema.values()))

    @property
    def max_period(self) -> int:
        return max(self.ema.values())


@dataclass(frozen=True)
class ExitRule:
    """A percentage-based exit that can be switched on or off."""

    enabled: bool = False
    percentage: float = 0.0


@dataclass(frozen=True)
class RiskParams:
    take_profit: ExitRule = ExitRule()
    stop_loss: ExitRule = ExitRule()
    trailing_stop: ExitRule = ExitRule()


@dataclass(frozen=True)
class StrategyConfig:
    """Validated contents of one ``strategy.json`` descriptor."""

    name: str
    enabled: bool
    cron_schedule: str
    entry: str
    trading: TradingParams
    indicators: IndicatorParams
    risk_management: RiskParams = RiskParams()
    description: str = ""


@dataclass
class PositionState:
    """Persisted per-strategy position bookkeeping."""

    position: Optional[str] = None  # "long", "short", or None when flat
    entry_price: Optional[float] = None
    stop_order_id: Optional[str] = None
    take_profit_order_id: Optional[str] = None
    trailing_stop: Optional[float] = None

    def reset(self) -> None:
        self.position = None
        self.entry_price = None
        self.stop_order_id = None
        self.take_profit_order_id = None
        self.trailing_stop = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PositionState":
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of exactly one pipeline run; never raised, always returned."""

    success: bool
    details: dict = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, details: Optional[dict] = None) -> "PipelineResult":
        return cls(success=True, details=details or {})

    @classmethod
    def failed(cls, exc: BaseException, error_type: Optional[str] = None) -> "PipelineResult":
        return cls(
            success=False,
            error=str(exc) or exc.__class__.__name__,
            error_type=error_type or exc.__class__.__name__,
        )

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "details": self.details}
        return {"success": False, "error": self.error, "errorType": self.error_type}


# ── Descriptor parsing ───────────────────────────────────────────────────


def _require(data: dict, key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigError(f"missing '{key}' in {where}")
    return data[key]


def _positive_number(value: Any, where: str, integer: bool = False) -> Any:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where} must be a number, got {value!r}")
    if integer and (not isinstance(value, int)):
        if not float(value).is_integer():
            raise ConfigError(f"{where} must be an integer, got {value!r}")
        value = int(value)
    if value <= 0:
        raise ConfigError(f"{where} must be positive, got {value!r}")
    return value


def validate_cron(expr: str) -> str:
    """Return *expr* if it is a valid 5-field crontab, else raise ``ConfigError``."""
    if not isinstance(expr, str) or len(expr.split()) != 5:
        raise ConfigError(f"cronSchedule must have 5 fields, got {expr!r}")
    try:
        CronTrigger.from_crontab(expr)
    except ValueError as exc:
        raise ConfigError(f"invalid cronSchedule {expr!r}: {exc}") from exc
    return expr


def _parse_exit(raw: Any, key: str) -> ExitRule:
    if raw is None:
        return ExitRule()
    if not isinstance(raw, dict):
        raise ConfigError(f"risk_management.{key} must be an object")
    enabled = bool(raw.get("enabled", False))
    pct = raw.get("percentage")
    where = f"risk_management.{key}.percentage"
    if enabled:
        pct = _positive_number(pct, where)
    elif pct is None:
        pct = 0.0
    elif isinstance(pct, bool) or not isinstance(pct, (int, float)):
        raise ConfigError(f"{where} must be a number, got {pct!r}")
    return ExitRule(enabled=enabled, percentage=float(pct))


def _parse_indicators(raw: Any) -> IndicatorParams:
    if not isinstance(raw, dict):
        raise ConfigError("'indicators' must be an object")
    ema: dict[str, int] = {}
    for key, value in raw.items():
        if not key.startswith("ema"):
            continue
        if isinstance(value, dict):
            # Optional sub-indicators, e.g. {"enabled": true, "length": 50}
            if not value.get("enabled"):
                continue
            value = value.get("length")
        ema[key] = _positive_number(value, f"indicators.{key}", integer=True)
    if not ema:
        raise ConfigError("no EMA periods configured in 'indicators'")
    if len(set(ema.values())) != len(ema):
        raise ConfigError(f"EMA periods must be distinct, got {sorted(ema.values())}")
    return IndicatorParams(ema=ema)


def parse_strategy_config(data: Any, default_entry: str) -> StrategyConfig:
    """Validate a decoded ``strategy.json`` and build a ``StrategyConfig``.

    Disabled descriptors and descriptors without ``cronSchedule`` are
    rejected with ``ConfigError`` before anything else is validated.
    """
    if not isinstance(data, dict):
        raise ConfigError("descriptor must be a JSON object")

    name = _require(data, "name", "descriptor")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("'name' must be a non-empty string")

    if not data.get("enabled", False):
        raise ConfigError(f"strategy {name} is disabled in config")

    cron = data.get("cronSchedule")
    if not cron:
        raise ConfigError(f"strategy {name} is missing cronSchedule in config")
    validate_cron(cron)

    trading_raw = _require(data, "trading", "descriptor")
    if not isinstance(trading_raw, dict):
        raise ConfigError("'trading' must be an object")
    symbol = _require(trading_raw, "symbol", "trading")
    if not isinstance(symbol, str) or not symbol:
        raise ConfigError("trading.symbol must be a non-empty string")
    trading = TradingParams(
        symbol=symbol,
        position_size=float(
            _positive_number(_require(trading_raw, "position_size", "trading"), "trading.position_size")
        ),
        timeframe=_positive_number(
            _require(trading_raw, "timeframe", "trading"), "trading.timeframe", integer=True
        ),
    )

    indicators = _parse_indicators(_require(data, "indicators", "descriptor"))

    risk_raw = data.get("risk_management") or {}
    if not isinstance(risk_raw, dict):
        raise ConfigError("'risk_management' must be an object")
    risk = RiskParams(
        take_profit=_parse_exit(risk_raw.get("take_profit"), "take_profit"),
        stop_loss=_parse_exit(risk_raw.get("stop_loss"), "stop_loss"),
        trailing_stop=_parse_exit(risk_raw.get("trailing_stop"), "trailing_stop"),
    )

    return StrategyConfig(
        name=name,
        enabled=True,
        cron_schedule=cron,
        entry=data.get("entry") or default_entry,
        trading=trading,
        indicators=indicators,
        risk_management=risk,
        description=data.get("description", ""),
    )
