"""
Dashboard configuration.

Loads a YAML file over built-in defaults, then applies ``TICKDASH_*``
environment overrides. Values are validated once here so the engine can
trust them.

Example config.yaml:

    symbols: [AAPL, BTC-USD]
    time_frame: 1D
    update_interval: 1
    enable_pre_post: true
    chart_type: line
    kagi:
      reversal_type: pct
      reversal_value: 0.04
      price_type: close
      reversal_values:
        1D: 0.01
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..core.constants import (
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_UPDATE_INTERVAL_SECONDS,
    FETCH_TIMEOUT_SECONDS,
    ChartType,
    PriceType,
    ReversalKind,
    TimeFrame,
)
from ..core.exceptions import InvalidConfigError, MissingConfigError
from ..charts.kagi import KagiParams

ENV_PREFIX = "TICKDASH_"


@dataclass
class KagiSettings:
    reversal_type: ReversalKind = ReversalKind.PERCENTAGE
    reversal_value: Optional[float] = None
    price_type: PriceType = PriceType.CLOSE
    reversal_values: Dict[TimeFrame, float] = field(default_factory=dict)

    def params_for(self, timeframe: TimeFrame) -> KagiParams:
        """
        Kagi parameters for a timeframe.

        Per-timeframe values win over the global value, which wins over the
        built-in default (1% on 1D, 4% otherwise).
        """
        timeframe = TimeFrame(timeframe)
        value = self.reversal_values.get(timeframe, self.reversal_value)
        if value is None:
            default = KagiParams.default_for(timeframe)
            value = default.reversal_value
        return KagiParams(
            reversal_kind=self.reversal_type,
            reversal_value=value,
            price_type=self.price_type,
        )


@dataclass
class NetworkSettings:
    timeout_seconds: float = FETCH_TIMEOUT_SECONDS
    max_connections: int = DEFAULT_MAX_CONNECTIONS


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = "data/logs/tickdash.log"


@dataclass
class DashboardConfig:
    """
    Configuration inputs consumed by the engine.

    Attributes:
        symbols: Tickers opened at startup
        time_frame: Initially selected timeframe
        update_interval: Seconds between polls (minimum enforced by the scheduler)
        enable_pre_post: Show pre/post-market on 1D
        show_volumes: Render the volume series
        show_x_labels: Render axis labels
        chart_type: Initially selected chart type
        interpolate: One line point per slot instead of per bar
        truncate_pre: Start the 1D pre-market 30 minutes before the open
        kagi: Kagi reversal settings
        network: Shared client settings
        logging: Log level and file
    """
    symbols: List[str] = field(default_factory=list)
    time_frame: TimeFrame = TimeFrame.DAY_1
    update_interval: float = DEFAULT_UPDATE_INTERVAL_SECONDS
    enable_pre_post: bool = False
    show_volumes: bool = False
    show_x_labels: bool = True
    chart_type: ChartType = ChartType.LINE
    interpolate: bool = False
    truncate_pre: bool = False
    kagi: KagiSettings = field(default_factory=KagiSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ============================================================================
# Parsing
# ============================================================================

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidConfigError(f"Expected a boolean for '{key}'", value=value)


def _float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(f"Expected a number for '{key}'", value=value) from e


def _enum(enum_cls, key: str, value: Any):
    text = str(value).strip()
    for candidate in (text, text.upper(), text.lower()):
        try:
            return enum_cls(candidate)
        except ValueError:
            continue
    raise InvalidConfigError(f"Unknown value for '{key}'", value=value)


def _symbols(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise InvalidConfigError("Expected a list for 'symbols'", value=value)
    return [str(s).strip().upper() for s in value if str(s).strip()]


def _kagi(raw: Mapping[str, Any]) -> KagiSettings:
    settings = KagiSettings()
    if 'reversal_type' in raw:
        settings.reversal_type = _enum(ReversalKind, 'kagi.reversal_type', raw['reversal_type'])
    if 'price_type' in raw:
        settings.price_type = _enum(PriceType, 'kagi.price_type', raw['price_type'])
    if raw.get('reversal_value') is not None:
        settings.reversal_value = _float('kagi.reversal_value', raw['reversal_value'])
    for tf, value in (raw.get('reversal_values') or {}).items():
        settings.reversal_values[_enum(TimeFrame, 'kagi.reversal_values', tf)] = _float(
            f'kagi.reversal_values.{tf}', value
        )

    # Validate every combination up front
    for tf in TimeFrame:
        settings.params_for(tf)
    return settings


def config_from_dict(raw: Mapping[str, Any]) -> DashboardConfig:
    """
    Build a validated config from parsed YAML.

    Raises:
        InvalidConfigError: On unknown or invalid values
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise InvalidConfigError("Configuration root must be a mapping")

    config = DashboardConfig()

    if 'symbols' in raw:
        config.symbols = _symbols(raw['symbols'])
    if 'time_frame' in raw:
        config.time_frame = _enum(TimeFrame, 'time_frame', raw['time_frame'])
    if 'update_interval' in raw:
        config.update_interval = _float('update_interval', raw['update_interval'])
        if config.update_interval <= 0:
            raise InvalidConfigError("update_interval must be positive", value=config.update_interval)
    if 'chart_type' in raw:
        config.chart_type = _enum(ChartType, 'chart_type', raw['chart_type'])

    for key in ('enable_pre_post', 'show_volumes', 'show_x_labels', 'interpolate', 'truncate_pre'):
        if key in raw:
            setattr(config, key, _bool(key, raw[key]))

    if raw.get('kagi') is not None:
        config.kagi = _kagi(raw['kagi'])

    network = raw.get('network') or {}
    if 'timeout_seconds' in network:
        config.network.timeout_seconds = _float('network.timeout_seconds', network['timeout_seconds'])
    if 'max_connections' in network:
        config.network.max_connections = int(_float('network.max_connections', network['max_connections']))
        if config.network.max_connections < 1:
            raise InvalidConfigError("network.max_connections must be at least 1")

    log_cfg = raw.get('logging') or {}
    if 'level' in log_cfg:
        config.logging.level = str(log_cfg['level']).upper()
    if 'file' in log_cfg:
        config.logging.file = log_cfg['file'] or None

    return config


def apply_env_overrides(raw: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Overlay ``TICKDASH_*`` variables on a raw config dict.

    Top-level keys map directly (``TICKDASH_TIME_FRAME=1Y``); nested keys use
    a double underscore (``TICKDASH_KAGI__REVERSAL_VALUE=0.02``).
    """
    environ = os.environ if environ is None else environ
    merged = dict(raw)

    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = name[len(ENV_PREFIX):].lower().split("__")
        target = merged
        for part in path[:-1]:
            existing = target.get(part)
            target[part] = dict(existing) if isinstance(existing, Mapping) else {}
            target = target[part]
        target[path[-1]] = value

    return merged


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> DashboardConfig:
    """
    Load configuration.

    Args:
        path: YAML file; None uses defaults only
        environ: Environment mapping (default: os.environ)

    Raises:
        MissingConfigError: If ``path`` does not exist
        InvalidConfigError: If the file or a value is invalid
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        config_file = Path(path)
        if not config_file.exists():
            raise MissingConfigError("Configuration file not found", path=str(config_file))
        try:
            with open(config_file, 'r') as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"Invalid YAML: {e}", path=str(config_file)) from e

    if not isinstance(raw, dict):
        raise InvalidConfigError("Configuration root must be a mapping", path=str(path))

    return config_from_dict(apply_env_overrides(raw, environ))
