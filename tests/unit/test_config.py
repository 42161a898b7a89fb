"""
Unit tests for configuration loading.
"""

from pathlib import Path

import pytest

from tickdash.config.settings import (
    DashboardConfig,
    apply_env_overrides,
    config_from_dict,
    load_config,
)
from tickdash.core.constants import ChartType, PriceType, ReversalKind, TimeFrame
from tickdash.core.exceptions import InvalidConfigError, MissingConfigError

CONFIG_YAML = """
symbols: [aapl, BTC-USD]
time_frame: 1Y
update_interval: 2
enable_pre_post: true
show_volumes: yes
chart_type: candlestick
kagi:
  reversal_type: amount
  reversal_value: 1.5
  price_type: high_low
  reversal_values:
    1D: 0.25
network:
  timeout_seconds: 5
  max_connections: 4
logging:
  level: debug
  file: null
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    return path


def test_defaults_without_file():
    config = load_config(environ={})

    assert isinstance(config, DashboardConfig)
    assert config.symbols == []
    assert config.time_frame is TimeFrame.DAY_1
    assert config.update_interval == 1.0
    assert config.chart_type is ChartType.LINE
    assert not config.enable_pre_post
    assert config.show_x_labels


def test_load_yaml_file(config_file):
    config = load_config(str(config_file), environ={})

    assert config.symbols == ["AAPL", "BTC-USD"]
    assert config.time_frame is TimeFrame.YEAR_1
    assert config.update_interval == 2.0
    assert config.enable_pre_post
    assert config.show_volumes
    assert config.chart_type is ChartType.CANDLESTICK
    assert config.network.timeout_seconds == 5.0
    assert config.network.max_connections == 4
    assert config.logging.level == "DEBUG"
    assert config.logging.file is None


def test_kagi_values_per_timeframe(config_file):
    kagi = load_config(str(config_file), environ={}).kagi

    intraday = kagi.params_for(TimeFrame.DAY_1)
    assert intraday.reversal_kind is ReversalKind.AMOUNT
    assert intraday.reversal_value == 0.25
    assert intraday.price_type is PriceType.HIGH_LOW

    assert kagi.params_for(TimeFrame.MONTH_6).reversal_value == 1.5


def test_kagi_builtin_defaults():
    kagi = config_from_dict({}).kagi

    assert kagi.params_for(TimeFrame.DAY_1).reversal_value == pytest.approx(0.01)
    assert kagi.params_for(TimeFrame.YEAR_5).reversal_value == pytest.approx(0.04)


def test_missing_file_raises(tmp_path):
    with pytest.raises(MissingConfigError):
        load_config(str(tmp_path / "absent.yaml"), environ={})


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("symbols: [AAPL\n")
    with pytest.raises(InvalidConfigError):
        load_config(str(path), environ={})


def test_non_mapping_root_raises(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- AAPL\n- MSFT\n")
    with pytest.raises(InvalidConfigError):
        load_config(str(path), environ={})


@pytest.mark.parametrize("raw", [
    {"time_frame": "2D"},
    {"chart_type": "renko"},
    {"update_interval": 0},
    {"update_interval": "fast"},
    {"enable_pre_post": "maybe"},
    {"symbols": 42},
    {"kagi": {"reversal_value": -1}},
    {"kagi": {"reversal_values": {"1W": 0}}},
    {"kagi": {"reversal_type": "ratio"}},
    {"network": {"max_connections": 0}},
])
def test_invalid_values_rejected(raw):
    with pytest.raises(InvalidConfigError):
        config_from_dict(raw)


def test_env_overrides_top_level_and_nested(config_file):
    environ = {
        "TICKDASH_TIME_FRAME": "5Y",
        "TICKDASH_SYMBOLS": "msft, nvda",
        "TICKDASH_ENABLE_PRE_POST": "false",
        "TICKDASH_KAGI__REVERSAL_VALUE": "3",
        "HOME": "/root",
    }
    config = load_config(str(config_file), environ=environ)

    assert config.time_frame is TimeFrame.YEAR_5
    assert config.symbols == ["MSFT", "NVDA"]
    assert not config.enable_pre_post
    # Nested override keeps sibling keys from the file
    assert config.kagi.reversal_type is ReversalKind.AMOUNT
    assert config.kagi.params_for(TimeFrame.YEAR_1).reversal_value == 3.0


def test_apply_env_overrides_does_not_mutate_input():
    raw = {"kagi": {"reversal_value": 1.0}}
    merged = apply_env_overrides(raw, {"TICKDASH_KAGI__PRICE_TYPE": "high_low"})

    assert raw == {"kagi": {"reversal_value": 1.0}}
    assert merged["kagi"] == {"reversal_value": 1.0, "price_type": "high_low"}


def test_shipped_example_config_is_valid():
    path = Path(__file__).resolve().parents[2] / "config" / "config.yaml"
    config = load_config(str(path), environ={})

    assert "BTC-USD" in config.symbols
    assert config.kagi.params_for(TimeFrame.WEEK_1).reversal_value == pytest.approx(0.02)
    assert config.kagi.params_for(TimeFrame.YEAR_1).reversal_value == pytest.approx(0.04)
