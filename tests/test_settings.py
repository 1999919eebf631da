"""
Tests for YAML settings and venue configuration.
"""

from dataclasses import replace
from pathlib import Path

import pytest
import yaml

from config.settings import DEFAULT_CONFIG_YAML, Settings, load_settings
from config.venue_config import VenueConfig
from src.adaptive_trader.config import RiskConfig, ScalingConfig, SystemConfig, TradeMode, TradingMode
from src.adaptive_trader.exceptions import ConfigurationError


class TestYaml:

    def test_round_trip(self, tmp_path):
        settings = Settings()
        path = tmp_path / "config.yaml"

        settings.to_yaml(str(path))
        loaded = Settings.from_yaml(str(path))

        assert loaded.system == settings.system

    def test_default_template_is_valid(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(DEFAULT_CONFIG_YAML)

        settings = load_settings(str(path))
        ok, errors = settings.validate()

        assert ok, errors
        assert settings.system.bot.mode == TradingMode.SIMULATION
        assert settings.system.bot.symbols == ("BTCUSDT", "ETHUSDT", "BNBUSDT")
        assert settings.system.paths.base_dir == Path("adaptive_trader_data")

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"bot": {"trade_mode": "futures", "leverage": 5}}))

        bot = Settings.from_yaml(str(path)).system.bot

        assert bot.trade_mode == TradeMode.FUTURES
        assert bot.effective_leverage == 5
        assert bot.stop_loss_percent == 3.0

    def test_empty_file_is_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert Settings.from_yaml(str(path)).system == SystemConfig()

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="stop_los_percent"):
            Settings.from_dict({"bot": {"stop_los_percent": 2.0}})

    def test_invalid_enum_rejected(self):
        with pytest.raises(ConfigurationError, match="mode"):
            Settings.from_dict({"bot": {"mode": "PAPER"}})

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            Settings.from_yaml(str(path))

    def test_no_path_gives_defaults(self):
        assert load_settings().system == SystemConfig()


class TestValidate:

    def test_defaults_valid(self):
        assert Settings().validate() == (True, [])

    def test_collects_every_error(self):
        system = SystemConfig(
            bot=replace(
                SystemConfig().bot,
                simulation_balance=0,
                max_risk_per_trade=1.5,
                confidence_threshold=1.2,
                symbols=(),
            ),
            risk=RiskConfig(min_risk_level=2.0),
            scaling=ScalingConfig(scale_in_threshold=0.01, scale_out_threshold=0.02),
        )

        ok, errors = Settings(system).validate()

        assert not ok
        assert len(errors) == 6
        assert "simulation_balance must be positive" in errors

    def test_summary_mentions_mode(self):
        summary = Settings().get_summary()

        assert "SIMULATION" in summary
        assert "BTCUSDT" in summary


class TestVenueConfig:

    def test_defaults_have_no_credentials(self):
        venue = VenueConfig()

        assert not venue.has_credentials
        assert venue.market_data_url == venue.testnet_url

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EXCHANGE_API_KEY", "key")
        monkeypatch.setenv("EXCHANGE_API_SECRET", "secret")
        monkeypatch.setenv("EXCHANGE_TESTNET", "false")
        monkeypatch.setenv("ADVISORY_ENABLED", "yes")
        monkeypatch.setenv("ADVISORY_MODEL", "mistral")

        venue = VenueConfig.from_env()

        assert venue.has_credentials
        assert venue.market_data_url == venue.base_url
        assert venue.advisory_enabled
        assert venue.advisory_model == "mistral"

    def test_from_env_defaults(self, monkeypatch):
        for name in ("EXCHANGE_API_KEY", "EXCHANGE_API_SECRET", "EXCHANGE_TESTNET", "ADVISORY_ENABLED"):
            monkeypatch.delenv(name, raising=False)

        venue = VenueConfig.from_env()

        assert not venue.has_credentials
        assert venue.testnet
        assert not venue.advisory_enabled
