"""
Tests for configuration loading, validation helpers and password providers
"""

from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest

from gexwatch.config import AppConfig, TradierConfig, get_all_config, load_config, symbols_from_args
from gexwatch.database.password_providers import get_db_password
from gexwatch.errors import ConfigurationError
from gexwatch.symbols import DEFAULT_SYMBOLS, normalize_symbols
from gexwatch.utils.logging import configure_logging, set_log_level
from gexwatch.validation import safe_date, safe_float, safe_int


class TestLoadConfig:

    def test_defaults(self):
        config = load_config(env={})

        assert config.tradier.api_key is None
        assert config.tradier.base_url == "https://api.tradier.com/v1"
        assert config.collector.collection_interval == 1800.0
        assert config.collector.max_workers == 5
        assert config.collector.snapshot_freshness == 600.0
        assert config.collector.expiry_dates_freshness == 86400.0
        assert config.collector.symbols == tuple(DEFAULT_SYMBOLS)
        assert config.database.port == 5432
        assert config.log_level == "INFO"

    def test_environment_overrides(self):
        config = load_config(env={
            "TRADIER_API_KEY": "secret-key",
            "TRADIER_BASE_URL": "https://sandbox.tradier.com/v1/",
            "GEX_SYMBOLS": "spy, qqq,SPY,,iwm",
            "COLLECTION_INTERVAL": "300",
            "COLLECTION_WORKERS": "8",
            "SNAPSHOT_FRESHNESS": "120",
            "DB_PORT": "6543",
            "LOG_LEVEL": "debug",
        })

        assert config.tradier.is_configured
        assert config.tradier.base_url == "https://sandbox.tradier.com/v1"
        assert config.collector.symbols == ("SPY", "QQQ", "IWM")
        assert config.collector.collection_interval == 300.0
        assert config.collector.max_workers == 8
        assert config.collector.snapshot_freshness == 120.0
        assert config.database.port == 6543
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("name,value", [
        ("COLLECTION_INTERVAL", "soon"),
        ("COLLECTION_WORKERS", "0"),
        ("CYCLE_TIMEOUT", "-5"),
        ("DB_PORT", "postgres"),
        ("CYCLE_TIMEOUT", "inf"),
        ("SNAPSHOT_FRESHNESS", "nan"),
        ("COLLECTION_INTERVAL", "Infinity"),
    ])
    def test_invalid_values(self, name, value):
        with pytest.raises(ConfigurationError):
            load_config(env={name: value})

    def test_pool_bounds(self):
        with pytest.raises(ConfigurationError):
            load_config(env={"DB_POOL_MIN": "5", "DB_POOL_MAX": "2"})

    def test_blank_symbol_list_rejected(self):
        with pytest.raises(ConfigurationError):
            load_config(env={"GEX_SYMBOLS": " , ,"})

    def test_api_key_masked(self):
        values = get_all_config(AppConfig(tradier=TradierConfig(api_key="abcdefgh")))
        assert values["api"]["api_key"] == "abcd****"

    def test_symbols_from_args(self):
        config = load_config(env={"GEX_SYMBOLS": "SPY,QQQ"})
        assert symbols_from_args(None, config) == ["SPY", "QQQ"]
        assert symbols_from_args("aapl,msft", config) == ["AAPL", "MSFT"]

    def test_symbols_from_args_not_filtered_by_config(self):
        config = load_config(env={"GEX_SYMBOLS": "SPY"})
        assert symbols_from_args(" tsla, spy ,TSLA", config) == ["TSLA", "SPY"]


class TestSymbols:

    def test_normalize(self):
        assert normalize_symbols([" spy", "SPY", "qqq", ""]) == ["SPY", "QQQ"]

    def test_defaults_unique(self):
        assert len(DEFAULT_SYMBOLS) == len(set(DEFAULT_SYMBOLS))
        assert DEFAULT_SYMBOLS[0] == "SPY"


class TestValidation:

    def test_safe_float(self):
        assert safe_float("1.5") == 1.5
        assert safe_float(None, default=2.0) == 2.0
        assert safe_float("abc") == 0.0
        assert safe_float(float("nan"), default=1.0) == 1.0
        assert safe_float(-0.2) == 0.0
        assert safe_float(-0.2, allow_negative=True) == -0.2

    def test_safe_int(self):
        assert safe_int("12") == 12
        assert safe_int("12.0") == 12
        assert safe_int(-3) == 0
        assert safe_int("x", default=7) == 7

    def test_safe_date(self):
        assert safe_date("2024-06-14") == date(2024, 6, 14)
        assert safe_date(datetime(2024, 6, 14, 16)) == date(2024, 6, 14)
        assert safe_date("14/06/2024") is None
        assert safe_date(None, default=date(2024, 1, 1)) == date(2024, 1, 1)


class TestPasswordProviders:

    def test_env_provider(self):
        assert get_db_password("env", env={"DB_PASSWORD": "hunter2"}) == "hunter2"

    def test_env_provider_missing(self):
        with pytest.raises(ConfigurationError):
            get_db_password("env", env={})

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            get_db_password("vault", env={})

    def test_pgpass_missing(self, tmp_path):
        with patch("gexwatch.database.password_providers.Path.home", return_value=tmp_path):
            with pytest.raises(ConfigurationError):
                get_db_password("pgpass")

    def test_pgpass_permissions(self, tmp_path):
        pgpass = tmp_path / ".pgpass"
        pgpass.write_text("localhost:5432:gexwatch:postgres:secret\n")

        with patch("gexwatch.database.password_providers.Path.home", return_value=tmp_path):
            pgpass.chmod(0o644)
            with pytest.raises(ConfigurationError):
                get_db_password("pgpass")

            pgpass.chmod(0o600)
            assert get_db_password("pgpass") is None

    def test_aws_secrets_manager(self):
        boto3 = pytest.importorskip("boto3")
        secrets_client = MagicMock()
        secrets_client.get_secret_value.return_value = {"SecretString": '{"password": "from-aws"}'}

        with patch.object(boto3.session, "Session") as session_cls:
            session_cls.return_value.client.return_value = secrets_client
            password = get_db_password("aws_secrets_manager", env={"DB_SECRET_NAME": "gexwatch/db"})

        assert password == "from-aws"
        secrets_client.get_secret_value.assert_called_once_with(SecretId="gexwatch/db")


class TestLogging:

    def test_configure_invalid_level_defaults_to_info(self):
        import logging
        assert configure_logging("LOUD") == logging.INFO

    def test_set_invalid_level(self):
        with pytest.raises(ValueError):
            set_log_level("LOUD")
