"""
Configuration Tests.

Environment, YAML and validation for AggregatorConfig.
"""

import os

import pytest

from core.exceptions import InvalidConfigError
from core.logging_utils import mask_headers, mask_value
from aggregation.config import AggregatorConfig, ProviderSettings


ENV_NAMES = [
    "DRY_RUN", "MAX_RETRIES", "DUPLICATE_PROTECTION", "MAX_CONCURRENT_WALLETS",
    "RUN_TIMEOUT_SECONDS", "PRICE_BATCH_SIZE", "ETHERSCAN_API_KEY", "ETH_RPC_URL",
    "COINGECKO_API_KEY", "COINGECKO_PRO", "LOG_LEVEL", "DATABASE_URL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # dotenv writes straight into os.environ; give each test its own copy
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    # Point dotenv at a file that does not exist
    return tmp_path / "missing.env"


class TestFromEnv:
    """Tests for AggregatorConfig.from_env."""

    def test_defaults(self, clean_env):
        config = AggregatorConfig.from_env(clean_env)

        assert config.dry_run is False
        assert config.max_retries == 3
        assert config.duplicate_protection is True
        assert config.run_timeout_seconds is None
        assert config.price_batch_size == 100
        assert config.providers.etherscan_api_key is None
        assert config.validate() == []

    def test_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("MAX_RETRIES", "5")
        monkeypatch.setenv("DUPLICATE_PROTECTION", "0")
        monkeypatch.setenv("RUN_TIMEOUT_SECONDS", "90")
        monkeypatch.setenv("ETHERSCAN_API_KEY", "ekey")
        monkeypatch.setenv("ETH_RPC_URL", "https://eth.example")
        monkeypatch.setenv("COINGECKO_PRO", "yes")

        config = AggregatorConfig.from_env(clean_env)

        assert config.dry_run is True
        assert config.max_retries == 5
        assert config.duplicate_protection is False
        assert config.run_timeout_seconds == 90.0
        assert config.providers.etherscan_api_key == "ekey"
        assert config.providers.evm_rpc_urls == {"ETH": "https://eth.example"}
        assert config.providers.coingecko_pro is True

    def test_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MAX_CONCURRENT_WALLETS=8\nLOG_LEVEL=DEBUG\n")

        config = AggregatorConfig.from_env(env_file)

        assert config.max_concurrent_wallets == 8
        assert config.log_level == "DEBUG"

    def test_bad_integer(self, clean_env, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "three")

        with pytest.raises(InvalidConfigError) as exc_info:
            AggregatorConfig.from_env(clean_env)

        assert exc_info.value.context["config_key"] == "MAX_RETRIES"


class TestFromYaml:
    """Tests for AggregatorConfig.from_yaml."""

    def test_sections(self, tmp_path):
        path = tmp_path / "aggregator.yaml"
        path.write_text(
            "aggregator:\n"
            "  dry_run: true\n"
            "  max_concurrent_wallets: 2\n"
            "  unknown_option: 1\n"
            "providers:\n"
            "  alchemy_api_key: akey\n"
            "  evm_rpc_urls: {BASE: 'https://base.example'}\n"
        )

        config = AggregatorConfig.from_yaml(path)

        assert config.dry_run is True
        assert config.max_concurrent_wallets == 2
        assert config.providers.alchemy_api_key == "akey"
        assert config.providers.evm_rpc_urls == {"BASE": "https://base.example"}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(InvalidConfigError):
            AggregatorConfig.from_yaml(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("aggregator: [unclosed\n")

        with pytest.raises(InvalidConfigError):
            AggregatorConfig.from_yaml(path)


class TestValidateAndMasking:
    """Validation errors and secret masking."""

    def test_validate_reports_every_problem(self):
        config = AggregatorConfig(
            max_retries=0,
            max_concurrent_wallets=0,
            price_batch_size=500,
            log_format="xml",
            providers=ProviderSettings(evm_rpc_urls={"BTC": "https://x", "NOPE": "https://y"}),
        )

        errors = config.validate()

        assert "max_retries must be at least 1" in errors
        assert "max_concurrent_wallets must be at least 1" in errors
        assert "price_batch_size must be between 1 and 250" in errors
        assert "log_format must be 'text' or 'json'" in errors
        assert "evm_rpc_urls: BTC is not an EVM network" in errors
        assert "evm_rpc_urls: unknown network NOPE" in errors

    def test_to_dict_hides_keys(self):
        config = AggregatorConfig(providers=ProviderSettings(etherscan_api_key="secret-key"))

        data = config.to_dict()

        assert data["providers"]["etherscan_api_key"] == "set"
        assert data["providers"]["alchemy_api_key"] == "unset"
        assert "secret-key" not in str(data)

    def test_mask_helpers(self):
        assert mask_value("abcdefgh") == "abcd...***"
        assert mask_value("abc") == "***"
        masked = mask_headers({"KC-API-KEY": "key-123456", "Accept": "application/json"})
        assert masked == {"KC-API-KEY": "key-...***", "Accept": "application/json"}
