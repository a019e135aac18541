import dataclasses

import pytest

from config import ReconConfig, load_settings, parse_block_tag
from core.exceptions import ConfigurationError

DB_URL = "postgresql://recon@db/indexer"
RPC = "http://127.0.0.1:8545"


class TestLoadSettings:

    def test_missing_database_url_is_fatal(self, recon_env):
        recon_env.setenv("RPC_URL", RPC)

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert exc_info.value.config_key == "DATABASE_URL"

    def test_missing_rpc_url_is_fatal(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert exc_info.value.config_key == "RPC_URL"

    def test_rpc_url_optional_when_not_required(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)

        settings = load_settings(require_rpc=False)

        assert settings.rpc_url is None

    def test_defaults(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)
        recon_env.setenv("RPC_URL", RPC)

        settings = load_settings()

        assert settings.database_url == DB_URL
        assert settings.rpc_url == RPC
        assert settings.trade_table == ReconConfig.TRADE_TABLE
        assert settings.max_concurrency == 8
        assert settings.fetch_retries == 3
        assert settings.block_tag == "latest"
        assert settings.deadline == 0
        assert settings.fail_fast is False
        assert settings.log_level == "INFO"

    def test_prefixed_env_takes_precedence(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)
        recon_env.setenv("RECON_DATABASE_URL", "file:./recon.db")
        recon_env.setenv("RPC_URL", RPC)

        assert load_settings().database_url == "file:./recon.db"

    def test_env_values_are_parsed(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)
        recon_env.setenv("RPC_URL", RPC)
        recon_env.setenv("RECON_MAX_CONCURRENCY", "3")
        recon_env.setenv("RECON_FETCH_TIMEOUT", "2.5")
        recon_env.setenv("RECON_FAIL_FAST", "yes")
        recon_env.setenv("RECON_BLOCK_TAG", "0x10")
        recon_env.setenv("RECON_LOG_LEVEL", "debug")

        settings = load_settings()

        assert settings.max_concurrency == 3
        assert settings.fetch_timeout == 2.5
        assert settings.fail_fast is True
        assert settings.block_tag == 16
        assert settings.log_level == "DEBUG"

    def test_overrides_win_and_none_means_unset(self, recon_env):
        recon_env.setenv("DATABASE_URL", DB_URL)
        recon_env.setenv("RPC_URL", RPC)
        recon_env.setenv("RECON_FETCH_RETRIES", "5")

        settings = load_settings(max_concurrency=2, fetch_retries=None, fail_fast=True)

        assert settings.max_concurrency == 2
        assert settings.fetch_retries == 5
        assert settings.fail_fast is True

    @pytest.mark.parametrize("key,value", [
        ("max_concurrency", 0),
        ("max_concurrency", "many"),
        ("fetch_timeout", 0),
        ("fetch_retries", -1),
        ("retry_delay", -0.5),
        ("retry_backoff", 0.5),
        ("deadline", -1),
        ("fail_fast", "sometimes"),
        ("block_tag", "tomorrow"),
        ("log_level", "LOUD"),
    ])
    def test_invalid_values(self, recon_env, key, value):
        recon_env.setenv("DATABASE_URL", DB_URL)
        recon_env.setenv("RPC_URL", RPC)

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(**{key: value})

        assert exc_info.value.config_key == key

    @pytest.mark.parametrize("rpc_url", ["http://[::1", "ftp://node", "localhost:8545", "http://"])
    def test_rpc_url_must_be_http_with_host(self, recon_env, rpc_url):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(database_url=DB_URL, rpc_url=rpc_url)

        assert exc_info.value.config_key == "rpc_url"

    def test_bad_rpc_url_is_checked_even_when_optional(self, recon_env):
        with pytest.raises(ConfigurationError):
            load_settings(require_rpc=False, database_url=DB_URL, rpc_url="ftp://node")

    def test_unknown_override(self, recon_env):
        with pytest.raises(ConfigurationError, match="Unknown settings"):
            load_settings(database_url=DB_URL, rpc_url=RPC, colour="blue")

    def test_settings_are_frozen(self, recon_env):
        settings = load_settings(database_url=DB_URL, rpc_url=RPC)

        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.max_concurrency = 99

    def test_reconciler_options(self, recon_env):
        settings = load_settings(database_url=DB_URL, rpc_url=RPC, fetch_retries=1, retry_delay=0)

        assert settings.reconciler_options() == {
            "max_concurrent": 8,
            "fetch_timeout": 10.0,
            "max_retries": 1,
            "retry_delay": 0.0,
            "retry_backoff": 2.0,
            "fail_fast": False,
        }

    def test_redacted_hides_credentials(self, recon_env):
        settings = load_settings(database_url="postgresql://recon:hunter2@db/indexer", rpc_url=RPC)

        assert "hunter2" not in str(settings.redacted())


class TestParseBlockTag:

    def test_named_tags(self):
        assert parse_block_tag("Finalized") == "finalized"
        assert parse_block_tag("safe") == "safe"

    def test_numbers(self):
        assert parse_block_tag(0) == 0
        assert parse_block_tag("19000000") == 19_000_000
        assert parse_block_tag("0xff") == 255

    @pytest.mark.parametrize("value", [-1, "-5", True, "recent"])
    def test_rejected(self, value):
        with pytest.raises(ConfigurationError):
            parse_block_tag(value)
