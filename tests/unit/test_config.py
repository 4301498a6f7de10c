"""Tests for fintra_ingest.core.config."""

import pytest
from pydantic import ValidationError

from fintra_ingest.core.config import (
    CronConfig,
    FintraConfig,
    FmpConfig,
    StorageConfig,
    _auto_cast,
    _merge_env_vars,
    load_config,
)
from fintra_ingest.core.exceptions import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ("FMP_API_KEY", "FMP_BASE_URL", "CRON_SECRET", "FINTRA_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


class TestFmpConfig:
    def test_valid_construction(self):
        c = FmpConfig(api_key="abc")
        assert c.rate_limit == 10
        assert c.base_url == "https://financialmodelingprep.com"
        assert c.periods == ["FY", "Q1", "Q2", "Q3", "Q4"]

    def test_blank_api_key_rejected(self):
        with pytest.raises(ValidationError, match="api_key must not be blank"):
            FmpConfig(api_key="   ")

    def test_base_url_trailing_slash_stripped(self):
        c = FmpConfig(api_key="abc", base_url="https://example.com/")
        assert c.base_url == "https://example.com"

    def test_base_url_must_be_http(self):
        with pytest.raises(ValidationError, match="http"):
            FmpConfig(api_key="abc", base_url="ftp://example.com")

    def test_rate_limit_max(self):
        with pytest.raises(ValidationError, match="between 1 and 50"):
            FmpConfig(api_key="abc", rate_limit=51)

    def test_rate_limit_min(self):
        with pytest.raises(ValidationError, match="between 1 and 50"):
            FmpConfig(api_key="abc", rate_limit=0)

    def test_unknown_period_rejected(self):
        with pytest.raises(ValidationError, match="unknown periods"):
            FmpConfig(api_key="abc", periods=["FY", "H1"])


class TestCronConfig:
    def test_defaults(self):
        c = CronConfig()
        assert c.secret is None
        assert c.max_duration_seconds == 300
        assert c.concurrency == 1

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError, match="concurrency"):
            CronConfig(concurrency=0)

    def test_duration_must_be_positive(self):
        with pytest.raises(ValidationError, match="max_duration_seconds"):
            CronConfig(max_duration_seconds=0)


class TestFintraConfig:
    def test_frozen(self):
        c = FintraConfig(fmp=FmpConfig(api_key="abc"))
        with pytest.raises(ValidationError):
            c.storage = StorageConfig(sqlite_path="x.db")


class TestLoadConfig:
    def test_missing_api_key_raises(self):
        with pytest.raises(ConfigError):
            load_config()

    def test_prefixed_env_var(self, monkeypatch):
        monkeypatch.setenv("FINTRA_FMP__API_KEY", "from-env")
        config = load_config()
        assert config.fmp.api_key == "from-env"

    def test_alias_env_vars(self, monkeypatch):
        monkeypatch.setenv("FMP_API_KEY", "alias-key")
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        config = load_config()
        assert config.fmp.api_key == "alias-key"
        assert config.cron.secret == "s3cret"

    def test_prefixed_overrides_alias(self, monkeypatch):
        monkeypatch.setenv("FMP_API_KEY", "alias-key")
        monkeypatch.setenv("FINTRA_FMP__API_KEY", "prefixed-key")
        config = load_config()
        assert config.fmp.api_key == "prefixed-key"

    def test_numeric_secret_not_cast(self, monkeypatch):
        monkeypatch.setenv("FINTRA_FMP__API_KEY", "12345")
        monkeypatch.setenv("FINTRA_CRON__SECRET", "987")
        config = load_config()
        assert config.fmp.api_key == "12345"
        assert config.cron.secret == "987"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text(
            "fmp:\n  api_key: yaml-key\n  rate_limit: 5\n"
            "cron:\n  concurrency: 4\n"
        )
        config = load_config(config_path=str(path))
        assert config.fmp.api_key == "yaml-key"
        assert config.fmp.rate_limit == 5
        assert config.cron.concurrency == 4

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yml"
        path.write_text("fmp:\n  api_key: yaml-key\n  rate_limit: 5\n")
        monkeypatch.setenv("FINTRA_FMP__RATE_LIMIT", "20")
        config = load_config(config_path=str(path))
        assert config.fmp.rate_limit == 20

    def test_default_file_in_cwd(self, tmp_path):
        (tmp_path / "fintra.yml").write_text("fmp:\n  api_key: cwd-key\n")
        assert load_config().fmp.api_key == "cwd-key"

    def test_missing_explicit_file(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config(config_path="/nonexistent/fintra.yml")

    def test_yaml_not_mapping(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must be a mapping"):
            load_config(config_path=str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("fmp: [unclosed\n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(config_path=str(path))


class TestEnvHelpers:
    def test_auto_cast(self):
        assert _auto_cast("true") is True
        assert _auto_cast("False") is False
        assert _auto_cast("42") == 42
        assert _auto_cast("1.5") == 1.5
        assert _auto_cast("text") == "text"

    def test_merge_env_vars_nested(self, monkeypatch):
        monkeypatch.setenv("TEST_X__Y__Z", "7")
        result = _merge_env_vars({}, "TEST_")
        assert result == {"x": {"y": {"z": 7}}}
