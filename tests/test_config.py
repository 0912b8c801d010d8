import json
from types import SimpleNamespace

import pytest

from codeimport.config import DEFAULT_DATABASE, ConfigError, ImportConfig, load_config


def test_missing_default_config_is_empty(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config(None) == {}


def test_default_config_json_is_read(tmp_path, monkeypatch):
    (tmp_path / "config.json").write_text(json.dumps({"database": "sqlite:///x.db"}))
    monkeypatch.chdir(tmp_path)
    assert load_config(None) == {"database": "sqlite:///x.db"}


def test_explicit_missing_config_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.json"))


def test_config_must_be_an_object(tmp_path):
    p = tmp_path / "c.json"
    p.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        load_config(str(p))


def test_defaults():
    cfg = ImportConfig.from_sources({})
    assert cfg.database == DEFAULT_DATABASE
    assert cfg.lock_namespace is None
    assert cfg.retry.max_attempts == 5
    assert cfg.retry.initial_delay_seconds == 5
    assert cfg.retry.per_attempt_timeout_seconds == 10
    assert cfg.log_level == "INFO" and cfg.log_json is False


def test_cli_overrides_file_values():
    raw = {"database": "sqlite:///file.db", "lock_retries": 2, "lock_retry_delay": 7, "lock_namespace": "prod"}
    args = SimpleNamespace(database="sqlite:///cli.db", lock_retries=9, lock_retry_delay=None, lock_timeout=3)
    cfg = ImportConfig.from_sources(raw, args)
    assert cfg.database == "sqlite:///cli.db"
    assert cfg.retry.max_attempts == 9
    assert cfg.retry.initial_delay_seconds == 7
    assert cfg.retry.per_attempt_timeout_seconds == 3
    assert cfg.lock_namespace == "prod"


def test_zero_delay_means_no_wait():
    cfg = ImportConfig.from_sources({"lock_retry_delay": 0})
    assert cfg.retry.no_wait is True


def test_invalid_lock_settings_raise_config_error():
    with pytest.raises(ConfigError):
        ImportConfig.from_sources({"lock_retries": 0})
    with pytest.raises(ConfigError):
        ImportConfig.from_sources({"lock_retry_delay": "soon"})


@pytest.mark.parametrize("value", ["false", "False", "no", "off", "0", 0, False, ""])
def test_log_json_false_spellings(value):
    assert ImportConfig.from_sources({"log_json": value}).log_json is False


@pytest.mark.parametrize("value", ["true", "YES", "on", "1", 1, True])
def test_log_json_true_spellings(value):
    assert ImportConfig.from_sources({"log_json": value}).log_json is True


def test_unrecognized_log_json_value_raises():
    with pytest.raises(ConfigError, match="log_json"):
        ImportConfig.from_sources({"log_json": "maybe"})
    with pytest.raises(ConfigError):
        ImportConfig.from_sources({"log_json": 2})
