"""Tests for configuration loading."""

import pytest

from chorus_core.config import DEFAULT_CONFIG, load_config, throttlers_from_config
from chorus_core.throttle import ThrottlerOptions


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["model"] == "anthropic"
    assert config["max_workers"] == 4
    assert config["store"] == "sqlite"
    assert config["history_max_entries"] == 500
    assert [t["name"] for t in config["throttlers"]] == ["short", "medium"]


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".chorus.yml"
    cfg.write_text("model: openai\nmax_workers: 2\nstore: noop\n")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "openai"
    assert config["max_workers"] == 2
    assert config["store"] == "noop"


def test_empty_config_file_keeps_defaults(tmp_path):
    cfg = tmp_path / ".chorus.yml"
    cfg.write_text("")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "anthropic"


def test_non_mapping_config_file_raises(tmp_path):
    cfg = tmp_path / ".chorus.yml"
    cfg.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(config_path=str(cfg))


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".chorus.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": "anthropic"})
    assert config["model"] == "anthropic"


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".chorus.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": None})
    assert config["model"] == "openai"


def test_loading_does_not_mutate_defaults(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config["throttlers"][0]["limit"] = 1
    config["model"] = "openai"

    assert DEFAULT_CONFIG["model"] == "anthropic"
    assert load_config(config_path=str(tmp_path / "nonexistent.yml"))["throttlers"][0]["limit"] == 100


def test_env_vars_loaded(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-key")
    monkeypatch.setenv("OPENAI_API_KEY", "oai-key")
    config = load_config(config_path="nonexistent.yml")
    assert config["github_token"] == "gh-token"
    assert config["anthropic_api_key"] == "ant-key"
    assert config["openai_api_key"] == "oai-key"


def test_missing_env_vars_are_none(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    config = load_config(config_path="nonexistent.yml")
    assert config["github_token"] is None


class TestThrottlersFromConfig:
    def test_defaults(self):
        throttlers = throttlers_from_config(load_config(config_path="nonexistent.yml"))
        assert throttlers == [
            ThrottlerOptions(name="short", limit=100, ttl=1000, block_duration=0),
            ThrottlerOptions(name="medium", limit=500, ttl=10000, block_duration=0),
        ]

    def test_yaml_throttlers(self, tmp_path):
        cfg = tmp_path / ".chorus.yml"
        cfg.write_text("throttlers:\n  - name: burst\n    limit: 5\n    ttl: 2000\n    block_duration: 30000\n")
        throttlers = throttlers_from_config(load_config(config_path=str(cfg)))
        assert throttlers == [ThrottlerOptions(name="burst", limit=5, ttl=2000, block_duration=30000)]

    def test_missing_fields_use_throttler_defaults(self):
        (throttler,) = throttlers_from_config({"throttlers": [{"name": "x"}]})
        assert throttler.limit == 100
        assert throttler.ttl == 60000

    def test_empty_list_means_no_throttling(self):
        assert throttlers_from_config({"throttlers": []}) == []

    def test_non_mapping_entry_raises(self):
        with pytest.raises(ValueError):
            throttlers_from_config({"throttlers": ["short"]})
