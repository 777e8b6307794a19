import importlib
import os


def _reload_config_with_env(monkeypatch, env):
    # Clear env first, then set vars
    for k in list(os.environ.keys()):
        if k in ("BOT_TOKEN", "TELEGRAM_TOKEN", "MAX_PEOPLE_LIMIT", "MAX_PEOPLE_POLICY", "DEFAULT_TZ"):
            monkeypatch.delenv(k, raising=False)
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    # Ensure we reload multilink.config fresh
    if "multilink.config" in list(importlib.sys.modules.keys()):
        del importlib.sys.modules["multilink.config"]
    conf = importlib.import_module("multilink.config")
    importlib.reload(conf)
    return conf


def test_prefers_bot_token(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {"BOT_TOKEN": "bot_token_here", "TELEGRAM_TOKEN": "legacy"})
    assert conf.TELEGRAM_TOKEN == "bot_token_here"


def test_falls_back_to_telegram_token(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {"TELEGRAM_TOKEN": "legacy"})
    assert conf.TELEGRAM_TOKEN == "legacy"


def test_missing_token(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {})
    assert conf.TELEGRAM_TOKEN == "PUT-YOUR-TOKEN-HERE"


def test_capacity_defaults(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {})
    assert conf.MAX_PEOPLE_LIMIT == 50
    assert conf.MAX_PEOPLE_POLICY == "reject"


def test_capacity_overrides(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {"MAX_PEOPLE_LIMIT": "20", "MAX_PEOPLE_POLICY": "Clamp"})
    assert conf.MAX_PEOPLE_LIMIT == 20
    assert conf.MAX_PEOPLE_POLICY == "clamp"


def test_bad_capacity_values_fall_back(monkeypatch):
    conf = _reload_config_with_env(monkeypatch, {"MAX_PEOPLE_LIMIT": "lots", "MAX_PEOPLE_POLICY": "ignore"})
    assert conf.MAX_PEOPLE_LIMIT == 50
    assert conf.MAX_PEOPLE_POLICY == "reject"
