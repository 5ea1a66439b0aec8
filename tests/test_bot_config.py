# -*- coding: utf-8 -*-
"""Tests for parse_env_config(), deep_merge(), parse_config(), get_intents() and WardenBot.review() in bot.py."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bot import WardenBot, deep_merge, get_intents, parse_config, parse_env_config
from utils.decision import DecisionKind

WARDEN_VARS = [
    "WARDEN_TOKEN",
    "WARDEN_CLIENT_ID",
    "WARDEN_OPS",
    "WARDEN_MODULES",
    "WARDEN_DB_TYPE",
    "WARDEN_DB_NAME",
    "WARDEN_DB_USERNAME",
    "WARDEN_DB_PASSWORD",
    "WARDEN_DB_HOST",
    "WARDEN_DB_PORT",
    "WARDEN_ERROR_RECIPIENTS",
]


class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self):
        base = {"database": {"db_type": "sqlite", "db_name": "warden.db"}}
        override = {"database": {"db_name": "/data/warden.db"}}
        assert deep_merge(base, override) == {"database": {"db_type": "sqlite", "db_name": "/data/warden.db"}}

    def test_base_is_not_mutated(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"c": 2}})
        assert base == {"a": {"b": 1}}

    def test_override_replaces_non_dict_with_dict(self):
        assert deep_merge({"key": "string"}, {"key": {"nested": True}}) == {"key": {"nested": True}}

    def test_empty_override(self):
        assert deep_merge({"a": 1}, {}) == {"a": 1}


class TestParseEnvConfig:
    def test_empty_when_no_vars_set(self, monkeypatch):
        for key in WARDEN_VARS:
            monkeypatch.delenv(key, raising=False)
        assert parse_env_config() == {}

    def test_token(self, monkeypatch):
        monkeypatch.setenv("WARDEN_TOKEN", "my_token")
        assert parse_env_config()["bot"]["token"] == "my_token"

    def test_ops_comma_separated(self, monkeypatch):
        monkeypatch.setenv("WARDEN_OPS", "111, 222, 333")
        assert parse_env_config()["bot"]["ops"] == ["111", "222", "333"]

    def test_modules_comma_separated_skips_blanks(self, monkeypatch):
        monkeypatch.setenv("WARDEN_MODULES", "modmail,,")
        assert parse_env_config()["bot"]["modules"] == ["modmail"]

    def test_db_credentials(self, monkeypatch):
        monkeypatch.setenv("WARDEN_DB_USERNAME", "admin")
        monkeypatch.setenv("WARDEN_DB_PASSWORD", "s3cr3t")
        monkeypatch.setenv("WARDEN_DB_HOST", "db.host")
        monkeypatch.setenv("WARDEN_DB_PORT", "5432")
        result = parse_env_config()
        assert result["database"] == {
            "db_username": "admin",
            "db_password": "s3cr3t",
            "db_host": "db.host",
            "db_port": "5432",
        }

    def test_error_recipients_comma_separated(self, monkeypatch):
        monkeypatch.setenv("WARDEN_ERROR_RECIPIENTS", "111,222")
        assert parse_env_config()["notifications"]["error_recipients"] == ["111", "222"]

    def test_only_set_vars_appear_in_result(self, monkeypatch):
        monkeypatch.setenv("WARDEN_TOKEN", "tok")
        monkeypatch.delenv("WARDEN_CLIENT_ID", raising=False)
        result = parse_env_config()
        assert "token" in result["bot"]
        assert "client_id" not in result["bot"]


class TestParseConfig:
    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("bot:\n  token: yaml_token\n  client_id: '123'\n")
        monkeypatch.setenv("WARDEN_TOKEN", "env_token")
        result = parse_config(config_file)
        assert result["bot"]["token"] == "env_token"
        assert result["bot"]["client_id"] == "123"

    def test_missing_yaml_returns_env_only(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WARDEN_TOKEN", "env_only_token")
        result = parse_config(tmp_path / "nonexistent.yaml")
        assert result["bot"]["token"] == "env_only_token"

    def test_empty_yaml_is_empty_config(self, tmp_path, monkeypatch):
        for key in WARDEN_VARS:
            monkeypatch.delenv(key, raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        assert parse_config(config_file) == {}

    def test_broken_yaml_is_ignored(self, tmp_path, monkeypatch, capsys):
        for key in WARDEN_VARS:
            monkeypatch.delenv(key, raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text("bot: [unclosed\n")
        assert parse_config(config_file) == {}
        assert "Error in configuration file" in capsys.readouterr().out


def test_intents_allow_reading_relayed_messages():
    intents = get_intents()
    assert intents.members
    assert intents.message_content
    assert intents.dm_messages


@pytest.mark.asyncio
async def test_review_uses_the_bot_gateways():
    bot = MagicMock()
    with patch("bot.apply_decision", new_callable=AsyncMock) as apply_decision:
        outcome = await WardenBot.review(bot, 1, "Test Guild", "app-1", 42, DecisionKind.APPROVE, reason="welcome")

    apply_decision.assert_awaited_once_with(
        bot, bot.membership, bot.tickets, 1, "Test Guild", "app-1", 42, DecisionKind.APPROVE, "welcome"
    )
    assert outcome is apply_decision.return_value
