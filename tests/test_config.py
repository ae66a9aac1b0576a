"""Tests for the layered configuration loader."""

import pytest

from chatbridge.config import _ENV_MAP, ChatBridgeConfig, load_config
from chatbridge.prompts.conductor import DEFAULT_PHASE_PROMPTS
from chatbridge.types import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_MAP:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def _write(tmp_path, text):
    path = tmp_path / "chatbridge.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults_without_file(self):
        cfg = load_config(None)
        assert cfg.connection.api_url == "https://api.openai.com/v1"
        assert cfg.conductor.max_phases == 10
        assert cfg.conductor.prompts == DEFAULT_PHASE_PROMPTS
        assert cfg.validate() == []

    def test_missing_file_is_ignored(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.connection.model == "gpt-4o"


class TestLayers:
    def test_yaml_file(self, tmp_path):
        path = _write(tmp_path, """
connection:
  api_url: https://api.anthropic.com/v1
  model: claude-3-5-haiku
  unknown_key: ignored
tools:
  disabled: [get_current_time]
""")
        cfg = load_config(path)
        assert cfg.connection.api_url == "https://api.anthropic.com/v1"
        assert cfg.connection.model == "claude-3-5-haiku"
        assert cfg.tools.disabled == ["get_current_time"]

    def test_profile_overlays_file(self, tmp_path):
        path = _write(tmp_path, """
connection:
  model: gpt-4o
  max_tokens: 1000
profiles:
  gemini:
    connection:
      api_url: https://generativelanguage.googleapis.com/v1beta
      model: gemini-2.0-flash
""")
        cfg = load_config(path, profile="gemini")
        assert cfg.connection.model == "gemini-2.0-flash"
        assert cfg.connection.max_tokens == 1000
        assert "gemini" in cfg.profiles

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "connection:\n  model: from-file\n")
        monkeypatch.setenv("CHATBRIDGE_MODEL", "from-env")
        monkeypatch.setenv("CHATBRIDGE_CONDUCTOR", "yes")
        monkeypatch.setenv("CHATBRIDGE_TOOLS_DISABLED", "a, b,")
        monkeypatch.setenv("CHATBRIDGE_CONDUCTOR_MAX_PHASES", "6")
        cfg = load_config(path)
        assert cfg.connection.model == "from-env"
        assert cfg.conductor.enabled is True
        assert cfg.tools.disabled == ["a", "b"]
        assert cfg.conductor.max_phases == 6

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("CHATBRIDGE_MODEL", "from-env")
        cfg = load_config(None, cli_overrides={"connection.model": "from-cli"})
        assert cfg.connection.model == "from-cli"

    def test_session_override(self):
        cfg = load_config(None)
        cfg.set_override("conductor.max_phases", 3)
        assert cfg.conductor.max_phases == 3
        assert cfg.get_override("conductor.max_phases") == 3
        assert cfg.get_override("connection.model") is None

    def test_partial_prompt_overrides_keep_defaults(self, tmp_path):
        path = _write(tmp_path, "conductor:\n  prompts:\n    phase_2_decision: Decide.\n")
        cfg = load_config(path)
        assert cfg.conductor.prompts["phase_2_decision"] == "Decide."
        assert cfg.conductor.prompts["phase_1_thinking"] == DEFAULT_PHASE_PROMPTS["phase_1_thinking"]


class TestErrors:
    def test_bad_yaml(self, tmp_path):
        path = _write(tmp_path, "connection: [unclosed\n")
        with pytest.raises(ConfigError, match="Could not parse"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = _write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path):
        path = _write(tmp_path, "connection: nope\n")
        with pytest.raises(ConfigError, match="ConnectionConfig"):
            load_config(path)

    def test_unknown_profile(self):
        with pytest.raises(ConfigError, match="Unknown profile: ghost"):
            load_config(None, profile="ghost")

    def test_bad_int_env(self, monkeypatch):
        monkeypatch.setenv("CHATBRIDGE_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="Expected int"):
            load_config(None)

    def test_unknown_override_key(self):
        with pytest.raises(ConfigError, match="Unknown config key: connection.nope"):
            load_config(None, cli_overrides={"connection.nope": 1})

    def test_validate_reports_problems(self):
        cfg = ChatBridgeConfig()
        cfg.connection.api_url = "ftp://example"
        cfg.conductor.max_phases = 0
        cfg.conductor.prompts["phase_9"] = "?"
        problems = cfg.validate()
        assert len(problems) == 3
        assert any("api_url" in p for p in problems)
        assert any("max_phases" in p for p in problems)
        assert any("phase_9" in p for p in problems)


class TestConnection:
    def test_literal_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        cfg = ChatBridgeConfig()
        cfg.connection.api_key = "literal"
        assert cfg.resolve_api_key() == "literal"

    def test_key_from_named_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        settings = ChatBridgeConfig().connection_settings()
        assert settings.api_key == "from-env"
        assert settings.model == "gpt-4o"
        assert settings.thinking.google_enabled is True

    def test_to_dict_masks_key(self):
        cfg = ChatBridgeConfig()
        cfg.connection.api_key = "secret"
        d = cfg.to_dict()
        assert d["connection"]["api_key"] == "***"
        assert "_overrides" not in d
        assert cfg.connection.api_key == "secret"
