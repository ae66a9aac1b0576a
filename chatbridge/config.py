"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from chatbridge.llm.types import ConnectionSettings, ThinkingSettings
from chatbridge.prompts.conductor import DEFAULT_PHASE_PROMPTS
from chatbridge.types import ConfigError

DEFAULT_CONFIG_PATH = "~/.chatbridge/config.yaml"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ConnectionConfig:
    api_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    api_key: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: int = 120
    max_tokens: int = 4_096


@dataclass
class ThinkingConfig:
    anthropic_enabled: bool = False
    anthropic_budget: int = 8192
    google_enabled: bool = True
    google_budget: int = 8192


@dataclass
class ConductorConfig:
    enabled: bool = False
    max_phases: int = 10
    debug_fetch_attempts: int = 5
    debug_fetch_delay: float = 0.1
    prompts: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PHASE_PROMPTS))


@dataclass
class ToolsConfig:
    enabled: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    timeout_seconds: int = 30
    plugins_enabled: bool = False


@dataclass
class StoreConfig:
    history_db: str = "~/.chatbridge/history.db"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatBridgeConfig:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    thinking: ThinkingConfig = field(default_factory=ThinkingConfig)
    conductor: ConductorConfig = field(default_factory=ConductorConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'connection.model')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def resolve_api_key(self) -> str:
        """A literal ``api_key`` wins; otherwise read ``api_key_env``."""
        if self.connection.api_key:
            return self.connection.api_key
        if self.connection.api_key_env:
            return os.environ.get(self.connection.api_key_env, "")
        return ""

    def connection_settings(self) -> ConnectionSettings:
        """The view of this config the provider adapters work from."""
        return ConnectionSettings(
            api_url=self.connection.api_url,
            model=self.connection.model,
            api_key=self.resolve_api_key(),
            max_tokens=self.connection.max_tokens,
            thinking=ThinkingSettings(
                anthropic_enabled=self.thinking.anthropic_enabled,
                anthropic_budget=self.thinking.anthropic_budget,
                google_enabled=self.thinking.google_enabled,
                google_budget=self.thinking.google_budget,
            ),
        )

    def validate(self) -> list[str]:
        """Return human-readable problems; an empty list means the config is usable."""
        problems: list[str] = []
        if not self.connection.api_url.startswith(("http://", "https://")):
            problems.append(f"connection.api_url must be an http(s) URL: {self.connection.api_url!r}")
        if not self.connection.model:
            problems.append("connection.model is empty")
        if self.connection.timeout_seconds <= 0:
            problems.append("connection.timeout_seconds must be positive")
        if self.connection.max_tokens <= 0:
            problems.append("connection.max_tokens must be positive")
        if self.conductor.max_phases < 1:
            problems.append("conductor.max_phases must be at least 1")
        if self.tools.timeout_seconds <= 0:
            problems.append("tools.timeout_seconds must be positive")
        if self.thinking.google_budget < -1:
            problems.append("thinking.google_budget must be -1 (auto), 0 (off) or positive")
        unknown = set(self.conductor.prompts) - set(DEFAULT_PHASE_PROMPTS)
        if unknown:
            problems.append(f"conductor.prompts has unknown phase keys: {sorted(unknown)}")
        return problems

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        if d["connection"].get("api_key"):
            d["connection"]["api_key"] = "***"
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    try:
        for part in parts[:-1]:
            obj = getattr(obj, part)
        if not hasattr(obj, parts[-1]):
            raise AttributeError(parts[-1])
    except AttributeError:
        raise ConfigError(f"Unknown config key: {dotpath}") from None
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    try:
        if target_type is int:
            return int(value)
        if target_type is float:
            return float(value)
    except ValueError:
        raise ConfigError(f"Expected {target_type.__name__}, got {value!r}") from None
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: Any) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section for {cls.__name__} must be a mapping")
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATBRIDGE_API_URL":               ("connection.api_url", str),
    "CHATBRIDGE_MODEL":                 ("connection.model", str),
    "CHATBRIDGE_API_KEY":               ("connection.api_key", str),
    "CHATBRIDGE_API_KEY_ENV":           ("connection.api_key_env", str),
    "CHATBRIDGE_TIMEOUT":               ("connection.timeout_seconds", int),
    "CHATBRIDGE_MAX_TOKENS":            ("connection.max_tokens", int),
    "CHATBRIDGE_ANTHROPIC_THINKING":    ("thinking.anthropic_enabled", bool),
    "CHATBRIDGE_ANTHROPIC_BUDGET":      ("thinking.anthropic_budget", int),
    "CHATBRIDGE_GOOGLE_THINKING":       ("thinking.google_enabled", bool),
    "CHATBRIDGE_GOOGLE_BUDGET":         ("thinking.google_budget", int),
    "CHATBRIDGE_CONDUCTOR":             ("conductor.enabled", bool),
    "CHATBRIDGE_CONDUCTOR_MAX_PHASES":  ("conductor.max_phases", int),
    "CHATBRIDGE_TOOLS_ENABLED":         ("tools.enabled", list),
    "CHATBRIDGE_TOOLS_DISABLED":        ("tools.disabled", list),
    "CHATBRIDGE_TOOLS_TIMEOUT":         ("tools.timeout_seconds", int),
    "CHATBRIDGE_PLUGINS_ENABLED":       ("tools.plugins_enabled", bool),
    "CHATBRIDGE_HISTORY_DB":            ("store.history_db", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatBridgeConfig:
    """
    Build a ChatBridgeConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional; missing files are ignored)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides

    Raises ``ConfigError`` for unparseable YAML, an unknown profile, or a
    malformed section.
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            try:
                with p.open("r", encoding="utf-8") as f:
                    file_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Could not parse {p}: {exc}") from exc
            if not isinstance(file_data, dict):
                raise ConfigError(f"{p} must contain a mapping at the top level")
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = (raw.get("profiles") or {}).get(profile)
        if profile_data is None:
            raise ConfigError(f"Unknown profile: {profile}")
        raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    conductor_raw = dict(raw.get("conductor") or {})
    if "prompts" in conductor_raw:
        conductor_raw["prompts"] = {**DEFAULT_PHASE_PROMPTS, **(conductor_raw["prompts"] or {})}

    cfg = ChatBridgeConfig(
        connection=_build_section(ConnectionConfig, raw.get("connection")),
        thinking=_build_section(ThinkingConfig, raw.get("thinking")),
        conductor=_build_section(ConductorConfig, conductor_raw),
        tools=_build_section(ToolsConfig, raw.get("tools")),
        store=_build_section(StoreConfig, raw.get("store")),
        profiles=raw.get("profiles") or {},
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
