"""
TokenShrinker - Configuration

Settings come from three layers, later ones winning:
1. built-in defaults
2. config.yaml (path from --config or TOKEN_SHRINKER_CONFIG)
3. environment variables (optionally seeded from a .env file)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

CONFIG_ENV_VAR = "TOKEN_SHRINKER_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULT_INCLUDE = [
    "**/*.py",
    "**/*.js",
    "**/*.ts",
    "**/*.jsx",
    "**/*.tsx",
    "**/*.mjs",
    "**/*.ejs",
    "**/*.html",
    "**/*.css",
    "**/*.md",
]

DEFAULT_IGNORE = [
    "node_modules/**",
    "dist/**",
    "build/**",
    "summaries/**",
    "**/*.log",
]

# Provider name -> (api key variable, model variable, default model)
PROVIDERS: Dict[str, tuple] = {
    "openrouter": ("OPENROUTER_API_KEY", "OPENROUTER_MODEL", "meta-llama/llama-4-maverick:free"),
    "openai": ("OPENAI_API_KEY", "OPENAI_MODEL", "gpt-4o-mini"),
    "anthropic": ("ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "claude-3-haiku-20240307"),
    "ollama": (None, "OLLAMA_MODEL", "llama2"),
}
DEFAULT_PROVIDER = "openrouter"


# =============================================================================
# SETTINGS MODELS
# =============================================================================


class WatcherSettings(BaseModel):
    interval_seconds: float = Field(default=2.0, gt=0)
    include: List[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE), min_length=1)
    ignore: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE))


class ProviderSettings(BaseModel):
    name: str = DEFAULT_PROVIDER
    api_key: Optional[str] = Field(default=None, repr=False)
    model: str = PROVIDERS[DEFAULT_PROVIDER][2]
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=60.0, gt=0)
    temperature: float = 0.3

    @property
    def requires_api_key(self) -> bool:
        return PROVIDERS.get(self.name, (None,))[0] is not None

    @property
    def litellm_model(self) -> str:
        """Model id in LiteLLM's `<provider>/<model>` form."""
        if self.model.startswith(f"{self.name}/"):
            return self.model
        return f"{self.name}/{self.model}"


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=4343, gt=0, lt=65536)


class Settings(BaseModel):
    summaries_dir: str = "summaries"
    token_limit: int = Field(default=2000, gt=0)
    include_repo_context: bool = True
    retry_on_error: bool = False
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


# =============================================================================
# LOADING
# =============================================================================


def load_yaml_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file. Missing or broken files yield {}."""
    config_file = Path(config_path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    if not config_file.exists():
        if config_path:
            logger.warning(f"Config file not found: {config_file}. Using defaults.")
        return {}

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading config {config_file}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Config {config_file} must be a mapping, got {type(data).__name__}")
        return {}

    logger.debug(f"Loaded configuration from: {config_file}")
    return data


def _split_list(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def provider_from_env(base: Mapping[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Resolve provider name, credentials and model from the environment.

    Lookup order for the key: USER_API_KEY, the provider's own variable,
    AI_API_KEY. For the model: provider variable, AI_MODEL, config, default.
    """
    requested = (
        env.get("USER_PREFERRED_PROVIDER") or env.get("AI_PROVIDER") or base.get("name") or DEFAULT_PROVIDER
    ).strip().lower()

    name = requested
    if name not in PROVIDERS:
        logger.warning(f"Unknown provider '{requested}', falling back to {DEFAULT_PROVIDER}")
        name = DEFAULT_PROVIDER

    key_var, model_var, default_model = PROVIDERS[name]
    resolved: Dict[str, Any] = dict(base)
    resolved["name"] = name

    api_key = env.get("USER_API_KEY") or (env.get(key_var) if key_var else None) or env.get("AI_API_KEY")
    if api_key:
        resolved["api_key"] = api_key

    config_model = base.get("model") if base.get("name", name) == name else None
    resolved["model"] = env.get(model_var) or env.get("AI_MODEL") or config_model or default_model

    if name == "ollama":
        resolved["base_url"] = env.get("OLLAMA_BASE_URL") or base.get("base_url") or "http://localhost:11434"

    return resolved


def load_settings(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build Settings from config.yaml and the environment."""
    env = os.environ if env is None else env
    raw = load_yaml_config(config_path)

    watcher_raw = dict(raw.get("watcher") or {})
    if env.get("WATCH_PATTERNS"):
        watcher_raw["include"] = _split_list(env["WATCH_PATTERNS"])
    if env.get("WATCH_IGNORE"):
        watcher_raw["ignore"] = _split_list(env["WATCH_IGNORE"])

    server_raw = dict(raw.get("server") or {})
    if env.get("PORT"):
        server_raw["port"] = env["PORT"]

    merged = dict(raw)
    merged["watcher"] = watcher_raw
    merged["provider"] = provider_from_env(raw.get("provider") or {}, env)
    merged["server"] = server_raw

    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        logger.error(f"Invalid configuration, using defaults: {e}")
        fallback = {"provider": provider_from_env({}, env)}
        return Settings.model_validate(fallback)
