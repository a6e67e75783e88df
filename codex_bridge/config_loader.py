"""Configuration loading from YAML files with environment variable support.

Precedence, lowest to highest: built-in defaults, the YAML file, process
environment variables. String values in the YAML file may reference
``${VAR}`` or ``$VAR``; those are resolved from a ``.env`` file next to the
config file first and from the process environment second.
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError

logger = logging.getLogger("codex-bridge")

CONFIG_PATH_ENV = "CODEX_BRIDGE_CONFIG"

DEFAULT_BASE_URL = "https://chatgpt.com/backend-api"
DEFAULT_HOME = Path("~/.codex-bridge")
DEFAULT_CACHE_DIR = DEFAULT_HOME / "cache"
DEFAULT_AUTH_PATH = DEFAULT_HOME / "auth" / "codex.json"
DEFAULT_BRIDGE_CACHE = DEFAULT_CACHE_DIR / "tooling-bridge.txt"
DEFAULT_ALLOWED_MODELS = ["gpt-5-codex", "gpt-5"]
DEFAULT_PROXY_HOST = "127.0.0.1"
DEFAULT_PROXY_PORT = 4000

PROMPT_STRATEGIES = ("auto", "force", "disabled")


@dataclass(frozen=True)
class ModelDefaults:
    """Reasoning/text controls merged into requests that do not set them."""

    reasoning_effort: str = "medium"
    reasoning_summary: str = "auto"
    text_verbosity: str = "medium"
    include: tuple[str, ...] = ("reasoning.encrypted_content",)

    def merged(self, overrides: Mapping[str, Any]) -> "ModelDefaults":
        known = {key: overrides[key] for key in _DEFAULT_KEYS if overrides.get(key) is not None}
        if "include" in known:
            known["include"] = tuple(str(item) for item in _ensure_list(known["include"]))
        return replace(self, **known)


_DEFAULT_KEYS = ("reasoning_effort", "reasoning_summary", "text_verbosity", "include")


@dataclass(frozen=True)
class OAuthSettings:
    client_id: str = "app_EMoamEEZ73f0CkXaXp7hrann"
    authorize_url: str = "https://auth.openai.com/oauth/authorize"
    token_url: str = "https://auth.openai.com/oauth/token"
    redirect_uri: str = "http://localhost:1455/auth/callback"
    scope: str = "openid profile email offline_access"


@dataclass
class ProxyConfig:
    """Resolved settings for one bridge process."""

    base_url: str = DEFAULT_BASE_URL
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR.expanduser())
    auth_path: Path = field(default_factory=lambda: DEFAULT_AUTH_PATH.expanduser())
    bridge_prompt_cache_path: Path = field(
        default_factory=lambda: DEFAULT_BRIDGE_CACHE.expanduser()
    )
    debug: bool = False
    prompt_injection_strategy: str = "disabled"
    account_id: Optional[str] = None
    request_logging: bool = False
    defaults: ModelDefaults = field(default_factory=ModelDefaults)
    model_defaults: dict[str, dict[str, Any]] = field(default_factory=dict)
    oauth: OAuthSettings = field(default_factory=OAuthSettings)
    host: str = DEFAULT_PROXY_HOST
    port: int = DEFAULT_PROXY_PORT
    auth_token: str = ""
    allowed_models: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_MODELS))

    def defaults_for(self, model: Optional[str]) -> ModelDefaults:
        """Return global defaults overlaid with the per-model entry, if any."""
        if not model:
            return self.defaults
        lowered = model.lower()
        for name, overrides in self.model_defaults.items():
            if name.lower() == lowered and isinstance(overrides, Mapping):
                return self.defaults.merged(overrides)
        return self.defaults


def resolve_config_path(path: str) -> Path:
    return Path(path).expanduser().resolve()


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    substitute_env: bool = True,
) -> ProxyConfig:
    """Load configuration from an optional YAML file plus the environment.

    Args:
        path: Path to the config file. Defaults to ``$CODEX_BRIDGE_CONFIG``;
              without either, only defaults and the environment are used.
        env: Environment mapping (defaults to ``os.environ``).
        substitute_env: Whether to substitute ``${VAR}`` references.

    Returns:
        The resolved ``ProxyConfig``.
    """
    env = os.environ if env is None else env
    if path is None:
        path = env.get(CONFIG_PATH_ENV) or None

    data: dict[str, Any] = {}
    if path:
        config_path = resolve_config_path(path)
        logger.info(f"Loading configuration from {config_path}")
        if not config_path.exists():
            logger.error(f"Config file not found: {config_path}")
            raise RuntimeError(f"Config file not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        data = loaded

        if substitute_env:
            env_file = config_path.with_name(".env")
            env_values = load_env_values(env_file)
            if env_values:
                logger.info(f"Loading environment variables from {env_file}")
            data = _substitute_env_vars(data, env_values, env)

    config = build_config(data, env)
    logger.debug(
        "Configuration resolved: base_url=%s, strategy=%s, allowed_models=%s",
        config.base_url,
        config.prompt_injection_strategy,
        config.allowed_models,
    )
    return config


def build_config(data: Mapping[str, Any], env: Mapping[str, str]) -> ProxyConfig:
    """Merge a parsed config mapping with environment overrides."""
    proxy_section = data.get("proxy") or {}
    if not isinstance(proxy_section, Mapping):
        raise ConfigurationError("'proxy' section must be a mapping")

    defaults = ModelDefaults()
    raw_defaults = data.get("defaults") or {}
    if isinstance(raw_defaults, Mapping):
        defaults = defaults.merged(raw_defaults)

    model_defaults = data.get("model_defaults") or {}
    if not isinstance(model_defaults, Mapping):
        raise ConfigurationError("'model_defaults' must map model names to settings")

    oauth = OAuthSettings()
    raw_oauth = data.get("oauth") or {}
    if isinstance(raw_oauth, Mapping):
        known = {k: str(v) for k, v in raw_oauth.items() if k in OAuthSettings.__dataclass_fields__ and v}
        oauth = replace(oauth, **known)

    strategy = _prompt_mode(env.get("CODEX_MODE"))
    if strategy is None:
        strategy = str(data.get("prompt_injection_strategy") or "disabled").strip().lower()
    if strategy not in PROMPT_STRATEGIES:
        raise ConfigurationError(
            f"prompt_injection_strategy must be one of {', '.join(PROMPT_STRATEGIES)}, got '{strategy}'"
        )

    cache_dir = _path(env.get("CODEX_BRIDGE_CACHE_DIR") or data.get("cache_dir"), DEFAULT_CACHE_DIR)

    allowed_models = _split_models(env.get("ANTHROPIC_ALLOWED_MODELS"))
    if not allowed_models:
        allowed_models = _ensure_list(proxy_section.get("allowed_models")) or _ensure_list(
            data.get("allowed_models")
        )

    return ProxyConfig(
        base_url=str(env.get("CODEX_BRIDGE_BASE_URL") or data.get("base_url") or DEFAULT_BASE_URL),
        cache_dir=cache_dir,
        auth_path=_path(env.get("CODEX_BRIDGE_AUTH_PATH") or data.get("auth_path"), DEFAULT_AUTH_PATH),
        bridge_prompt_cache_path=_path(
            env.get("CODEX_BRIDGE_BRIDGE_CACHE") or data.get("bridge_prompt_cache_path"),
            DEFAULT_BRIDGE_CACHE,
        ),
        debug=_parse_bool(env.get("CODEX_BRIDGE_DEBUG"), _parse_bool(data.get("debug"), False)),
        prompt_injection_strategy=strategy,
        account_id=env.get("CODEX_BRIDGE_ACCOUNT_ID") or data.get("account_id") or None,
        request_logging=_parse_bool(data.get("request_logging"), False),
        defaults=defaults,
        model_defaults={str(k): dict(v) for k, v in model_defaults.items() if isinstance(v, Mapping)},
        oauth=oauth,
        host=str(
            env.get("PROXY_HOST") or data.get("host") or proxy_section.get("host") or DEFAULT_PROXY_HOST
        ),
        port=_resolve_port(env.get("PROXY_PORT"), data.get("port") or proxy_section.get("port")),
        auth_token=str(
            env.get("ANTHROPIC_AUTH_TOKEN")
            or data.get("auth_token")
            or proxy_section.get("auth_token")
            or ""
        ),
        allowed_models=allowed_models or list(DEFAULT_ALLOWED_MODELS),
    )


def _parse_bool(value: Any, fallback: bool) -> bool:
    if value is None:
        return fallback
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _prompt_mode(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in {"1", "force"}:
        return "force"
    if normalized in {"0", "disable", "disabled"}:
        return "disabled"
    if normalized == "auto":
        return "auto"
    return None


def _path(value: Any, fallback: Path) -> Path:
    if value:
        return Path(str(value)).expanduser()
    return fallback.expanduser()


def _ensure_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _split_models(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [model.strip() for model in value.split(",") if model.strip()]


def _resolve_port(env_value: Optional[str], file_value: Any) -> int:
    for candidate in (env_value, file_value):
        if candidate is None:
            continue
        try:
            port = int(candidate)
        except (TypeError, ValueError):
            continue
        if port > 0:
            return port
    return DEFAULT_PROXY_PORT


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def _substitute_env_vars(
    obj: Any,
    env_values: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Any:
    """Recursively substitute environment variables in configuration values.

    Supports ``${VAR_NAME}`` and ``$VAR_NAME``. Unset variables are left as
    the literal placeholder and reported with a warning.
    """
    env_values = env_values or {}
    environ = os.environ if environ is None else environ

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values, environ) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values, environ) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = environ.get(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj
