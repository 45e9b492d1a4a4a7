"""
Settings loaded from ``config/config.yaml`` plus environment secrets.

The YAML file carries the user profile, interests, source filters, model
choices and pipeline tuning. API keys and chat ids only ever come from the
environment (``.env`` is loaded first without overriding exported values).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .env import get_env, load_env
from .retry import ConfigError

DEFAULT_CONFIG_PATH = Path("config") / "config.yaml"
PROVIDERS = ("openai", "anthropic")

# Per provider: fast (scoring) and strong (summaries) models
DEFAULT_MODELS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "openai": {
        "fast": {"model": "gpt-4.1-mini", "max_tokens": 256, "temperature": 0.2},
        "strong": {"model": "gpt-5-mini", "max_tokens": 4096, "temperature": 0.5},
    },
    "anthropic": {
        "fast": {"model": "claude-3-5-haiku-latest", "max_tokens": 256},
        "strong": {"model": "claude-sonnet-4-20250514", "max_tokens": 512},
    },
}


@dataclass(frozen=True)
class ModelSettings:
    model: str
    max_tokens: int
    temperature: Optional[float] = None


@dataclass(frozen=True)
class LLMSettings:
    provider: str
    fast: ModelSettings
    strong: ModelSettings
    embedding_model: str = "text-embedding-3-small"
    timeout: float = 30.0
    max_attempts: int = 5
    base_delay: float = 1.0
    rate_limit_cooldown: float = 15.0
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None


@dataclass(frozen=True)
class GitHubSourceSettings:
    enabled: bool = True
    min_stars: int = 10
    languages: Tuple[str, ...] = ("python",)
    token: Optional[str] = None
    page_delay: float = 0.2
    window_delay: float = 0.5
    rate_limit_cooldown: float = 60.0


@dataclass(frozen=True)
class RedditSourceSettings:
    enabled: bool = False
    subreddits: Tuple[str, ...] = ()
    min_score: int = 50
    flair_filters: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationSettings:
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    telegram_min_score: Optional[float] = None
    slack_min_score: Optional[float] = None
    recency_days: int = 3

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_webhook_url)


@dataclass(frozen=True)
class PipelineSettings:
    data_dir: Path = Path("data")
    db_path: Path = Path("data") / "hitarchive.db"
    lookback_days: int = 365
    chunk_days: int = 7
    max_enrich_attempts: int = 3
    group_size: int = 10
    score_limit: int = 50000
    enrich_limit: int = 1000
    embed_limit: int = 10000
    content_limit: int = 5000
    score_pacing: float = 0.5
    enrich_pacing: float = 0.5
    embed_pacing: float = 0.2
    content_pacing: float = 0.1
    embed_batch_size: int = 100


@dataclass(frozen=True)
class Settings:
    profile: str
    interests: Dict[str, List[str]]
    exclude: Tuple[str, ...]
    min_score: float  # 0..1, enrichment threshold and default notification floor
    language: str
    github: GitHubSourceSettings
    reddit: RedditSourceSettings
    llm: LLMSettings
    pipeline: PipelineSettings
    notifications: NotificationSettings
    import_db_path: Optional[Path] = None
    config_path: Optional[Path] = None

    @property
    def vectors_path(self) -> Path:
        return self.pipeline.data_dir / "vectors.db"

    @property
    def checkpoint_path(self) -> Path:
        return self.pipeline.data_dir / "progress.json"


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def _number(data: Mapping[str, Any], name: str, default, cast=float):
    value = data.get(name, default)
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Config value '{name}' must be a number, got {value!r}") from e


def _str_list(data: Mapping[str, Any], name: str) -> Tuple[str, ...]:
    value = data.get(name) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"Config value '{name}' must be a list")
    return tuple(str(v) for v in value)


def _score_floor(value: Any, name: str) -> Optional[float]:
    """Scores are written 0..100 in the file and stored 0..1."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Config value '{name}' must be a number, got {value!r}") from e
    if not 0 <= number <= 100:
        raise ConfigError(f"Config value '{name}' must be between 0 and 100")
    return number / 100


def _model(provider_models: Mapping[str, Any], role: str, provider: str) -> ModelSettings:
    defaults = DEFAULT_MODELS[provider][role]
    raw = {**defaults, **(provider_models.get(role) or {})}
    temperature = raw.get("temperature")
    return ModelSettings(
        model=str(raw["model"]),
        max_tokens=int(raw["max_tokens"]),
        temperature=float(temperature) if temperature is not None else None,
    )


def _llm_settings(data: Mapping[str, Any]) -> LLMSettings:
    llm = _section(data, "llm")
    provider = (get_env("LLM_PROVIDER") or llm.get("provider") or "openai").lower()
    if provider not in PROVIDERS:
        raise ConfigError(f"Unknown LLM provider '{provider}', expected one of {PROVIDERS}")

    models = _section(_section(llm, "models"), provider)
    return LLMSettings(
        provider=provider,
        fast=_model(models, "fast", provider),
        strong=_model(models, "strong", provider),
        embedding_model=str(llm.get("embedding_model") or "text-embedding-3-small"),
        timeout=_number(llm, "timeout", 30.0),
        max_attempts=_number(llm, "max_attempts", 5, int),
        base_delay=_number(llm, "base_delay", 1.0),
        rate_limit_cooldown=_number(llm, "rate_limit_cooldown", 15.0),
        openai_api_key=get_env("OPENAI_API_KEY"),
        anthropic_api_key=get_env("ANTHROPIC_API_KEY"),
    )


def _github_settings(sources: Mapping[str, Any]) -> GitHubSourceSettings:
    github = _section(sources, "github")
    return GitHubSourceSettings(
        enabled=bool(github.get("enabled", True)),
        min_stars=_number(github, "min_stars", 10, int),
        languages=_str_list(github, "languages") or ("python",),
        token=get_env("GITHUB_TOKEN"),
        page_delay=_number(github, "page_delay", 0.2),
        window_delay=_number(github, "window_delay", 0.5),
        rate_limit_cooldown=_number(github, "rate_limit_cooldown", 60.0),
    )


def _reddit_settings(sources: Mapping[str, Any]) -> RedditSourceSettings:
    reddit = _section(sources, "reddit")
    flair = _section(reddit, "flair_filters")
    return RedditSourceSettings(
        enabled=bool(reddit.get("enabled", bool(reddit))),
        subreddits=_str_list(reddit, "subreddits"),
        min_score=_number(reddit, "min_score", 50, int),
        flair_filters={str(sub): _str_list(flair, sub) for sub in flair},
    )


def _pipeline_settings(data: Mapping[str, Any]) -> PipelineSettings:
    pipeline = _section(data, "pipeline")
    defaults = PipelineSettings()
    data_dir = Path(pipeline.get("data_dir") or defaults.data_dir)
    db_path = Path(pipeline["db_path"]) if pipeline.get("db_path") else data_dir / "hitarchive.db"

    values: Dict[str, Any] = {"data_dir": data_dir, "db_path": db_path}
    for name in (
        "lookback_days", "chunk_days", "max_enrich_attempts", "group_size",
        "score_limit", "enrich_limit", "embed_limit", "content_limit", "embed_batch_size",
    ):
        values[name] = _number(pipeline, name, getattr(defaults, name), int)
    for name in ("score_pacing", "enrich_pacing", "embed_pacing", "content_pacing"):
        values[name] = _number(pipeline, name, getattr(defaults, name))
    return PipelineSettings(**values)


def _notification_settings(data: Mapping[str, Any]) -> NotificationSettings:
    notifications = _section(data, "notifications")
    return NotificationSettings(
        telegram_bot_token=get_env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=get_env("TELEGRAM_CHAT_ID"),
        slack_webhook_url=get_env("SLACK_WEBHOOK_URL"),
        telegram_min_score=_score_floor(_section(notifications, "telegram").get("min_score"), "telegram.min_score"),
        slack_min_score=_score_floor(_section(notifications, "slack").get("min_score"), "slack.min_score"),
        recency_days=_number(notifications, "recency_days", 3, int),
    )


def settings_from_dict(data: Mapping[str, Any], config_path: Optional[Path] = None) -> Settings:
    """Build Settings from parsed YAML (environment secrets are read here too)."""
    if not isinstance(data, Mapping):
        raise ConfigError("Config file must contain a mapping at the top level")

    interests = _section(data, "interests")
    sources = _section(data, "sources")
    import_db = get_env("IMPORT_DB_PATH")

    return Settings(
        profile=str(data.get("profile") or "").strip(),
        interests={str(level): list(_str_list(interests, level)) for level in interests},
        exclude=_str_list(data, "exclude"),
        min_score=_score_floor(data.get("min_score", 80), "min_score"),
        language=str(data.get("language") or "en"),
        github=_github_settings(sources),
        reddit=_reddit_settings(sources),
        llm=_llm_settings(data),
        pipeline=_pipeline_settings(data),
        notifications=_notification_settings(data),
        import_db_path=Path(import_db) if import_db else None,
        config_path=config_path,
    )


def load_settings(config_path: Optional[Path] = None, env_path: Optional[Path] = None) -> Settings:
    """
    Load .env and the YAML config file.

    Raises:
        ConfigError: file missing, unreadable or malformed
    """
    load_env(env_path)
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e
    return settings_from_dict(data, config_path=path)
