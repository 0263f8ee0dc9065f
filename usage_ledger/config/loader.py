"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


class StorageBackend(Enum):
    """Durable storage used for usage events."""
    RELATIONAL = "relational"
    FILE = "file"


DEFAULT_DATA_FILE = "data/token-usage.json"
DEFAULT_LLM_BASE_URL = "https://api.groq.com/openai/v1"

# Priority order: first model is tried first, later ones are fallbacks
DEFAULT_MODELS = (
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "gemma2-9b-it",
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Environment variables, checked in order; earlier names win
DATABASE_URL_ENV = ("POSTGRES_URL", "USAGE_LEDGER_DATABASE_URL")
DATA_FILE_ENV = "USAGE_LEDGER_DATA_FILE"
LOG_LEVEL_ENV = "USAGE_LEDGER_LOG_LEVEL"
LLM_API_KEY_ENV = "GROQ_API_KEY"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class StorageConfig:
    """Where usage events are persisted."""
    database_url: Optional[str] = None
    data_file: str = DEFAULT_DATA_FILE
    read_limit: int = 1000

    def __post_init__(self):
        """Validate storage values."""
        if not self.data_file:
            raise ValueError("data_file cannot be empty")
        if self.read_limit <= 0:
            raise ValueError("read_limit must be > 0")


@dataclass(frozen=True)
class RecorderConfig:
    """Defaults applied when recording usage."""
    default_persona: str = "asisten-umum"

    def __post_init__(self):
        if not self.default_persona:
            raise ValueError("default_persona cannot be empty")


@dataclass(frozen=True)
class LLMConfig:
    """Upstream chat completion provider."""
    base_url: str = DEFAULT_LLM_BASE_URL
    models: Tuple[str, ...] = DEFAULT_MODELS
    api_key: Optional[str] = None

    def __post_init__(self):
        if not self.models:
            raise ValueError("models must list at least one model")


@dataclass(frozen=True)
class Settings:
    """Complete application settings."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    log_level: str = "INFO"

    def __post_init__(self):
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {list(LOG_LEVELS)}")

    @property
    def backend(self) -> StorageBackend:
        """Relational when a database URL is configured, file otherwise."""
        if self.storage.database_url:
            return StorageBackend.RELATIONAL
        return StorageBackend.FILE


def load_settings(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Settings:
    """Load settings from an optional YAML file plus environment overrides.

    The YAML file is validated strictly so typos surface as errors instead
    of silently falling back to defaults. Environment variables take
    precedence over file values; the LLM API key is read from the
    environment only.

    Args:
        path: Optional path to YAML configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If path is given and doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if environ is None else environ
    raw_config: Dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

        if not raw_config:
            raise ValueError("Configuration file is empty")
        if not isinstance(raw_config, dict):
            raise ValueError("Configuration file must contain a mapping")

        allowed_top_keys = {'storage', 'recorder', 'llm', 'logging'}
        unknown_keys = set(raw_config.keys()) - allowed_top_keys
        if unknown_keys:
            raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage', {'database_url', 'data_file', 'read_limit'})
    recorder_data = _section(raw_config, 'recorder', {'default_persona'})
    llm_data = _section(raw_config, 'llm', {'base_url', 'models'})
    logging_data = _section(raw_config, 'logging', {'level'})

    database_url = _optional_str(storage_data, 'database_url', 'storage')
    for name in DATABASE_URL_ENV:
        if env.get(name):
            database_url = env[name]
            break

    data_file = env.get(DATA_FILE_ENV) or _optional_str(storage_data, 'data_file', 'storage')

    read_limit = storage_data.get('read_limit', 1000)
    if isinstance(read_limit, bool) or not isinstance(read_limit, int) or read_limit <= 0:
        raise ValueError("'read_limit' in storage must be a positive integer")

    storage = StorageConfig(
        database_url=database_url or None,
        data_file=data_file or DEFAULT_DATA_FILE,
        read_limit=read_limit
    )

    default_persona = _optional_str(recorder_data, 'default_persona', 'recorder')
    recorder = RecorderConfig(default_persona=default_persona) if default_persona else RecorderConfig()

    models = llm_data.get('models', list(DEFAULT_MODELS))
    if not isinstance(models, list) or not all(isinstance(m, str) and m.strip() for m in models):
        raise ValueError("'models' in llm must be a list of model names")
    llm = LLMConfig(
        base_url=_optional_str(llm_data, 'base_url', 'llm') or DEFAULT_LLM_BASE_URL,
        models=tuple(m.strip() for m in models),
        api_key=env.get(LLM_API_KEY_ENV) or None
    )

    log_level = env.get(LOG_LEVEL_ENV) or _optional_str(logging_data, 'level', 'logging') or "INFO"

    return Settings(
        storage=storage,
        recorder=recorder,
        llm=llm,
        log_level=log_level.upper()
    )


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return a validated configuration section (empty if absent).

    Raises:
        ValueError: If the section is not a mapping or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _optional_str(data: Dict[str, Any], key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value.strip() or None


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the root logger unless one is already set up."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
