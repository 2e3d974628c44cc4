"""
Configuration: loads settings from .atlas-graph.yaml, environment variables,
and built-in defaults (in that priority order: explicit args > env > YAML > defaults).
"""

import os

import yaml

from .errors import MalformedInputError


_DEFAULTS = {
    "db_path": "",
    "graph_dir": "",
    "embedding_provider": "",
    "embedding_model": "",
    "ollama_url": "http://localhost:11434",
    "embedding_timeout": 10.0,
    "embedding_retries": 3,
    "embedding_retry_delay": 1.0,
    "env": "",
    "log_dir": ".atlas-graph/logs",
    "dedupe_frontier": False,
}

_PROVIDERS = ("ollama", "simple")

# Config file search locations
_CONFIG_FILENAMES = [".atlas-graph.yaml", ".atlas-graph.yml"]

DB_FILENAME = "knowledge-graph.db"

# Files whose presence marks a directory as a project root.
_ROOT_MARKERS = (".git", "pyproject.toml", "setup.py")


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict if it is unreadable or not a mapping."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def find_project_root(start_path: str | None = None) -> str:
    """Return the nearest ancestor of *start_path* holding a project marker.

    Falls back to the current working directory when none is found.
    """
    current = os.path.abspath(start_path or os.getcwd())
    while True:
        if any(os.path.exists(os.path.join(current, m)) for m in _ROOT_MARKERS):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return os.getcwd()
        current = parent


class Config:
    """Engine configuration.

    Settings are resolved in priority order:
    1. Explicit arguments (handled by caller)
    2. Environment variables
    3. .atlas-graph.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.DB_PATH = _get("KNOWLEDGE_GRAPH_DB", "db_path", _DEFAULTS["db_path"])
        self.GRAPH_DIR = _get("KNOWLEDGE_GRAPH_DIR", "graph_dir", _DEFAULTS["graph_dir"])

        # Embedding section may be nested under "embedding:" in YAML
        emb = yd.get("embedding", {}) if isinstance(yd.get("embedding"), dict) else {}

        def _get_emb(env_key: str, key: str, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            if emb.get(key) is not None:
                return cast(emb[key])
            return _get(env_key, f"embedding_{key}", _DEFAULTS[f"embedding_{key}"], cast)

        self.EMBEDDING_PROVIDER = _get_emb("EMBEDDING_PROVIDER", "provider")
        self.EMBEDDING_MODEL = _get_emb("EMBEDDING_MODEL", "model")
        self.EMBEDDING_TIMEOUT = _get_emb("EMBEDDING_TIMEOUT", "timeout", cast=float)
        self.EMBEDDING_RETRIES = _get_emb("EMBEDDING_RETRIES", "retries", cast=int)
        self.EMBEDDING_RETRY_DELAY = _get_emb("EMBEDDING_RETRY_DELAY", "retry_delay",
                                              cast=float)
        self.OLLAMA_URL = _get("OLLAMA_URL", "ollama_url", _DEFAULTS["ollama_url"])

        self.ENV = _get("ATLAS_GRAPH_ENV", "env", _DEFAULTS["env"]).lower()
        self.LOG_DIR = _get("LOG_DIR", "log_dir", _DEFAULTS["log_dir"])
        self.DEDUPE_FRONTIER = _get_bool("DEDUPE_FRONTIER", "dedupe_frontier",
                                         _DEFAULTS["dedupe_frontier"])

    def validate(self) -> "Config":
        """Reject settings the engine cannot run with."""
        if self.EMBEDDING_PROVIDER and self.EMBEDDING_PROVIDER not in _PROVIDERS:
            raise MalformedInputError(
                f"Unknown embedding provider {self.EMBEDDING_PROVIDER!r}; "
                f"expected one of {_PROVIDERS}")
        if self.EMBEDDING_TIMEOUT <= 0:
            raise MalformedInputError("embedding timeout must be positive")
        if self.EMBEDDING_RETRIES < 1:
            raise MalformedInputError("embedding retries must be at least 1")
        if self.EMBEDDING_RETRY_DELAY < 0:
            raise MalformedInputError("embedding retry delay must not be negative")
        return self

    def resolve_db_path(self) -> str:
        """Database location: explicit path, then graph dir, then project root."""
        if self.DB_PATH:
            return self.DB_PATH
        if self.GRAPH_DIR:
            return os.path.join(os.path.abspath(self.GRAPH_DIR), DB_FILENAME)
        return os.path.join(find_project_root(), DB_FILENAME)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
