import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from .config import CONFIG_ROOT, PROJECT_ROOT, deep_merge

LEVEL_DEFAULTS: dict[str, dict[str, Any]] = {
    "goalContext": {"max_tokens": 2000, "temperature": 0.3},
    "strategicBranches": {"max_tokens": 2000, "temperature": 0.3},
    "taskDecomposition": {"max_tokens": 2500, "temperature": 0.25},
    "microParticles": {"max_tokens": 2500, "temperature": 0.2},
    "nanoActions": {"max_tokens": 1500, "temperature": 0.15},
    "contextAdaptivePrimitives": {"max_tokens": 1200, "temperature": 0.1},
    "contextMining": {"max_tokens": 1000, "temperature": 0.2},
    "domainRelevance": {"max_tokens": 500, "temperature": 0.2},
    "painPointValidation": {"max_tokens": 800, "temperature": 0.2},
    "treeEvolution": {"max_tokens": 1000, "temperature": 0.25},
}


class SystemConfig:
    """Singleton for Forest configuration (config.yaml + .env)."""

    _instance = None
    _config: dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._sync_configs()
            cls._instance._load_config()
        return cls._instance

    def _sync_configs(self):
        """
        Ensure the global configuration folder exists.
        A default config.yaml is written on first run only; user values
        always take priority over the built-in defaults.
        """
        global_path = CONFIG_ROOT / "config.yaml"
        env_path = CONFIG_ROOT / ".env"

        try:
            CONFIG_ROOT.mkdir(parents=True, exist_ok=True)
            if not global_path.exists():
                with open(global_path, "w", encoding="utf-8") as f:
                    yaml.dump(self._get_defaults(), f, default_flow_style=False, allow_unicode=True)
        except OSError:
            # Read-only home: run on built-in defaults
            return

        if env_path.exists():
            env_vars = dotenv_values(env_path)
            for key, value in (env_vars or {}).items():
                if value is None:
                    continue
                if os.environ.get(key) != value:
                    os.environ[key] = value

    def _load_config(self):
        """Loads configuration from the global folder merged over defaults."""
        config_path = CONFIG_ROOT / "config.yaml"
        if not config_path.exists():
            self._config = self._get_defaults()
            return
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
                self._config = deep_merge(self._get_defaults(), loaded)
        except (OSError, yaml.YAMLError):
            self._config = self._get_defaults()

    def _get_defaults(self) -> dict[str, Any]:
        """Default configuration with fallback to environment variables."""
        return {
            "circuit_breaker": {
                "failure_threshold": 3,
                "cooldown_ms": 120000,
                "default_timeout_ms": 45000,
            },
            "generation": {
                "default_max_tokens": 1500,
                "default_temperature": 0.2,
                "levels": {key: dict(value) for key, value in LEVEL_DEFAULTS.items()},
            },
            "vector": {
                "provider": os.getenv("FOREST_VECTOR_PROVIDER", "sqlite"),
                "sqlite_url": os.getenv(
                    "FOREST_VECTOR_URL", "sqlite+aiosqlite:///${FOREST_CONFIG_ROOT}/vectors.db"
                ),
                "chroma_path": "${FOREST_CONFIG_ROOT}/vectors/chroma",
                "dimension": 384,
                "default_top_k": 10,
                "default_threshold": 0.1,
            },
            "selection": {
                "default_energy": 3,
                "default_time": "30 minutes",
                "energy_tolerance": 2,
                "time_slack": 1.2,
                "vector_threshold": 0.1,
            },
            "data": {
                "dir": "${FOREST_CONFIG_ROOT}/data",
                "mirror_retry_attempts": 3,
            },
            "logging": {"level": "INFO", "max_log_size": 10485760, "backup_count": 5},
        }

    def _substitute_placeholders(self, value: Any) -> Any:
        """Substitute ${VAR} placeholders recursively in strings, lists, or dicts."""
        if isinstance(value, str):

            def replace_match(match):
                var_name = match.group(1)
                if var_name == "PROJECT_ROOT":
                    return str(PROJECT_ROOT)
                if var_name in ("CONFIG_ROOT", "FOREST_CONFIG_ROOT"):
                    return str(CONFIG_ROOT)
                if var_name == "HOME":
                    return str(Path.home())
                return os.getenv(var_name, match.group(0))

            return re.sub(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}", replace_match, value)

        if isinstance(value, list):
            return [self._substitute_placeholders(item) for item in value]

        if isinstance(value, dict):
            return {k: self._substitute_placeholders(v) for k, v in value.items()}

        return value

    def get(self, key_path: str, default: Any = None) -> Any:
        keys = key_path.split(".")
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return self._substitute_placeholders(value)

    def get_level_config(self, level_key: str) -> dict[str, Any]:
        """Returns max_tokens/temperature for a generation level."""
        level = self.get(f"generation.levels.{level_key}", {}) or {}
        return {
            "max_tokens": level.get("max_tokens", self.get("generation.default_max_tokens", 1500)),
            "temperature": level.get(
                "temperature", self.get("generation.default_temperature", 0.2)
            ),
        }

    def reload(self):
        self._load_config()

    @property
    def all(self) -> dict[str, Any]:
        return self._config


config = SystemConfig()
