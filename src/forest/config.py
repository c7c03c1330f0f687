import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Project root (where the running code is)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Global data location, overridable for tests and sandboxed runs
CONFIG_ROOT = Path(os.getenv("FOREST_CONFIG_ROOT", Path.home() / ".config" / "forest"))
os.environ["FOREST_CONFIG_ROOT"] = str(CONFIG_ROOT)

# Load environment variables from global .env only
global_env = CONFIG_ROOT / ".env"
if global_env.exists():
    load_dotenv(global_env)

# Disable opt-out telemetry (ChromaDB, LangChain)
os.environ["ANONYMIZED_TELEMETRY"] = "False"
os.environ["CHROMA_TELEMETRY_ENABLED"] = "False"
os.environ["LANGCHAIN_TRACING_V2"] = "false"

# Subdirectories
LOG_DIR = CONFIG_ROOT / "logs"
DATA_DIR = CONFIG_ROOT / "data"
VECTOR_DIR = CONFIG_ROOT / "vectors"


def ensure_dirs():
    """Create the global directory tree if it is missing."""
    for path in (CONFIG_ROOT, LOG_DIR, DATA_DIR, VECTOR_DIR):
        path.mkdir(parents=True, exist_ok=True)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
