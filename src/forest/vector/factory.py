"""Vector provider selection from configuration."""

from ..config_loader import config
from ..logger import logger
from .base import VectorCapable
from .chroma_provider import ChromaVectorProvider
from .memory_provider import InMemoryVectorProvider
from .sqlite_provider import SQLiteVectorProvider

PROVIDERS = {
    "sqlite": SQLiteVectorProvider,
    "chroma": ChromaVectorProvider,
    "memory": InMemoryVectorProvider,
}


def create_vector_provider(name: str | None = None) -> VectorCapable:
    name = (name or config.get("vector.provider", "sqlite") or "sqlite").lower()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        logger.warning(f"[VECTOR] Unknown provider '{name}', using sqlite")
        provider_cls = SQLiteVectorProvider
    provider = provider_cls()
    if not provider.durable:
        logger.warning(f"[VECTOR] Provider '{name}' does not persist across restarts")
    return provider
