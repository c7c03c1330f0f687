"""Text embeddings for the vector store."""

import hashlib
import re
from typing import Protocol, runtime_checkable

import numpy as np

from .config_loader import config

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


@runtime_checkable
class Embedder(Protocol):
    dimension: int

    def embed(self, text: str) -> list[float]: ...


class HashingEmbedder:
    """Deterministic bag-of-words embedding via feature hashing.

    Unigrams and bigrams are hashed into a fixed number of signed buckets and
    the result is L2-normalised, so texts sharing vocabulary get a positive
    cosine similarity. No model download, stable across processes.
    """

    def __init__(self, dimension: int | None = None):
        self.dimension = int(dimension or config.get("vector.dimension", 384))

    def _features(self, text: str) -> list[str]:
        tokens = TOKEN_PATTERN.findall(text.lower())
        bigrams = [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]
        return tokens + bigrams

    def embed(self, text: str) -> list[float]:
        vector = np.zeros(self.dimension, dtype=np.float64)
        for feature in self._features(text or ""):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            index = value % self.dimension
            sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """1 - cosine distance; 0.0 when either vector is all zeros."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)
