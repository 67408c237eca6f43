"""
Embedder - Text-to-vector embedding with graceful fallback.

Every provider returns a float32 vector of exactly config.embedding_dim
values. The network and local-model backends may fail; FallbackEmbedder
wraps them with the deterministic HashEmbedder so embed() always succeeds.
"""

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
import numpy as np

from .config import get_config, IndexerConfig
from .errors import EmbeddingError, handle_error


logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Maps text to a fixed-dimension vector."""

    name: str = "embedder"

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    @property
    def dimension(self) -> int:
        return self.config.embedding_dim

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """
        Embed multiple texts.

        Returns:
            NumPy array of shape (len(texts), dimension)
        """
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)
        return np.vstack([self.embed(t) for t in texts])

    def is_available(self) -> bool:
        return True

    def close(self) -> None:
        pass


class HashEmbedder(EmbeddingProvider):
    """
    Deterministic pseudo-embedding derived from a SHA-256 of the text.

    Same text gives the same unit vector. No semantic meaning, but the
    pipeline keeps working without any model.
    """

    name = "hash"

    def embed(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        vector = rng.standard_normal(self.dimension).astype(np.float32)
        norm = np.linalg.norm(vector)
        return vector / norm if norm else vector


class OllamaEmbedder(EmbeddingProvider):
    """Embeddings from an Ollama server via /api/embed."""

    name = "ollama"

    def __init__(
        self,
        config: IndexerConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(config)
        self._client = httpx.Client(
            base_url=self.config.ollama_url,
            timeout=self.config.generate_timeout,
            transport=transport,
        )

    def is_available(self) -> bool:
        """Liveness probe against /api/tags."""
        try:
            response = self._client.get("/api/tags", timeout=self.config.probe_timeout)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Ollama probe failed: {e}")
            return False

    def embed(self, text: str) -> np.ndarray:
        try:
            response = self._client.post(
                "/api/embed",
                json={"model": self.config.embed_model, "input": [text]},
            )
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if response.status_code != 200:
            raise EmbeddingError(
                f"Embedding request failed with status {response.status_code}: {response.text[:200]}"
            )

        embeddings = response.json().get("embeddings")
        if not embeddings or not embeddings[0]:
            raise EmbeddingError("Ollama response does not contain valid embeddings")
        return np.asarray(embeddings[0], dtype=np.float32)

    def close(self) -> None:
        self._client.close()


class SentenceTransformerEmbedder(EmbeddingProvider):
    """Local sentence-transformers model, loaded on first use."""

    name = "sentence-transformers"

    def __init__(self, config: IndexerConfig | None = None):
        super().__init__(config)
        self._model = None

    def _get_model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise EmbeddingError(
                    "sentence-transformers not installed. Run: pip install deskindex[local]"
                ) from e

            logger.info(f"Loading embedding model {self.config.local_embed_model}...")
            self._model = SentenceTransformer(self.config.local_embed_model, device="cpu")
            logger.info(
                f"Loaded model (dim={self._model.get_sentence_embedding_dimension()})"
            )
        return self._model

    def is_available(self) -> bool:
        try:
            self._get_model()
            return True
        except EmbeddingError:
            return False

    def embed(self, text: str) -> np.ndarray:
        model = self._get_model()
        return model.encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=True,
        ).astype(np.float32)


class FallbackEmbedder(EmbeddingProvider):
    """
    A primary backend guarded by the hash embedder.

    Any primary failure, or a vector of the wrong length, falls back to
    the hash variant. After a failure the primary is skipped for
    retry_interval seconds so an offline backend does not cost a timeout
    per chunk.
    """

    def __init__(
        self,
        primary: EmbeddingProvider,
        config: IndexerConfig | None = None,
        retry_interval: float = 60.0,
    ):
        super().__init__(config)
        self.primary = primary
        self.fallback = HashEmbedder(self.config)
        self.retry_interval = retry_interval
        self._down_until = 0.0

    @property
    def name(self) -> str:
        return f"{self.primary.name}+hash"

    def embed(self, text: str) -> np.ndarray:
        if time.monotonic() >= self._down_until:
            try:
                vector = self.primary.embed(text)
                if vector.shape == (self.dimension,):
                    return vector.astype(np.float32, copy=False)
                raise EmbeddingError(
                    f"{self.primary.name} returned {vector.shape[0]} values, expected {self.dimension}"
                )
            except Exception as e:
                handle_error(
                    e if isinstance(e, EmbeddingError) else EmbeddingError(str(e)),
                    context="embed",
                )
                self._down_until = time.monotonic() + self.retry_interval
        return self.fallback.embed(text)

    def close(self) -> None:
        self.primary.close()


def create_embedder(config: IndexerConfig | None = None) -> EmbeddingProvider:
    """Build the provider selected by config.embedding_backend."""
    config = config or get_config()
    backend = config.embedding_backend

    if backend == "hash":
        return HashEmbedder(config)
    if backend == "sentence-transformers":
        return FallbackEmbedder(SentenceTransformerEmbedder(config), config)
    if backend != "ollama":
        logger.warning(f"Unknown embedding backend {backend!r}, using ollama")
    return FallbackEmbedder(OllamaEmbedder(config), config)


# Singleton instance
_embedder: Optional[EmbeddingProvider] = None


def get_embedder(config: IndexerConfig | None = None) -> EmbeddingProvider:
    """Get the singleton embedder instance."""
    global _embedder
    if _embedder is None:
        _embedder = create_embedder(config)
    return _embedder
