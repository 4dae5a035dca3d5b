"""Embedding model management."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Literal, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from ragchat.errors import EmbeddingFailure

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
HASHED_DIMENSION = 384

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


def _select_device() -> str | None:
    """Pick the best available torch device.

    Returns "cuda" for NVIDIA GPUs, "mps" for Apple Silicon and None (let
    sentence-transformers decide, i.e. CPU) otherwise.
    """
    try:
        import torch

        if torch.cuda.is_available():
            logger.debug(f"CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return "cuda"

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.debug("Apple MPS GPU detected")
            return "mps"

        logger.debug("No GPU detected, will use CPU")
        return None
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return None
    except Exception as e:
        logger.debug(f"GPU detection failed: {e}")
        return None


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    backend: Literal["sentence-transformers", "hashed"] = "sentence-transformers"
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None
    hashed_dimension: int = HASHED_DIMENSION


class EmbeddingBackend(Protocol):
    """Raw model inference: one row per input text."""

    dimension: int

    def infer(self, texts: Sequence[str]) -> np.ndarray: ...


class SentenceTransformerBackend:
    """Mean-pooled sentence embeddings from a `SentenceTransformer` model."""

    def __init__(self, config: EmbeddingConfig) -> None:
        self.config = config
        device = config.device or _select_device()
        self._model = SentenceTransformer(config.model_name, device=device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(f"Loaded {config.model_name} | Device: {device or 'cpu'}")

    def infer(self, texts: Sequence[str]) -> np.ndarray:
        return self._model.encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=False,
        )


class HashingBackend:
    """Deterministic bag-of-words embeddings using feature hashing.

    Needs no model download, which makes it the backend of choice for
    offline use and tests.
    """

    def __init__(self, dimension: int = HASHED_DIMENSION) -> None:
        self.dimension = dimension

    def infer(self, texts: Sequence[str]) -> np.ndarray:
        matrix = np.zeros((len(texts), self.dimension), dtype="float32")
        for row, text in enumerate(texts):
            for token in _TOKEN_RE.findall(text.lower()):
                matrix[row, _hash_token(token, self.dimension)] += 1.0
        return matrix


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def load_backend(config: EmbeddingConfig) -> EmbeddingBackend:
    if config.backend == "hashed":
        return HashingBackend(config.hashed_dimension)
    if config.backend == "sentence-transformers":
        return SentenceTransformerBackend(config)
    raise ValueError(f"Unknown embedding backend: {config.backend}")


class EmbeddingModel:
    """Turns text into fixed-length, L2-normalized float vectors."""

    def __init__(
        self, config: EmbeddingConfig | None = None, backend: EmbeddingBackend | None = None
    ) -> None:
        self.config = config or EmbeddingConfig()
        self._backend = backend if backend is not None else load_backend(self.config)
        self.dimension = int(self._backend.dimension)
        logger.info(f"Embedding backend: {self.config.backend} | Dimension: {self.dimension}")

    def embed(self, text: str, *, item: int | str | None = None) -> List[float]:
        """Embed a single text; ``item`` labels it in error reports."""
        try:
            raw = self._backend.infer([text])
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding backend failed: {exc}", item=item) from exc
        return self._finalize(raw, item=item)

    def embed_batch(self, texts: Iterable[str]) -> List[List[float]]:
        """Embed texts one by one, preserving input order."""
        return [self.embed(text, item=index) for index, text in enumerate(texts)]

    def _finalize(self, raw: np.ndarray, *, item: int | str | None) -> List[float]:
        vectors = np.asarray(raw, dtype="float32")
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        if vectors.shape != (1, self.dimension):
            raise EmbeddingFailure(
                f"Backend returned shape {vectors.shape}, expected (1, {self.dimension})",
                item=item,
            )
        vector = vectors[0]
        if not np.all(np.isfinite(vector)):
            raise EmbeddingFailure("Backend returned non-finite values", item=item)
        if self.config.normalize:
            norm = float(np.linalg.norm(vector))
            if norm > 0:
                vector = vector / norm
        return vector.astype("float32").tolist()


class EmbeddingProvider:
    """Lazily creates one `EmbeddingModel` and shares it.

    The first caller of :meth:`get` starts loading the model in a worker
    thread; callers arriving meanwhile await that same task. A failed load
    is forgotten so the next call tries again.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        factory: Callable[[EmbeddingConfig], EmbeddingModel] | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self._factory = factory or EmbeddingModel
        self._model: EmbeddingModel | None = None
        self._pending: asyncio.Future[EmbeddingModel] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._model is not None

    async def get(self) -> EmbeddingModel:
        if self._model is not None:
            return self._model

        pending = self._pending
        if pending is not None and not self._usable(pending):
            self._forget(pending)
            if self._model is not None:
                return self._model
            pending = None

        if pending is None:
            logger.info(f"Initializing embedding model ({self.config.backend})...")
            pending = asyncio.ensure_future(asyncio.to_thread(self._factory, self.config))
            self._pending = pending

        try:
            # Shielded so one cancelled caller does not abort the shared load.
            model = await asyncio.shield(pending)
        except asyncio.CancelledError:
            if pending.cancelled():
                self._forget(pending)
            raise
        except EmbeddingFailure:
            self._forget(pending)
            raise
        except Exception as exc:
            self._forget(pending)
            raise EmbeddingFailure(f"Failed to initialize embedding model: {exc}") from exc

        if self._pending is pending:
            self._model = model
            self._pending = None
        return model

    def _usable(self, pending: asyncio.Future[EmbeddingModel]) -> bool:
        """Whether an in-flight load can still be awaited from the running loop.

        A load started on a loop that has since shut down is either cancelled
        or unreachable; if it finished anyway its model is kept.
        """
        if pending.cancelled():
            return False
        if pending.get_loop() is asyncio.get_running_loop():
            return True
        if pending.done() and pending.exception() is None:
            self._model = pending.result()
        return False

    def _forget(self, pending: asyncio.Future[EmbeddingModel]) -> None:
        if self._pending is pending:
            self._pending = None

    def reset(self) -> None:
        """Drop the loaded model; the next :meth:`get` loads a fresh one."""
        self._model = None
        self._pending = None

    async def embed(self, text: str, *, item: int | str | None = None) -> List[float]:
        model = await self.get()
        return await asyncio.to_thread(model.embed, text, item=item)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        model = await self.get()
        return await asyncio.to_thread(model.embed_batch, list(texts))


_shared_provider: EmbeddingProvider | None = None


def get_shared_provider(config: EmbeddingConfig | None = None) -> EmbeddingProvider:
    """Return the process-wide provider, replacing it if the config changed."""
    global _shared_provider
    if _shared_provider is None or (config is not None and config != _shared_provider.config):
        _shared_provider = EmbeddingProvider(config)
    return _shared_provider


def reset_shared_provider() -> None:
    global _shared_provider
    if _shared_provider is not None:
        _shared_provider.reset()
    _shared_provider = None
