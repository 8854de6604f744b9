"""Embedding model management."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

import numpy as np

from ghstars.errors import EmbeddingUnavailable

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


def _check_onnx_providers() -> list[str]:
    """Check which ONNX Runtime execution providers are available.

    Returns:
        List of available provider names.
    """
    try:
        import onnxruntime as ort
        return ort.get_available_providers()
    except ImportError:
        return []


def detect_optimal_backend() -> Literal["torch", "onnx"]:
    """Pick ONNX when onnxruntime is installed, PyTorch otherwise."""
    providers = _check_onnx_providers()
    if providers:
        logger.info(f"Using ONNX backend (providers: {', '.join(providers)})")
        return "onnx"
    logger.info("ONNX not available, using PyTorch backend")
    return "torch"


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows are left as zeros."""
    matrix = np.atleast_2d(np.asarray(vectors, dtype="float32"))
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (matrix / norms).astype("float32", copy=False)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 32
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and repository embeddings.

    The model is loaded on first use so commands that never embed (list,
    keyword search, info) do not pay for it. Any load or encode failure is
    reported as :class:`EmbeddingUnavailable`.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model = None
        self._load_error: EmbeddingUnavailable | None = None
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def _get_model(self):
        with self._lock:
            if self._load_error is not None:
                raise EmbeddingUnavailable(
                    str(self._load_error), hint=self._load_error.hint
                ) from self._load_error
            if self._model is None:
                try:
                    self._model = self._load_model()
                except EmbeddingUnavailable as exc:
                    # A failed load is not retried within the same run.
                    self._load_error = exc
                    raise
            return self._model

    def _load_model(self):
        """Load the SentenceTransformer model, falling back to PyTorch on error."""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise EmbeddingUnavailable(f"sentence-transformers is not installed: {exc}") from exc

        if self.config.backend is None:
            self.config.backend = detect_optimal_backend()

        try:
            model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        except Exception as e:
            if self.config.backend == "torch":
                raise EmbeddingUnavailable(
                    f"Failed to load embedding model {self.config.model_name}: {e}"
                ) from e
            logger.warning(
                f"Failed to load model with backend '{self.config.backend}': {e}. "
                "Falling back to PyTorch."
            )
            self.config.backend = "torch"
            try:
                model = SentenceTransformer(self.config.model_name, device=self.config.device)
            except Exception as exc:
                raise EmbeddingUnavailable(
                    f"Failed to load embedding model {self.config.model_name}: {exc}"
                ) from exc

        logger.info(f"Loaded {self.config.model_name} | Backend: {self.config.backend}")
        return model

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        model = self._get_model()
        try:
            embeddings = model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding failed: {exc}") from exc
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed([text])[0]
