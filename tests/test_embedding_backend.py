"""Tests for embedding model loading and backend detection."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from ghstars.embedding.encoder import (
    DEFAULT_MODEL,
    EmbeddingConfig,
    EmbeddingModel,
    _check_onnx_providers,
    detect_optimal_backend,
    normalize_rows,
)
from ghstars.errors import EmbeddingUnavailable


def _fake_module(model: MagicMock | None = None, *, error: Exception | None = None) -> MagicMock:
    module = MagicMock()
    if error is not None:
        module.SentenceTransformer.side_effect = error
    else:
        module.SentenceTransformer.return_value = model or MagicMock()
    return module


class TestBackendDetection:
    """Test auto-detection of the backend."""

    def test_no_onnxruntime(self) -> None:
        with patch.dict("sys.modules", {"onnxruntime": None}):
            assert _check_onnx_providers() == []
            assert detect_optimal_backend() == "torch"

    def test_onnx_available(self) -> None:
        with patch(
            "ghstars.embedding.encoder._check_onnx_providers",
            return_value=["CPUExecutionProvider"],
        ):
            assert detect_optimal_backend() == "onnx"


class TestNormalizeRows:
    def test_unit_length(self) -> None:
        rows = normalize_rows(np.array([[3.0, 4.0], [0.0, 2.0]]))

        assert np.allclose(np.linalg.norm(rows, axis=1), 1.0)
        assert rows.dtype == np.float32

    def test_zero_row_stays_zero(self) -> None:
        assert np.all(normalize_rows(np.zeros(3)) == 0)


class TestEmbeddingModel:
    """Test the SentenceTransformer wrapper."""

    def test_default_config(self) -> None:
        config = EmbeddingConfig()

        assert config.model_name == DEFAULT_MODEL
        assert config.normalize is True

    def test_lazy_loading(self) -> None:
        module = _fake_module()
        with patch.dict("sys.modules", {"sentence_transformers": module}):
            model = EmbeddingModel(EmbeddingConfig(backend="torch"))

            module.SentenceTransformer.assert_not_called()
            assert model.model_name == DEFAULT_MODEL

    def test_embed(self) -> None:
        st = MagicMock()
        st.encode.return_value = np.ones((2, 4), dtype="float64")
        module = _fake_module(st)

        with patch.dict("sys.modules", {"sentence_transformers": module}):
            model = EmbeddingModel(EmbeddingConfig(backend="torch", batch_size=8))
            vectors = model.embed(["a", "b"])
            query = model.embed_query("c")

        assert vectors.dtype == np.float32
        assert vectors.shape == (2, 4)
        assert query.shape == (4,)
        module.SentenceTransformer.assert_called_once()
        kwargs = st.encode.call_args[1]
        assert kwargs["batch_size"] == 8
        assert kwargs["normalize_embeddings"] is True

    def test_load_failure_raises_unavailable(self) -> None:
        module = _fake_module(error=OSError("no network"))

        with patch.dict("sys.modules", {"sentence_transformers": module}):
            model = EmbeddingModel(EmbeddingConfig(backend="torch"))
            with pytest.raises(EmbeddingUnavailable):
                model.embed(["text"])

    def test_load_failure_is_not_retried(self) -> None:
        module = _fake_module(error=OSError("no network"))

        with patch.dict("sys.modules", {"sentence_transformers": module}):
            model = EmbeddingModel(EmbeddingConfig(backend="torch"))
            for _ in range(3):
                with pytest.raises(EmbeddingUnavailable, match="no network"):
                    model.embed(["text"])

        assert module.SentenceTransformer.call_count == 1

    def test_onnx_failure_falls_back_to_torch(self) -> None:
        st = MagicMock()
        module = MagicMock()
        module.SentenceTransformer.side_effect = [RuntimeError("onnx broken"), st]

        with patch.dict("sys.modules", {"sentence_transformers": module}):
            model = EmbeddingModel(EmbeddingConfig(backend="onnx"))
            model.embed(["text"])

        assert model.config.backend == "torch"
        assert module.SentenceTransformer.call_count == 2

    def test_encode_failure_raises_unavailable(self) -> None:
        st = MagicMock()
        st.encode.side_effect = RuntimeError("out of memory")

        with patch.dict("sys.modules", {"sentence_transformers": _fake_module(st)}):
            model = EmbeddingModel(EmbeddingConfig(backend="torch"))
            with pytest.raises(EmbeddingUnavailable):
                model.embed(["text"])

    def test_missing_package(self) -> None:
        with patch.dict("sys.modules", {"sentence_transformers": None}):
            with pytest.raises(EmbeddingUnavailable):
                EmbeddingModel(EmbeddingConfig(backend="torch")).embed(["text"])
