import dataclasses

import numpy as np
import pytest

from embedding_toolkit.embeddings import Embeddings
from embedding_toolkit.errors import StorageError
from embedding_toolkit.quantize import QuantizeConfig, quantize_array, quantize_embeddings
from embedding_toolkit.reconstruct import reconstruct_embeddings
from embedding_toolkit.vocab import SubwordVocab

from .conftest import make_clustered_matrix

CONFIG = QuantizeConfig(n_subquantizers=4, n_iterations=10, n_threads=1)


def test_reconstruct_keeps_norms(clustered_embeddings):
    quantized, _ = quantize_embeddings(clustered_embeddings, CONFIG)

    reconstructed = reconstruct_embeddings(quantized)

    assert not reconstructed.is_quantized
    assert reconstructed.vocab == clustered_embeddings.vocab
    np.testing.assert_array_equal(reconstructed.norms, clustered_embeddings.norms)
    np.testing.assert_array_equal(reconstructed.view(), quantized.storage.reconstruct())
    cosines = np.einsum("ij,ij->i", reconstructed.view(), clustered_embeddings.view())
    assert cosines.mean() > 0.9


def test_reconstruct_computes_missing_norms(clustered_embeddings):
    quantized, _ = quantize_embeddings(clustered_embeddings, CONFIG)
    quantized = dataclasses.replace(quantized, norms=None)

    reconstructed = reconstruct_embeddings(quantized)

    np.testing.assert_allclose(np.linalg.norm(reconstructed.view(), axis=1), 1.0, rtol=1e-5)
    np.testing.assert_allclose(
        reconstructed.norms, np.linalg.norm(quantized.storage.reconstruct(), axis=1), rtol=1e-5
    )


def test_reconstruct_leaves_bucket_rows_alone():
    n_words, n_buckets = 600, 424
    matrix = make_clustered_matrix(n_rows=n_words + n_buckets) * 5
    storage = quantize_array(matrix, dataclasses.replace(CONFIG, normalize=False))
    vocab = SubwordVocab([f"w{i}" for i in range(n_words)], 3, 4, n_buckets)
    embeddings = Embeddings(vocab=vocab, storage=storage)

    reconstructed = reconstruct_embeddings(embeddings)

    dense = storage.reconstruct()
    matrix = reconstructed.view()
    np.testing.assert_allclose(np.linalg.norm(matrix[:n_words], axis=1), 1.0, rtol=1e-5)
    np.testing.assert_array_equal(matrix[n_words:], dense[n_words:])
    np.testing.assert_allclose(
        reconstructed.norms, np.linalg.norm(dense[:n_words], axis=1), rtol=1e-5
    )


def test_reconstruct_dense_embeddings(analogy_embeddings):
    with pytest.raises(StorageError):
        reconstruct_embeddings(analogy_embeddings)
