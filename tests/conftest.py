import numpy as np
import pytest

from embedding_toolkit.embeddings import Embeddings
from embedding_toolkit.loader import write_embeddings

ANALOGY_WORDS = ["king", "man", "woman", "queen", "princess", "apple"]

# Dimensions: royalty, male, female, fruit
ANALOGY_VECTORS = np.array(
    [
        [3.0, 3.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 2.0, 0.0],
        [1.0, 0.0, 1.0, 0.0],
        [1.0, 0.0, 1.0, 0.3],
        [0.0, 0.0, 0.0, 0.5],
    ],
    dtype=np.float32,
)


def make_clustered_matrix(n_rows=1000, dims=8, n_clusters=16, noise=0.05, seed=42):
    """Rows scattered tightly around a few random centers."""
    rng = np.random.default_rng(seed)
    centers = rng.normal(size=(n_clusters, dims))
    labels = rng.integers(n_clusters, size=n_rows)
    matrix = centers[labels] + noise * rng.normal(size=(n_rows, dims))
    return matrix.astype(np.float32)


@pytest.fixture
def analogy_embeddings():
    return Embeddings.from_vectors(ANALOGY_WORDS, ANALOGY_VECTORS, metadata={"source": "test"})


@pytest.fixture
def clustered_matrix():
    return make_clustered_matrix()


@pytest.fixture
def clustered_embeddings(clustered_matrix):
    words = [f"w{i}" for i in range(len(clustered_matrix))]
    return Embeddings.from_vectors(words, clustered_matrix)


@pytest.fixture
def native_file(tmp_path, analogy_embeddings):
    path = tmp_path / "analogy.emb"
    write_embeddings(analogy_embeddings, path)
    return path
