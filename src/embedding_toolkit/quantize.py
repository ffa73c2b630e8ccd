"""
Product quantization of embedding matrices.

Quantizers are trained with faiss. Three variants are supported:

- ``pq``: plain product quantization
- ``opq``: optimized product quantization, learning a rotation of the
  vectors jointly with the codebooks
- ``gaussian_opq``: product quantization after a rotation derived from the
  data covariance, assuming Gaussian data (eigenvalue allocation)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import faiss
import numpy as np

from .embeddings import Embeddings
from .errors import ConfigurationError
from .storage import QuantizedArray
from .util import default_threads, l2_normalize_array

logger = logging.getLogger(__name__)

MAX_QUANTIZER_BITS = 8


class QuantizerKind(str, Enum):
    PQ = "pq"
    OPQ = "opq"
    GAUSSIAN_OPQ = "gaussian_opq"

    @classmethod
    def parse(cls, name: str) -> "QuantizerKind":
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown quantizer: {name}") from None


@dataclass
class QuantizeConfig:
    """Quantizer training parameters."""
    quantizer: QuantizerKind = QuantizerKind.PQ
    n_subquantizers: Optional[int] = None  # Default: dims / 2
    quantizer_bits: int = 8
    n_iterations: int = 100
    n_attempts: int = 1
    n_threads: int = field(default_factory=default_threads)
    normalize: bool = True
    seed: int = 1234

    def __post_init__(self):
        if not isinstance(self.quantizer, QuantizerKind):
            self.quantizer = QuantizerKind.parse(self.quantizer)

        if not 0 < self.quantizer_bits <= MAX_QUANTIZER_BITS:
            raise ConfigurationError(
                f"The number of quantizer bits should be in [1, {MAX_QUANTIZER_BITS}], "
                f"was: {self.quantizer_bits}"
            )

        for name in ("n_iterations", "n_attempts", "n_threads"):
            if getattr(self, name) < 1:
                raise ConfigurationError(
                    f"{name} should be positive, was: {getattr(self, name)}"
                )

        if self.n_subquantizers is not None and self.n_subquantizers < 1:
            raise ConfigurationError(
                f"n_subquantizers should be positive, was: {self.n_subquantizers}"
            )

    def subquantizers_for(self, dims: int) -> int:
        """The number of subquantizers for vectors of `dims` dimensions."""
        if self.n_subquantizers is not None:
            return self.n_subquantizers
        return dims // 2

    def validate_for(self, shape: tuple[int, int]) -> None:
        """
        Check that a matrix of the given shape can be quantized.

        Raises:
            ConfigurationError: The subquantizers do not divide the
                dimensionality or there are too few rows to train on
        """
        n_rows, dims = shape
        n_subquantizers = self.subquantizers_for(dims)

        if n_subquantizers < 1 or dims % n_subquantizers != 0:
            raise ConfigurationError(
                f"The number of subquantizers ({n_subquantizers}) should divide "
                f"the dimensionality ({dims})"
            )

        n_centroids = 2 ** self.quantizer_bits
        if n_rows < n_centroids:
            raise ConfigurationError(
                f"Need at least {n_centroids} vectors to train a {self.quantizer_bits}-bit "
                f"quantizer, got {n_rows}"
            )


@dataclass
class LossReport:
    """Reconstruction quality of a quantized matrix."""
    mean_cosine_similarity: float
    mean_euclidean_distance: float


def _configure_clustering(pq: faiss.ProductQuantizer, config: QuantizeConfig) -> None:
    pq.cp.niter = config.n_iterations
    pq.cp.nredo = config.n_attempts
    pq.cp.seed = config.seed


def gaussian_opq_rotation(matrix: np.ndarray, n_subquantizers: int) -> np.ndarray:
    """
    Rotation that balances the variance of the subspaces of a product quantizer.

    The eigenvectors of the data covariance are allocated to subspaces
    greedily, largest eigenvalue first, always to the non-full subspace with
    the smallest product of eigenvalues.

    Returns:
        Orthonormal matrix of shape (dims, dims); column j is the direction
        projected onto output dimension j
    """
    dims = matrix.shape[1]
    sub_dims = dims // n_subquantizers

    data = matrix.astype(np.float64)
    data -= data.mean(axis=0)
    cov = data.T @ data / max(1, len(data) - 1)

    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    # Products are compared in log space; clamp round-off negatives.
    log_eigenvalues = np.log(np.maximum(eigenvalues, 1e-12))

    buckets: list[list[int]] = [[] for _ in range(n_subquantizers)]
    bucket_log_products = np.zeros(n_subquantizers)

    for idx in np.argsort(eigenvalues)[::-1]:
        open_buckets = [b for b in range(n_subquantizers) if len(buckets[b]) < sub_dims]
        bucket = min(open_buckets, key=lambda b: bucket_log_products[b])
        buckets[bucket].append(int(idx))
        bucket_log_products[bucket] += log_eigenvalues[idx]

    permutation = [idx for bucket in buckets for idx in bucket]
    return eigenvectors[:, permutation]


def _pq_index(dims: int, n_subquantizers: int, config: QuantizeConfig) -> faiss.IndexPQ:
    index = faiss.IndexPQ(dims, n_subquantizers, config.quantizer_bits)
    _configure_clustering(index.pq, config)
    return index


def train_quantizer(matrix: np.ndarray, config: QuantizeConfig) -> faiss.Index:
    """
    Train a quantizer on a matrix and encode its rows.

    Args:
        matrix: C-contiguous float32 matrix of shape (n_rows, dims)
        config: Quantizer parameters

    Returns:
        faiss index holding the codes of all rows
    """
    config.validate_for(matrix.shape)

    dims = matrix.shape[1]
    n_subquantizers = config.subquantizers_for(dims)

    faiss.omp_set_num_threads(config.n_threads)

    logger.info(
        "Training %s quantizer: %d subquantizers, %d bits, %d iterations, %d attempt(s)",
        config.quantizer.value,
        n_subquantizers,
        config.quantizer_bits,
        config.n_iterations,
        config.n_attempts,
    )

    if config.quantizer is QuantizerKind.PQ:
        index = _pq_index(dims, n_subquantizers, config)
    elif config.quantizer is QuantizerKind.OPQ:
        opq = faiss.OPQMatrix(dims, n_subquantizers)
        opq.niter = config.n_iterations
        # Train the rotation with codebooks of the requested size rather
        # than the default 8-bit ones.
        opq_pq = faiss.ProductQuantizer(dims, n_subquantizers, config.quantizer_bits)
        _configure_clustering(opq_pq, config)
        opq.pq = opq_pq
        index = faiss.IndexPreTransform(opq, _pq_index(dims, n_subquantizers, config))
    elif config.quantizer is QuantizerKind.GAUSSIAN_OPQ:
        rotation = gaussian_opq_rotation(matrix, n_subquantizers)
        opq = faiss.OPQMatrix(dims, n_subquantizers)
        faiss.copy_array_to_vector(
            np.ascontiguousarray(rotation.T, dtype=np.float32).ravel(), opq.A
        )
        opq.is_orthonormal = True
        opq.is_trained = True
        index = faiss.IndexPreTransform(opq, _pq_index(dims, n_subquantizers, config))
    else:
        raise ConfigurationError(f"Unknown quantizer: {config.quantizer}")

    index.train(matrix)
    index.add(matrix)

    if config.quantizer is QuantizerKind.OPQ:
        # The rotation no longer needs the training quantizer.
        opq.pq = None

    return index


def quantize_array(matrix: np.ndarray, config: QuantizeConfig) -> QuantizedArray:
    """Quantize a dense matrix."""
    vectors = np.array(matrix, dtype=np.float32, order="C")

    norms = None
    if config.normalize:
        norms = l2_normalize_array(vectors)

    index = train_quantizer(vectors, config)

    return QuantizedArray(index, vectors.shape, norms)


def quantization_loss(original: np.ndarray, reconstructed: np.ndarray) -> LossReport:
    """
    Compare a matrix with its reconstruction, row by row.

    Rows where either vector is zero contribute a cosine similarity of 0.
    """
    if original.shape != reconstructed.shape:
        raise ValueError(
            f"Shape mismatch: {original.shape} and {reconstructed.shape}"
        )
    if len(original) == 0:
        raise ValueError("Cannot compute the loss of an empty matrix")

    original = np.asarray(original, dtype=np.float32)
    reconstructed = np.asarray(reconstructed, dtype=np.float32)

    dots = np.einsum("ij,ij->i", original, reconstructed)
    norm_products = np.linalg.norm(original, axis=1) * np.linalg.norm(reconstructed, axis=1)
    cosine = np.divide(
        dots, norm_products, out=np.zeros_like(dots), where=norm_products != 0
    )
    distance = np.linalg.norm(original - reconstructed, axis=1)

    return LossReport(
        mean_cosine_similarity=float(np.mean(cosine)),
        mean_euclidean_distance=float(np.mean(distance)),
    )


def quantize_embeddings(
    embeddings: Embeddings,
    config: QuantizeConfig,
) -> tuple[Embeddings, LossReport]:
    """
    Quantize the storage of embeddings and measure the reconstruction loss.

    The loss is diagnostic output only.

    Returns:
        (quantized embeddings, loss report)
    """
    matrix = embeddings.view()
    config.validate_for(matrix.shape)

    quantized = quantize_array(matrix, config)
    loss = quantization_loss(matrix, quantized.reconstruct())

    logger.info(
        "Average cosine similarity: %f, average euclidean distance: %f",
        loss.mean_cosine_similarity,
        loss.mean_euclidean_distance,
    )

    quantized_embeddings = Embeddings(
        vocab=embeddings.vocab,
        storage=quantized,
        norms=embeddings.norms,
        metadata=dict(embeddings.metadata),
    )

    return quantized_embeddings, loss
