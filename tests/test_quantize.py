import numpy as np
import pytest

from embedding_toolkit.errors import ConfigurationError
from embedding_toolkit.quantize import (
    QuantizeConfig,
    QuantizerKind,
    gaussian_opq_rotation,
    quantization_loss,
    quantize_array,
    quantize_embeddings,
)

FAST = dict(n_subquantizers=4, n_iterations=10, n_threads=1)


def test_config_defaults():
    config = QuantizeConfig()

    assert config.quantizer is QuantizerKind.PQ
    assert config.quantizer_bits == 8
    assert config.subquantizers_for(300) == 150
    assert config.n_threads >= 1


def test_config_parses_quantizer_name():
    assert QuantizeConfig(quantizer="gaussian_opq").quantizer is QuantizerKind.GAUSSIAN_OPQ


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(quantizer="lsh"),
        dict(quantizer_bits=0),
        dict(quantizer_bits=9),
        dict(n_iterations=0),
        dict(n_attempts=0),
        dict(n_threads=0),
        dict(n_subquantizers=0),
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ConfigurationError):
        QuantizeConfig(**kwargs)


def test_subquantizers_must_divide_dims():
    with pytest.raises(ConfigurationError, match="divide"):
        QuantizeConfig(n_subquantizers=3).validate_for((1000, 8))


def test_too_few_rows_for_quantizer_bits():
    with pytest.raises(ConfigurationError, match="at least 256"):
        QuantizeConfig(n_subquantizers=4).validate_for((100, 8))

    QuantizeConfig(n_subquantizers=4, quantizer_bits=6).validate_for((100, 8))


@pytest.mark.parametrize("quantizer", ["pq", "opq", "gaussian_opq"])
def test_quantization_loss_band(clustered_embeddings, quantizer):
    config = QuantizeConfig(quantizer=quantizer, **FAST)

    quantized, loss = quantize_embeddings(clustered_embeddings, config)

    assert 0.9 < loss.mean_cosine_similarity <= 1.0 + 1e-5
    assert 0.0 <= loss.mean_euclidean_distance < 0.3
    assert quantized.is_quantized
    assert quantized.vocab == clustered_embeddings.vocab
    assert quantized.norms is clustered_embeddings.norms
    assert quantized.storage.shape == (1000, 8)
    assert quantized.storage.n_subquantizers == 4
    assert quantized.storage.quantizer_bits == 8


def test_quantize_array_is_deterministic(clustered_matrix):
    config = QuantizeConfig(quantizer_bits=6, **FAST)

    first = quantize_array(clustered_matrix, config).reconstruct()
    second = quantize_array(clustered_matrix, config).reconstruct()

    np.testing.assert_array_equal(first, second)


def test_quantize_array_keeps_norms(clustered_matrix):
    matrix = clustered_matrix * 3

    quantized = quantize_array(matrix, QuantizeConfig(quantizer_bits=6, **FAST))

    np.testing.assert_allclose(quantized.norms, np.linalg.norm(matrix, axis=1), rtol=1e-5)
    loss = quantization_loss(matrix, quantized.reconstruct())
    assert loss.mean_cosine_similarity > 0.9
    # The input is not modified.
    np.testing.assert_array_equal(matrix, clustered_matrix * 3)


def test_quantize_array_without_normalization(clustered_matrix):
    quantized = quantize_array(clustered_matrix, QuantizeConfig(normalize=False, **FAST))
    assert quantized.norms is None


def test_quantization_loss():
    original = np.array([[1.0, 0.0], [0.0, 2.0], [0.0, 0.0]], dtype=np.float32)
    reconstructed = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]], dtype=np.float32)

    loss = quantization_loss(original, reconstructed)

    # The zero pair counts with a cosine similarity of zero.
    assert loss.mean_cosine_similarity == pytest.approx(2 / 3)
    assert loss.mean_euclidean_distance == pytest.approx(1 / 3)


def test_quantization_loss_shape_mismatch():
    with pytest.raises(ValueError):
        quantization_loss(np.zeros((2, 2)), np.zeros((3, 2)))
    with pytest.raises(ValueError):
        quantization_loss(np.zeros((0, 2)), np.zeros((0, 2)))


def test_gaussian_opq_rotation_is_orthonormal(clustered_matrix):
    rotation = gaussian_opq_rotation(clustered_matrix, 4)

    assert rotation.shape == (8, 8)
    np.testing.assert_allclose(rotation.T @ rotation, np.eye(8), atol=1e-6)


def test_gaussian_opq_rotation_balances_variance():
    rng = np.random.default_rng(1)
    # Variance concentrated in the first dimensions.
    matrix = rng.normal(size=(2000, 4)) * np.array([10.0, 5.0, 1.0, 0.5])

    rotation = gaussian_opq_rotation(matrix, 2)

    variances = ((matrix - matrix.mean(axis=0)) @ rotation).var(axis=0)
    log_products = [np.log(variances[0:2]).sum(), np.log(variances[2:4]).sum()]
    # Largest and smallest directions end up together.
    assert abs(log_products[0] - log_products[1]) < 1.0
