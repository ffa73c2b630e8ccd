"""
Reconstruction of quantized embeddings.
"""

from .embeddings import Embeddings
from .errors import StorageError
from .util import l2_normalize_array


def reconstruct_embeddings(embeddings: Embeddings) -> Embeddings:
    """
    Expand quantized embeddings into dense embeddings.

    If the embeddings have no norms, the reconstructed word rows are
    normalized and their norms become the norms of the result. Bucket rows of
    a subword vocabulary are left as reconstructed.

    Raises:
        StorageError: The embeddings are not quantized
    """
    if not embeddings.is_quantized:
        raise StorageError("Only quantized embeddings can be reconstructed")

    matrix = embeddings.storage.reconstruct()

    norms = embeddings.norms
    if norms is None:
        norms = l2_normalize_array(matrix[: embeddings.vocab.words_len])

    return Embeddings(
        vocab=embeddings.vocab,
        storage=matrix,
        norms=norms,
        metadata=dict(embeddings.metadata),
    )
