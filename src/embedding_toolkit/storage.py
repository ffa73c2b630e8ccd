"""
Quantized embedding storage.

Dense storage is a plain ``numpy`` array. Quantized storage keeps a trained
faiss index holding the compressed codes of every row.
"""

from typing import Optional

import faiss
import numpy as np


class QuantizedArray:
    """
    Embedding matrix compressed with a (possibly rotated) product quantizer.

    If the rows were normalized before quantization, `norms` holds the
    original row norms and reconstructions are scaled back by them.
    """

    def __init__(
        self,
        index: faiss.Index,
        shape: tuple[int, int],
        norms: Optional[np.ndarray] = None,
    ):
        if index.ntotal != shape[0] or index.d != shape[1]:
            raise ValueError(
                f"Index holds {index.ntotal}x{index.d} vectors, expected {shape[0]}x{shape[1]}"
            )
        if norms is not None and len(norms) != shape[0]:
            raise ValueError(f"Expected {shape[0]} norms, got {len(norms)}")

        self.index = index
        self.shape = (int(shape[0]), int(shape[1]))
        self.norms = norms

    def __len__(self) -> int:
        return self.shape[0]

    @property
    def quantizer_name(self) -> str:
        """Name of the faiss index type, e.g. ``IndexPQ``."""
        return type(faiss.downcast_index(self.index)).__name__

    @property
    def n_subquantizers(self) -> int:
        return self._pq().M

    @property
    def quantizer_bits(self) -> int:
        return self._pq().nbits

    def _pq(self) -> faiss.ProductQuantizer:
        index = faiss.downcast_index(self.index)
        if isinstance(index, faiss.IndexPreTransform):
            index = faiss.downcast_index(index.index)
        return index.pq

    def embedding(self, idx: int) -> np.ndarray:
        """Reconstruct a single row."""
        vector = self.index.reconstruct(int(idx))
        if self.norms is not None:
            vector *= self.norms[idx]
        return vector

    def reconstruct(self) -> np.ndarray:
        """Reconstruct the full dense matrix."""
        n, d = self.shape
        vectors = np.zeros((n, d), dtype=np.float32)
        if n:
            self.index.reconstruct_n(0, n, vectors)

        if self.norms is not None:
            vectors *= self.norms[:, np.newaxis]

        return vectors

    def serialize(self) -> np.ndarray:
        """Serialize the faiss index to a ``uint8`` array."""
        return faiss.serialize_index(self.index)

    @classmethod
    def deserialize(
        cls,
        data: np.ndarray,
        shape: tuple[int, int],
        norms: Optional[np.ndarray] = None,
    ) -> "QuantizedArray":
        index = faiss.deserialize_index(np.ascontiguousarray(data, dtype=np.uint8))
        return cls(index, shape, norms)
