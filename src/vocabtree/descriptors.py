"""Descriptor geometry: the two supported descriptor variants.

Binary descriptors (ORB) are uint8 rows compared with the Hamming
distance; their cluster centroid is the per-bit majority. Floating
descriptors (SIFT) are float32 rows compared with the Euclidean distance;
their centroid is the arithmetic mean.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from scipy.spatial.distance import cdist

from .errors import ConfigMismatchError

ORB_DESCRIPTOR_BYTES = 32
SIFT_DESCRIPTOR_LENGTH = 128


class DescriptorKind(Enum):
    """Descriptor variant used throughout one vocabulary."""

    BINARY = "binary"
    FLOAT = "float"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.uint8) if self is DescriptorKind.BINARY else np.dtype(np.float32)

    @property
    def default_length(self) -> int:
        if self is DescriptorKind.BINARY:
            return ORB_DESCRIPTOR_BYTES
        return SIFT_DESCRIPTOR_LENGTH


def descriptor_kind_of(descriptors: np.ndarray) -> DescriptorKind:
    """Infer the variant of a descriptor matrix from its dtype."""
    if descriptors.dtype == np.uint8:
        return DescriptorKind.BINARY
    if np.issubdtype(descriptors.dtype, np.floating):
        return DescriptorKind.FLOAT
    raise ConfigMismatchError(f"Unsupported descriptor dtype: {descriptors.dtype}")


def empty_descriptors(kind: DescriptorKind, length: int | None = None) -> np.ndarray:
    """Return an empty (0, D) matrix of the given variant."""
    length = kind.default_length if length is None else length
    return np.empty((0, length), dtype=kind.dtype)


def validate_descriptor_matrix(
    descriptors: np.ndarray,
    kind: DescriptorKind,
    length: int,
) -> np.ndarray:
    """Check that a matrix is (N, length) of the given variant.

    Returns:
        The matrix as a contiguous array of the variant's dtype

    Raises:
        ConfigMismatchError: On wrong rank, row length or variant
    """
    descriptors = np.asarray(descriptors)
    if descriptors.ndim != 2:
        raise ConfigMismatchError(
            f"Descriptor matrix must be 2-D, got shape {descriptors.shape}"
        )
    if descriptors.shape[1] != length:
        raise ConfigMismatchError(
            f"Expected {length}-component descriptors, got {descriptors.shape[1]}"
        )
    if len(descriptors) > 0 and descriptor_kind_of(descriptors) is not kind:
        raise ConfigMismatchError(
            f"Expected {kind.value} descriptors, got dtype {descriptors.dtype}"
        )
    return np.ascontiguousarray(descriptors, dtype=kind.dtype)


def distances(
    descriptors: np.ndarray,
    centroids: np.ndarray,
    kind: DescriptorKind,
) -> np.ndarray:
    """Distance from every descriptor to every centroid.

    Args:
        descriptors: (N, D) matrix
        centroids: (M, D) matrix of the same variant
        kind: Descriptor variant

    Returns:
        (N, M) float64 matrix. Hamming bit counts for binary descriptors,
        squared Euclidean distances for floating descriptors.
    """
    if kind is DescriptorKind.BINARY:
        a = np.unpackbits(np.asarray(descriptors, dtype=np.uint8), axis=1)
        b = np.unpackbits(np.asarray(centroids, dtype=np.uint8), axis=1)
        # cdist's hamming is the fraction of differing components
        return cdist(a, b, metric="hamming") * a.shape[1]

    return cdist(
        np.asarray(descriptors, dtype=np.float64),
        np.asarray(centroids, dtype=np.float64),
        metric="sqeuclidean",
    )


def nearest(descriptors: np.ndarray, centroids: np.ndarray, kind: DescriptorKind) -> np.ndarray:
    """Index of the nearest centroid for every descriptor, shape (N,)."""
    return np.argmin(distances(descriptors, centroids, kind), axis=1)


def binarize(bit_means: np.ndarray) -> np.ndarray:
    """Pack per-bit means into bytes, setting bits whose mean is >= 0.5."""
    return np.packbits(np.asarray(bit_means) >= 0.5, axis=-1).astype(np.uint8)
