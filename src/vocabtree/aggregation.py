"""Reshape per-image descriptor matrices into the builder's input."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from .descriptors import DescriptorKind, descriptor_kind_of, validate_descriptor_matrix
from .errors import ConfigMismatchError


@dataclass
class CorpusDescriptorSet:
    """Descriptors grouped by image, in corpus order.

    Each image is one document for weighting statistics, so grouping is
    never flattened here. Images without descriptors are empty lists.

    Attributes:
        images: One list of 1-D descriptors per image
        kind: Descriptor variant shared by every descriptor
        descriptor_length: Components per descriptor
    """

    images: list[list[np.ndarray]]
    kind: DescriptorKind
    descriptor_length: int

    def __len__(self) -> int:
        return len(self.images)

    @property
    def sizes(self) -> list[int]:
        """Number of descriptors per image."""
        return [len(image) for image in self.images]

    @property
    def total_descriptors(self) -> int:
        return sum(self.sizes)

    def stacked(self) -> tuple[np.ndarray, np.ndarray]:
        """Flatten for clustering while remembering the owning image.

        Returns:
            Tuple of (descriptors, image_ids) with shapes (N, D) and (N,)
        """
        rows = [row for image in self.images for row in image]
        image_ids = np.repeat(np.arange(len(self.images)), self.sizes).astype(np.int64)
        if not rows:
            return np.empty((0, self.descriptor_length), dtype=self.kind.dtype), image_ids
        return np.stack(rows).astype(self.kind.dtype, copy=False), image_ids


def aggregate(
    descriptor_sets: Sequence[np.ndarray],
    kind: DescriptorKind | None = None,
    descriptor_length: int | None = None,
) -> CorpusDescriptorSet:
    """Convert per-image (N_i, D) matrices into a CorpusDescriptorSet.

    Binary descriptor rows are kept as views of their matrix; floating
    rows are copied into standalone float32 vectors. Values are never
    transformed.

    Args:
        descriptor_sets: One matrix per image, in corpus order. Empty
            (0, D) matrices are valid.
        kind: Descriptor variant; inferred from the first non-empty matrix
        descriptor_length: Components per descriptor; inferred likewise

    Returns:
        CorpusDescriptorSet with exactly one entry per input matrix

    Raises:
        ConfigMismatchError: If matrices mix variants or lengths
        ValueError: If kind cannot be inferred (no input at all)
    """
    matrices = [np.asarray(m) for m in descriptor_sets]

    if kind is None or descriptor_length is None:
        reference = next((m for m in matrices if len(m) > 0), matrices[0] if matrices else None)
        if reference is None:
            raise ValueError("Cannot infer descriptor kind from an empty corpus")
        if kind is None:
            kind = descriptor_kind_of(reference)
        if descriptor_length is None:
            if reference.ndim != 2:
                raise ConfigMismatchError(
                    f"Descriptor matrix must be 2-D, got shape {reference.shape}"
                )
            descriptor_length = reference.shape[1]

    images: list[list[np.ndarray]] = []
    for index, matrix in enumerate(matrices):
        try:
            matrix = validate_descriptor_matrix(matrix, kind, descriptor_length)
        except ConfigMismatchError as e:
            raise ConfigMismatchError(f"Image {index}: {e}") from e

        if kind is DescriptorKind.BINARY:
            images.append([matrix[i] for i in range(len(matrix))])
        else:
            images.append([matrix[i].copy() for i in range(len(matrix))])

    return CorpusDescriptorSet(images=images, kind=kind, descriptor_length=descriptor_length)


def reassemble(
    tagged: Iterable[tuple[int, np.ndarray]],
    count: int,
) -> list[np.ndarray]:
    """Restore corpus order from (corpus_index, descriptors) results.

    Raises:
        ValueError: If an index is missing, duplicated or out of range
    """
    ordered: list[np.ndarray | None] = [None] * count
    for index, descriptors in tagged:
        if not 0 <= index < count:
            raise ValueError(f"Corpus index {index} out of range for {count} images")
        if ordered[index] is not None:
            raise ValueError(f"Duplicate result for corpus index {index}")
        ordered[index] = descriptors

    missing = [i for i, d in enumerate(ordered) if d is None]
    if missing:
        raise ValueError(f"Missing extraction results for corpus indices {missing}")

    return ordered  # type: ignore[return-value]
