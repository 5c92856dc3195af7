"""ORB binary descriptor extraction on the CPU."""

from __future__ import annotations

import cv2
import numpy as np

from ..config import OrbConfig
from ..descriptors import ORB_DESCRIPTOR_BYTES, DescriptorKind, empty_descriptors
from .base import as_grayscale


class OrbExtractor:
    """ORB (Oriented FAST and Rotated BRIEF) extractor.

    Produces 32-byte binary descriptors compared with the Hamming
    distance. The number of descriptors per image is variable and capped
    by `n_features`.
    """

    kind = DescriptorKind.BINARY
    descriptor_length = ORB_DESCRIPTOR_BYTES

    def __init__(self, config: OrbConfig | None = None) -> None:
        """Initialize ORB detector.

        Args:
            config: Detector parameters. n_features is the maximum number
                of keypoints retained (sorted by score).
        """
        self._config = config or OrbConfig()
        self._orb = cv2.ORB_create(
            nfeatures=self._config.n_features,
            scaleFactor=self._config.scale_factor,
            nlevels=self._config.n_levels,
            edgeThreshold=self._config.edge_threshold,
            fastThreshold=self._config.fast_threshold,
        )

    @property
    def config(self) -> OrbConfig:
        return self._config

    def extract(self, image: np.ndarray) -> np.ndarray:
        """Detect keypoints and compute ORB descriptors.

        Args:
            image: Grayscale image (uint8). Color images are converted.

        Returns:
            (N, 32) uint8 descriptors; (0, 32) if no keypoints were found

        Example:
            >>> extractor = OrbExtractor(OrbConfig(n_features=500))
            >>> descriptors = extractor.extract(grayscale_image)
            >>> print(f"Extracted {len(descriptors)} descriptors")
        """
        _, descriptors = self._orb.detectAndCompute(as_grayscale(image), None)

        # OpenCV returns None rather than an empty matrix
        if descriptors is None or len(descriptors) == 0:
            return empty_descriptors(self.kind, self.descriptor_length)

        return np.ascontiguousarray(descriptors, dtype=np.uint8)

    def close(self) -> None:
        """Nothing to release on the CPU path."""
