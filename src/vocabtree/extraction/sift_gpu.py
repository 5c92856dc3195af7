"""SIFT extraction with a scoped device stage.

Each image is uploaded into leased device scratch memory and given its
initial Gaussian blur there. The smoothed raster is downloaded and
OpenCV's SIFT detects keypoints and computes the 128-float descriptors.
Only keypoints from the first `num_octaves` octaves are kept, at most
`max_points` of them, and every descriptor is scaled to unit length.
"""

from __future__ import annotations

import math

import cv2
import numpy as np
import torch
import torch.nn.functional as F

from ..config import SiftConfig
from ..descriptors import SIFT_DESCRIPTOR_LENGTH, DescriptorKind, empty_descriptors
from ..errors import DeviceError
from .base import as_grayscale
from .device import DeviceContext, TemporaryMemory

SCALES_PER_OCTAVE = 3
MIN_IMAGE_SIZE = 16

# OpenCV's SIFT starts from the input upsampled 2x, which it numbers octave -1
FIRST_OCTAVE = -1


def scratch_size(height: int, width: int) -> int:
    """Float32 elements leased per image: the raw and the blurred raster."""
    return 2 * height * width


def octave_index(keypoint: cv2.KeyPoint) -> int:
    """Octave of a keypoint counted from the upsampled base, starting at 0."""
    octave = keypoint.octave & 255
    if octave >= 128:
        octave -= 256
    return octave - FIRST_OCTAVE


def gaussian_blur(image: torch.Tensor, sigma: float) -> torch.Tensor:
    """Separable Gaussian blur of an (H, W) tensor with replicated borders."""
    if sigma <= 0:
        return image

    radius = max(1, int(math.ceil(3.0 * sigma)))
    x = torch.arange(-radius, radius + 1, dtype=torch.float32, device=image.device)
    kernel = torch.exp(-0.5 * (x / sigma) ** 2)
    kernel = kernel / kernel.sum()

    out = image[None, None]
    out = F.conv2d(F.pad(out, (radius, radius, 0, 0), mode="replicate"), kernel.view(1, 1, 1, -1))
    out = F.conv2d(F.pad(out, (0, 0, radius, radius), mode="replicate"), kernel.view(1, 1, -1, 1))
    return out[0, 0]


class SiftGpuExtractor:
    """Floating-point SIFT extractor running its image stage on a DeviceContext.

    The context is borrowed, not owned: closing the extractor leaves the
    context open for the caller to release.
    """

    kind = DescriptorKind.FLOAT
    descriptor_length = SIFT_DESCRIPTOR_LENGTH

    def __init__(self, context: DeviceContext, config: SiftConfig | None = None) -> None:
        """Initialize the extractor.

        Args:
            context: Device context shared across images
            config: Detector parameters. threshold is OpenCV's contrast
                threshold and edge_ratio its edge threshold.
        """
        self._context = context
        self._config = config or SiftConfig()
        self._sift = cv2.SIFT_create(
            nfeatures=self._config.max_points,
            nOctaveLayers=SCALES_PER_OCTAVE,
            contrastThreshold=self._config.threshold,
            edgeThreshold=self._config.edge_ratio,
        )

    @property
    def config(self) -> SiftConfig:
        return self._config

    @property
    def context(self) -> DeviceContext:
        return self._context

    def extract(self, image: np.ndarray) -> np.ndarray:
        """Extract up to `max_points` SIFT descriptors.

        Args:
            image: Grayscale image (uint8). Color images are converted.

        Returns:
            (N, 128) float32 unit-length descriptors; (0, 128) if no
            keypoints were found

        Raises:
            DeviceError: On device allocation or execution failure
        """
        image = as_grayscale(image)
        if min(image.shape) < MIN_IMAGE_SIZE:
            return empty_descriptors(self.kind, self.descriptor_length)

        try:
            with self._context.temporary_memory(scratch_size(*image.shape)) as scratch:
                with torch.no_grad():
                    raster = self._smooth(image, scratch)
        except DeviceError:
            raise
        except RuntimeError as e:
            raise DeviceError(f"SIFT extraction failed on {self._context.device}: {e}") from e

        return self._describe(raster)

    def close(self) -> None:
        """The context is owned by the caller; nothing to release here."""

    def _smooth(self, image: np.ndarray, scratch: TemporaryMemory) -> np.ndarray:
        """Upload, blur by init_blur on the device and download as uint8."""
        raw = scratch.take(*image.shape)
        raw.copy_(self._context.upload(image))
        blurred = scratch.take(*image.shape)
        blurred.copy_(gaussian_blur(raw, self._config.init_blur))
        return blurred.clamp(0, 255).round().to(torch.uint8).cpu().numpy()

    def _describe(self, raster: np.ndarray) -> np.ndarray:
        keypoints = self._sift.detect(raster, None)
        keypoints = [kp for kp in keypoints if octave_index(kp) < self._config.num_octaves]
        if not keypoints:
            return empty_descriptors(self.kind, self.descriptor_length)

        _, descriptors = self._sift.compute(raster, keypoints)

        # OpenCV returns None rather than an empty matrix
        if descriptors is None or len(descriptors) == 0:
            return empty_descriptors(self.kind, self.descriptor_length)

        descriptors = descriptors[: self._config.max_points].astype(np.float32)
        norms = np.linalg.norm(descriptors, axis=1, keepdims=True)
        return np.ascontiguousarray(descriptors / np.maximum(norms, 1e-12), dtype=np.float32)
