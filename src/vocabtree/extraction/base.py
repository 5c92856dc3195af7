"""Common extractor interface and image decoding."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from ..descriptors import DescriptorKind
from ..errors import DecodeError


@runtime_checkable
class DescriptorExtractor(Protocol):
    """Capability shared by all extraction backends.

    `extract` returns an (N, descriptor_length) matrix; N may be zero.
    """

    kind: DescriptorKind
    descriptor_length: int

    def extract(self, image: np.ndarray) -> np.ndarray: ...

    def close(self) -> None: ...


def load_grayscale(path: str | Path) -> np.ndarray:
    """Decode an image file as a single-channel uint8 raster.

    Raises:
        DecodeError: If the file cannot be decoded or has a zero dimension
    """
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)

    if image is None:
        raise DecodeError(f"Failed to decode image: {path}")
    if image.ndim != 2 or image.shape[0] == 0 or image.shape[1] == 0:
        raise DecodeError(f"Image has an empty raster {image.shape}: {path}")

    return image


def as_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a BGR/BGRA raster to grayscale, pass grayscale through."""
    if image.ndim == 3:
        code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
        image = cv2.cvtColor(image, code)
    return image
