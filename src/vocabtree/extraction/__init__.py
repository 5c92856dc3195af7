"""Descriptor extraction backends.

Two interchangeable variants share the DescriptorExtractor interface:
- OrbExtractor: CPU, 32-byte binary descriptors
- SiftGpuExtractor: torch device, 128-float descriptors
"""

from __future__ import annotations

from ..config import PipelineConfig
from .base import DescriptorExtractor, as_grayscale, load_grayscale
from .device import DeviceContext, TemporaryMemory
from .orb_extractor import OrbExtractor
from .sift_gpu import SiftGpuExtractor


def create_extractor(
    config: PipelineConfig,
    context: DeviceContext | None = None,
) -> DescriptorExtractor:
    """Select the extraction backend for a run.

    Args:
        config: Pipeline configuration naming the extractor
        context: Device context, required for "sift"

    Raises:
        ValueError: If "sift" is requested without a context
    """
    if config.extractor == "orb":
        return OrbExtractor(config.orb)
    if context is None:
        raise ValueError("A DeviceContext is required for the SIFT extractor")
    return SiftGpuExtractor(context, config.sift)


__all__ = [
    "DescriptorExtractor",
    "DeviceContext",
    "OrbExtractor",
    "SiftGpuExtractor",
    "TemporaryMemory",
    "as_grayscale",
    "create_extractor",
    "load_grayscale",
]
