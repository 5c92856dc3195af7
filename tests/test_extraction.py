"""Tests for image decoding and the descriptor extractors."""

from pathlib import Path

import cv2
import numpy as np
import pytest
import torch

from vocabtree.config import OrbConfig, PipelineConfig, SiftConfig
from vocabtree.descriptors import DescriptorKind
from vocabtree.errors import DecodeError, DeviceError
from vocabtree.extraction import (
    DescriptorExtractor,
    DeviceContext,
    OrbExtractor,
    SiftGpuExtractor,
    create_extractor,
    load_grayscale,
)
from vocabtree.extraction import sift_gpu
from vocabtree.extraction.sift_gpu import gaussian_blur, octave_index, scratch_size


class TestLoadGrayscale:
    """Test suite for load_grayscale."""

    def test_loads_grayscale(self, image_dir: Path):
        image = load_grayscale(image_dir / "a.png")

        assert image.ndim == 2
        assert image.dtype == np.uint8
        assert image.shape == (240, 320)

    def test_undecodable_file(self, tmp_path: Path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not a png")

        with pytest.raises(DecodeError, match="Failed to decode"):
            load_grayscale(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(DecodeError):
            load_grayscale(tmp_path / "missing.png")


class TestOrbExtractor:
    """Test suite for the CPU binary extractor."""

    def test_extracts_binary_descriptors(self, textured_image: np.ndarray):
        extractor = OrbExtractor(OrbConfig(n_features=200))

        descriptors = extractor.extract(textured_image)

        assert descriptors.dtype == np.uint8
        assert descriptors.shape[1] == 32
        assert 0 < len(descriptors) <= 200

    def test_blank_image_gives_empty_set(self, blank_image: np.ndarray):
        """Test that zero keypoints is a valid empty result, not an error."""
        descriptors = OrbExtractor().extract(blank_image)

        assert descriptors.shape == (0, 32)
        assert descriptors.dtype == np.uint8

    def test_color_image_converted(self, textured_image: np.ndarray):
        color = np.dstack([textured_image] * 3)

        descriptors = OrbExtractor().extract(color)

        assert len(descriptors) > 0

    def test_satisfies_interface(self):
        extractor = OrbExtractor()

        assert isinstance(extractor, DescriptorExtractor)
        assert extractor.kind is DescriptorKind.BINARY
        assert extractor.descriptor_length == 32


class TestDeviceContext:
    """Test suite for the scoped device handle."""

    def test_cpu_context(self):
        with DeviceContext("cpu") as context:
            assert context.device.type == "cpu"
            assert not context.closed
        assert context.closed

    @pytest.mark.skipif(torch.cuda.is_available(), reason="CUDA is available")
    def test_cuda_unavailable(self):
        with pytest.raises(DeviceError, match="CUDA is not available"):
            DeviceContext("cuda")

    def test_invalid_device(self):
        with pytest.raises(DeviceError, match="Invalid device"):
            DeviceContext("not-a-device")

    def test_temporary_memory_released(self):
        context = DeviceContext("cpu")

        with context.temporary_memory(100) as scratch:
            assert context.leased
            view = scratch.take(2, 5, 5)
            assert view.shape == (2, 5, 5)
            assert scratch.used == 50

        assert not context.leased
        assert scratch.released
        with pytest.raises(DeviceError, match="released"):
            scratch.take(1)

    def test_temporary_memory_released_on_failure(self):
        """Test that the lease ends even when extraction raises."""
        context = DeviceContext("cpu")

        with pytest.raises(RuntimeError, match="boom"):
            with context.temporary_memory(10):
                raise RuntimeError("boom")

        assert not context.leased

    def test_lease_not_reentrant(self):
        context = DeviceContext("cpu")

        with context.temporary_memory(10):
            with pytest.raises(DeviceError, match="already leased"):
                with context.temporary_memory(10):
                    pass

    def test_exhausted_scratch(self):
        context = DeviceContext("cpu")

        with context.temporary_memory(10) as scratch:
            with pytest.raises(DeviceError, match="exhausted"):
                scratch.take(4, 4)

    def test_closed_context(self):
        context = DeviceContext("cpu")
        context.close()
        context.close()

        with pytest.raises(DeviceError, match="closed"):
            context.upload(np.zeros((4, 4), dtype=np.uint8))


class TestSiftGpuExtractor:
    """Test suite for the floating-point scale-space extractor (run on CPU)."""

    @pytest.fixture
    def context(self):
        with DeviceContext("cpu") as context:
            yield context

    def test_extracts_float_descriptors(self, context: DeviceContext, textured_image: np.ndarray):
        extractor = SiftGpuExtractor(context, SiftConfig(max_points=300, device="cpu"))

        descriptors = extractor.extract(textured_image)

        assert descriptors.dtype == np.float32
        assert descriptors.shape[1] == 128
        assert 0 < len(descriptors) <= 300
        np.testing.assert_allclose(np.linalg.norm(descriptors, axis=1), 1.0, atol=1e-4)
        assert np.all(descriptors >= 0)

    def test_respects_max_points(self, context: DeviceContext, textured_image: np.ndarray):
        extractor = SiftGpuExtractor(context, SiftConfig(max_points=10, device="cpu"))

        assert len(extractor.extract(textured_image)) <= 10

    def test_blank_image_gives_empty_set(self, context: DeviceContext, blank_image: np.ndarray):
        extractor = SiftGpuExtractor(context, SiftConfig(device="cpu"))

        descriptors = extractor.extract(blank_image)

        assert descriptors.shape == (0, 128)
        assert descriptors.dtype == np.float32

    def test_tiny_image_gives_empty_set(self, context: DeviceContext):
        extractor = SiftGpuExtractor(context, SiftConfig(device="cpu"))

        descriptors = extractor.extract(np.zeros((4, 4), dtype=np.uint8))

        assert descriptors.shape == (0, 128)

    def test_context_reused_sequentially(self, context: DeviceContext, textured_image: np.ndarray):
        """Test that one context serves several images and is released after each."""
        extractor = SiftGpuExtractor(context, SiftConfig(max_points=50, device="cpu"))

        first = extractor.extract(textured_image)
        second = extractor.extract(textured_image)

        assert not context.leased
        np.testing.assert_allclose(first, second, atol=1e-5)

    def test_octave_limit(self, context: DeviceContext, textured_image: np.ndarray):
        """Test that fewer octaves never yield more descriptors."""
        full = SiftGpuExtractor(context, SiftConfig(device="cpu"))
        limited = SiftGpuExtractor(context, SiftConfig(num_octaves=1, device="cpu"))

        assert len(limited.extract(textured_image)) <= len(full.extract(textured_image))

    def test_scratch_exhaustion_releases_lease(
        self, context: DeviceContext, textured_image: np.ndarray, monkeypatch
    ):
        monkeypatch.setattr(sift_gpu, "scratch_size", lambda height, width: 1)
        extractor = SiftGpuExtractor(context, SiftConfig(device="cpu"))

        with pytest.raises(DeviceError, match="exhausted"):
            extractor.extract(textured_image)

        assert context.leased is False

    def test_device_failure_releases_lease(
        self, context: DeviceContext, textured_image: np.ndarray, monkeypatch
    ):
        """Test that a runtime failure on the device surfaces as DeviceError."""
        extractor = SiftGpuExtractor(context, SiftConfig(device="cpu"))

        def fail(image, scratch):
            raise RuntimeError("out of memory")

        monkeypatch.setattr(extractor, "_smooth", fail)

        with pytest.raises(DeviceError, match="out of memory"):
            extractor.extract(textured_image)

        assert context.leased is False
        with context.temporary_memory(4) as scratch:
            assert scratch.capacity == 4

    def test_satisfies_interface(self, context: DeviceContext):
        extractor = SiftGpuExtractor(context)

        assert isinstance(extractor, DescriptorExtractor)
        assert extractor.kind is DescriptorKind.FLOAT
        assert extractor.descriptor_length == 128


class TestDeviceStage:
    """Test suite for the device-side helpers of the SIFT extractor."""

    def test_scratch_holds_both_rasters(self):
        assert scratch_size(40, 30) == 2 * 40 * 30

    def test_blur_preserves_constant_image(self):
        image = torch.full((20, 20), 7.0)

        torch.testing.assert_close(gaussian_blur(image, 1.5), image)

    def test_zero_sigma_is_identity(self):
        image = torch.arange(16.0).view(4, 4)

        assert gaussian_blur(image, 0.0) is image

    def test_octave_index(self):
        keypoint = cv2.KeyPoint(10.0, 10.0, 2.0)
        keypoint.octave = 255  # octave -1, layer 0
        assert octave_index(keypoint) == 0

        keypoint.octave = (1 << 8) | 2  # octave 2, layer 1
        assert octave_index(keypoint) == 3


class TestCreateExtractor:
    """Test suite for extractor selection."""

    def test_orb(self):
        assert isinstance(create_extractor(PipelineConfig(extractor="orb")), OrbExtractor)

    def test_sift_requires_context(self):
        with pytest.raises(ValueError, match="DeviceContext"):
            create_extractor(PipelineConfig(extractor="sift"))

    def test_sift(self):
        with DeviceContext("cpu") as context:
            extractor = create_extractor(PipelineConfig(extractor="sift"), context)
            assert isinstance(extractor, SiftGpuExtractor)
            assert extractor.context is context
