"""Explicit device handle and scoped temporary device memory.

A single DeviceContext is acquired once per pipeline run and passed to
the GPU extractor. Per-image scratch memory is leased with
`temporary_memory()` and released on every exit path.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import numpy as np
import torch

from ..errors import DeviceError


class TemporaryMemory:
    """Flat float32 scratch buffer carved into consecutive views."""

    def __init__(self, buffer: torch.Tensor) -> None:
        self._buffer: torch.Tensor | None = buffer
        self._capacity = buffer.numel()
        self._offset = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def released(self) -> bool:
        return self._buffer is None

    def release(self) -> None:
        """Drop the buffer reference; later `take` calls fail."""
        self._buffer = None

    @property
    def used(self) -> int:
        return self._offset

    def take(self, *shape: int) -> torch.Tensor:
        """Return the next unused region of the buffer viewed as `shape`."""
        if self._buffer is None:
            raise DeviceError("Temporary device memory has been released")
        size = int(np.prod(shape))
        if self._offset + size > self.capacity:
            raise DeviceError(
                f"Temporary device memory exhausted: need {self._offset + size} "
                f"floats, leased {self.capacity}"
            )
        view = self._buffer[self._offset : self._offset + size].view(*shape)
        self._offset += size
        return view


class DeviceContext:
    """Reusable extraction context bound to one torch device.

    Safe for sequential reuse across images. Not reentrant: leasing
    temporary memory while a lease is active raises DeviceError.

    Example:
        >>> with DeviceContext("cuda") as context:
        ...     extractor = SiftGpuExtractor(context)
        ...     descriptors = extractor.extract(image)
    """

    def __init__(self, device: str = "cuda") -> None:
        """Bind the context to a device.

        Args:
            device: torch device string, e.g. "cuda", "cuda:1" or "cpu"

        Raises:
            DeviceError: If the device string is invalid or CUDA is unavailable
        """
        try:
            self._device = torch.device(device)
        except RuntimeError as e:
            raise DeviceError(f"Invalid device '{device}': {e}") from e

        if self._device.type == "cuda" and not torch.cuda.is_available():
            raise DeviceError(f"CUDA device '{device}' requested but CUDA is not available")

        self._closed = False
        self._leased = False

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def leased(self) -> bool:
        """True while a temporary memory block is checked out."""
        return self._leased

    def _check_open(self) -> None:
        if self._closed:
            raise DeviceError("Device context has been closed")

    def upload(self, image: np.ndarray) -> torch.Tensor:
        """Copy a grayscale raster to the device as float32 in 0-255 units."""
        self._check_open()
        try:
            return torch.from_numpy(np.ascontiguousarray(image, dtype=np.float32)).to(self._device)
        except RuntimeError as e:
            raise DeviceError(f"Failed to upload image to {self._device}: {e}") from e

    @contextmanager
    def temporary_memory(self, num_floats: int) -> Iterator[TemporaryMemory]:
        """Lease a scratch buffer for the duration of one extraction.

        Args:
            num_floats: Buffer size in float32 elements

        Yields:
            TemporaryMemory wrapping the buffer

        Raises:
            DeviceError: If the context is closed, already leased, or the
                allocation fails
        """
        self._check_open()
        if self._leased:
            raise DeviceError("Temporary device memory is already leased")

        try:
            buffer = torch.empty(num_floats, dtype=torch.float32, device=self._device)
        except RuntimeError as e:
            raise DeviceError(
                f"Failed to allocate {num_floats} floats on {self._device}: {e}"
            ) from e

        memory = TemporaryMemory(buffer)
        del buffer
        self._leased = True
        try:
            yield memory
        finally:
            memory.release()
            self._leased = False
            if self._device.type == "cuda":
                torch.cuda.empty_cache()

    def close(self) -> None:
        """Release cached device memory. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._device.type == "cuda":
            torch.cuda.synchronize(self._device)
            torch.cuda.empty_cache()

    def __enter__(self) -> DeviceContext:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
