"""Exception hierarchy for vocabulary construction.

Per-image failures (DecodeError) are recovered by the pipeline; every
other error aborts the run.
"""


class VocabularyError(Exception):
    """Base class for all vocabtree errors."""


class PathError(VocabularyError, OSError):
    """Input root or output path is missing, unreadable or unwritable."""


class DecodeError(VocabularyError, ValueError):
    """An image could not be decoded into a non-empty grayscale raster."""


class FormatError(VocabularyError, ValueError):
    """A persisted vocabulary artifact is malformed."""


class ConfigMismatchError(FormatError):
    """Artifact descriptor geometry or configuration disagrees with the request."""


class DeviceError(VocabularyError, RuntimeError):
    """GPU context or device memory failure."""


class InsufficientDescriptorsError(VocabularyError):
    """The corpus produced too few descriptors to build a useful vocabulary."""

    def __init__(self, total: int, minimum: int, n_images: int, n_failed: int) -> None:
        self.total = total
        self.minimum = minimum
        self.n_images = n_images
        self.n_failed = n_failed
        super().__init__(
            f"Only {total} descriptors extracted from {n_images} images "
            f"({n_failed} failed to decode), need at least {minimum}"
        )
