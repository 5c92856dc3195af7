"""Shared fixtures: synthetic textured images on disk."""

from pathlib import Path

import cv2
import numpy as np
import pytest


def make_texture(seed: int, shape: tuple[int, int] = (240, 320)) -> np.ndarray:
    """Blocky random texture with drawn shapes; rich in corners and blobs.

    Args:
        seed: Random seed, different seeds give different images
        shape: (height, width) of the image

    Returns:
        uint8 grayscale image
    """
    rng = np.random.default_rng(seed)
    h, w = shape
    blocks = rng.integers(0, 256, size=(h // 12 + 1, w // 12 + 1), dtype=np.uint8)
    image = cv2.resize(blocks, (w, h), interpolation=cv2.INTER_NEAREST)
    for _ in range(12):
        center = (int(rng.integers(0, w)), int(rng.integers(0, h)))
        radius = int(rng.integers(4, 20))
        cv2.circle(image, center, radius, int(rng.integers(0, 256)), -1)
    return cv2.GaussianBlur(image, (3, 3), 0)


@pytest.fixture
def textured_image() -> np.ndarray:
    return make_texture(0)


@pytest.fixture
def blank_image() -> np.ndarray:
    return np.full((240, 320), 128, dtype=np.uint8)


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    """Directory tree of textured PNGs.

    Layout:
        images/a.png
        images/B.PNG
        images/sub/c.png
        images/sub/deeper/d.png
        images/notes.txt        (ignored)
    """
    root = tmp_path / "images"
    (root / "sub" / "deeper").mkdir(parents=True)

    for seed, relative in enumerate(["a.png", "B.PNG", "sub/c.png", "sub/deeper/d.png"]):
        cv2.imwrite(str(root / relative), make_texture(seed))

    (root / "notes.txt").write_text("not an image")
    return root
