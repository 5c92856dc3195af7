"""Configuration for vocabulary construction.

All settings are plain dataclasses with defaults matching the DBoW2
demo tools (k=10, L=6, TF-IDF). A YAML file can override any field:

    extractor: sift
    extensions: [".png", ".jpg"]
    vocabulary:
      branching_factor: 8
      depth: 5
      weighting: tf-idf
      scoring: l2
    sift:
      max_points: 1500
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import PathError


class WeightingType(Enum):
    """Word weighting scheme. Values are the DBoW2 integer codes."""

    TF_IDF = 0
    TF = 1
    IDF = 2
    BINARY = 3

    @property
    def label(self) -> str:
        return _WEIGHTING_LABELS[self]

    @classmethod
    def parse(cls, value: str | int | WeightingType) -> WeightingType:
        """Accept an enum member, its DBoW2 code, its name or label."""
        return _parse_enum(cls, value, _WEIGHTING_LABELS)


class ScoringType(Enum):
    """BoW vector scoring. Values are the DBoW2 integer codes."""

    L1_NORM = 0
    L2_NORM = 1
    CHI_SQUARE = 2
    KL = 3
    BHATTACHARYYA = 4
    DOT_PRODUCT = 5

    @property
    def label(self) -> str:
        return _SCORING_LABELS[self]

    @classmethod
    def parse(cls, value: str | int | ScoringType) -> ScoringType:
        """Accept an enum member, its DBoW2 code, its name or label."""
        return _parse_enum(cls, value, _SCORING_LABELS)


_WEIGHTING_LABELS = {
    WeightingType.TF_IDF: "tf-idf",
    WeightingType.TF: "tf",
    WeightingType.IDF: "idf",
    WeightingType.BINARY: "binary",
}

_SCORING_LABELS = {
    ScoringType.L1_NORM: "l1",
    ScoringType.L2_NORM: "l2",
    ScoringType.CHI_SQUARE: "chi-square",
    ScoringType.KL: "kl",
    ScoringType.BHATTACHARYYA: "bhattacharyya",
    ScoringType.DOT_PRODUCT: "dot-product",
}


def _parse_enum(enum_cls, value, labels):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return enum_cls(value)
    if isinstance(value, str):
        text = value.strip().lower().replace("_", "-")
        for member, label in labels.items():
            if text in (label, member.name.lower().replace("_", "-")):
                return member
    choices = ", ".join(labels.values())
    raise ValueError(f"Invalid {enum_cls.__name__} '{value}', expected one of: {choices}")


@dataclass
class VocabularyConfig:
    """Shape and weighting of a vocabulary tree.

    Attributes:
        branching_factor: Children per node (k)
        depth: Number of levels below the root (L)
        weighting: Word weighting scheme
        scoring: BoW vector scoring scheme
    """

    branching_factor: int = 10
    depth: int = 6
    weighting: WeightingType = WeightingType.TF_IDF
    scoring: ScoringType = ScoringType.L1_NORM

    def __post_init__(self) -> None:
        self.weighting = WeightingType.parse(self.weighting)
        self.scoring = ScoringType.parse(self.scoring)
        if self.branching_factor < 2:
            raise ValueError(f"branching_factor must be >= 2, got {self.branching_factor}")
        if self.depth < 1:
            raise ValueError(f"depth must be >= 1, got {self.depth}")

    @property
    def max_words(self) -> int:
        """Upper bound on the number of leaves, k^L."""
        return self.branching_factor**self.depth


@dataclass
class OrbConfig:
    """ORB detector parameters for the CPU binary extractor."""

    n_features: int = 500
    scale_factor: float = 1.2
    n_levels: int = 8
    edge_threshold: int = 31
    fast_threshold: int = 20


@dataclass
class SiftConfig:
    """Parameters for the floating-point SIFT extractor.

    `init_blur` is the Gaussian sigma applied on the device before
    detection. `threshold` and `edge_ratio` are OpenCV's SIFT contrast
    and edge thresholds. Octaves count from the 2x upsampled base image.
    """

    num_octaves: int = 5
    init_blur: float = 1.0
    threshold: float = 0.04
    max_points: int = 2000
    edge_ratio: float = 10.0
    device: str = "cuda"

    def __post_init__(self) -> None:
        if self.num_octaves < 1:
            raise ValueError(f"num_octaves must be >= 1, got {self.num_octaves}")
        if self.max_points < 1:
            raise ValueError(f"max_points must be >= 1, got {self.max_points}")


EXTRACTOR_KINDS = ("orb", "sift")

# Default scoring per extractor, matching the DBoW2 demo tools
_DEFAULT_SCORING = {"orb": ScoringType.L1_NORM, "sift": ScoringType.L2_NORM}


@dataclass
class PipelineConfig:
    """Settings for one vocabulary-building run.

    Attributes:
        extractor: "orb" (CPU, binary) or "sift" (GPU, float)
        extensions: Case-insensitive image extensions to include
        vocabulary: Tree shape and weighting; defaults per extractor
        orb: ORB parameters
        sift: SIFT parameters
        workers: Parallel extraction processes (ORB only)
        min_descriptors: Fail the run below this many descriptors
        seed: Random seed for clustering
    """

    extractor: str = "orb"
    extensions: tuple[str, ...] = (".png",)
    vocabulary: VocabularyConfig | None = None
    orb: OrbConfig = field(default_factory=OrbConfig)
    sift: SiftConfig = field(default_factory=SiftConfig)
    workers: int = 1
    min_descriptors: int = 1000
    seed: int = 42

    def __post_init__(self) -> None:
        self.extractor = self.extractor.lower()
        if self.extractor not in EXTRACTOR_KINDS:
            raise ValueError(
                f"Unknown extractor '{self.extractor}', expected one of {EXTRACTOR_KINDS}"
            )
        self.extensions = tuple(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in self.extensions
        )
        if self.vocabulary is None:
            self.vocabulary = VocabularyConfig(scoring=_DEFAULT_SCORING[self.extractor])
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.min_descriptors < 0:
            raise ValueError(f"min_descriptors must be >= 0, got {self.min_descriptors}")

    @property
    def output_name(self) -> str:
        """File name of the binary artifact written into the image root."""
        return f"{self.extractor}_vocabulary.npz"


def _build(cls, data: dict[str, Any], section: str):
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    return cls(**data)


def config_from_dict(data: dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from a nested mapping (e.g. parsed YAML)."""
    if not isinstance(data, dict):
        raise ValueError(f"Configuration must be a mapping, got {type(data).__name__}")
    data = dict(data)
    if "vocabulary" in data and data["vocabulary"] is not None:
        data["vocabulary"] = _build(VocabularyConfig, data["vocabulary"], "vocabulary")
    if "orb" in data:
        data["orb"] = _build(OrbConfig, data["orb"], "orb")
    if "sift" in data:
        data["sift"] = _build(SiftConfig, data["sift"], "sift")
    if "extensions" in data:
        data["extensions"] = tuple(data["extensions"])
    return _build(PipelineConfig, data, "pipeline")


def load_config(path: str | Path) -> PipelineConfig:
    """Load a PipelineConfig from a YAML file.

    Raises:
        PathError: If the file does not exist
        ValueError: If the file contains unknown keys or invalid values
    """
    path = Path(path)
    if not path.is_file():
        raise PathError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    return config_from_dict(data)
