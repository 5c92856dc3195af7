"""Persistence of vocabulary trees.

Two formats are supported:

Binary (.npz): numpy `savez_compressed` archive holding the configuration
codes, descriptor geometry and per-node arrays (parent, leaf flag,
centroid, weight). Written to a temporary file and renamed into place,
so a partially written artifact is never visible.

Text (.txt): the DBoW2 text layout, readable by DBoW2's
`loadFromTextFile`:

    k L scoring weighting
    parent is_leaf d_1 ... d_D weight      (one line per non-root node)

Binary descriptor components are written as byte integers, floating
components with `repr` so that float32 values survive the round trip.
"""

from __future__ import annotations

import os
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..config import ScoringType, VocabularyConfig, WeightingType
from ..descriptors import SIFT_DESCRIPTOR_LENGTH, DescriptorKind
from ..errors import ConfigMismatchError, FormatError, PathError
from .tree import VocabularyTree

FORMAT_NAME = "vocabtree"
FORMAT_VERSION = 1

_REQUIRED_FIELDS = (
    "format",
    "version",
    "branching_factor",
    "depth",
    "weighting",
    "scoring",
    "descriptor_kind",
    "descriptor_length",
    "parents",
    "is_leaf",
    "descriptors",
    "weights",
)
_SCALAR_FIELDS = _REQUIRED_FIELDS[:8]
_NODE_FIELDS = ("parents", "is_leaf", "weights")


@dataclass(frozen=True)
class VocabularyReport:
    """Summary statistics of a vocabulary for display.

    Attributes:
        branching_factor: Configured k
        depth: Configured L
        weighting: Weighting scheme
        scoring: Scoring scheme
        num_words: Number of leaves (visual words)
        num_nodes: Number of nodes including the root
        max_leaf_depth: Deepest word; below depth when branches terminated early
        descriptor_kind: Descriptor variant
        descriptor_length: Components per descriptor
    """

    branching_factor: int
    depth: int
    weighting: WeightingType
    scoring: ScoringType
    num_words: int
    num_nodes: int
    max_leaf_depth: int
    descriptor_kind: DescriptorKind
    descriptor_length: int

    def __str__(self) -> str:
        return (
            f"Vocabulary: k = {self.branching_factor}, L = {self.depth}, "
            f"Weighting = {self.weighting.label}, Scoring = {self.scoring.label}, "
            f"Number of words = {self.num_words}\n"
            f"  Nodes: {self.num_nodes}, deepest word: {self.max_leaf_depth}, "
            f"descriptors: {self.descriptor_kind.value} x {self.descriptor_length}"
        )


def summary(tree: VocabularyTree) -> VocabularyReport:
    """Report leaf count, depth, branching factor and weighting/scoring."""
    return VocabularyReport(
        branching_factor=tree.config.branching_factor,
        depth=tree.config.depth,
        weighting=tree.config.weighting,
        scoring=tree.config.scoring,
        num_words=tree.num_words,
        num_nodes=tree.num_nodes,
        max_leaf_depth=tree.max_depth,
        descriptor_kind=tree.kind,
        descriptor_length=tree.descriptor_length,
    )


# ----------------------------------------------------------------------
# Shared helpers


def _atomic_write(path: Path, write) -> None:
    """Call write(file) on a temporary sibling of path, then rename it."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise PathError(f"Cannot write vocabulary to {path}: {e}") from e

    try:
        with os.fdopen(fd, "wb") as f:
            write(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        raise PathError(f"Cannot write vocabulary to {path}: {e}") from e
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def _check_expected(
    tree: VocabularyTree,
    path: Path,
    expected: VocabularyConfig | None,
    kind: DescriptorKind | None,
    descriptor_length: int | None,
) -> VocabularyTree:
    if kind is not None and tree.kind is not kind:
        raise ConfigMismatchError(
            f"{path} holds {tree.kind.value} descriptors, expected {kind.value}"
        )
    if descriptor_length is not None and tree.descriptor_length != descriptor_length:
        raise ConfigMismatchError(
            f"{path} holds {tree.descriptor_length}-component descriptors, "
            f"expected {descriptor_length}"
        )
    if expected is not None and tree.config != expected:
        raise ConfigMismatchError(
            f"{path} was built with {tree.config}, expected {expected}"
        )
    return tree


def _assemble(
    config: VocabularyConfig,
    kind: DescriptorKind,
    descriptor_length: int,
    parents: np.ndarray,
    is_leaf: np.ndarray,
    descriptors: np.ndarray,
    weights: np.ndarray,
    path: Path,
) -> VocabularyTree:
    """Rebuild a tree from per-node arrays, node 0 being the root."""
    n_nodes = len(parents)
    if n_nodes == 0 or parents[0] != -1:
        raise FormatError(f"{path}: first node must be the root")
    if not (len(is_leaf) == len(weights) == n_nodes and descriptors.shape == (n_nodes, descriptor_length)):
        raise FormatError(f"{path}: per-node arrays have inconsistent lengths")

    tree = VocabularyTree(config, kind, descriptor_length)
    tree.nodes[0].descriptor = descriptors[0].astype(kind.dtype)
    for i in range(1, n_nodes):
        parent = int(parents[i])
        if not 0 <= parent < i:
            raise FormatError(f"{path}: node {i} has invalid parent {parent}")
        if is_leaf[parent]:
            raise FormatError(f"{path}: node {i} is the child of leaf {parent}")
        tree.add_node(parent, descriptors[i])

    leaves = [i for i in range(1, n_nodes) if is_leaf[i]]
    childless = [n.id for n in tree.nodes[1:] if not n.children]
    if leaves != childless:
        raise FormatError(f"{path}: leaf flags disagree with the tree topology")

    tree.assign_words(leaves)
    for node in tree.words:
        node.weight = float(weights[node.id])
    return tree


# ----------------------------------------------------------------------
# Binary form


def save(tree: VocabularyTree, path: str | Path) -> None:
    """Write the tree as a compressed binary artifact.

    Raises:
        PathError: If the path cannot be written
    """
    path = Path(path)
    parents = np.array([n.parent for n in tree.nodes], dtype=np.int64)
    is_leaf = np.array([n.is_leaf for n in tree.nodes], dtype=bool)
    descriptors = np.stack([n.descriptor for n in tree.nodes]).astype(tree.kind.dtype)
    weights = np.array([n.weight for n in tree.nodes], dtype=np.float64)

    def write(f) -> None:
        np.savez_compressed(
            f,
            format=np.array(FORMAT_NAME),
            version=np.array(FORMAT_VERSION),
            branching_factor=np.array(tree.config.branching_factor),
            depth=np.array(tree.config.depth),
            weighting=np.array(tree.config.weighting.value),
            scoring=np.array(tree.config.scoring.value),
            descriptor_kind=np.array(tree.kind.value),
            descriptor_length=np.array(tree.descriptor_length),
            parents=parents,
            is_leaf=is_leaf,
            descriptors=descriptors,
            weights=weights,
        )

    _atomic_write(path, write)


def load(
    path: str | Path,
    expected: VocabularyConfig | None = None,
    kind: DescriptorKind | None = None,
    descriptor_length: int | None = None,
) -> VocabularyTree:
    """Read a binary artifact written by `save`.

    Args:
        path: Artifact path
        expected: Configuration the artifact must have been built with
        kind: Descriptor variant the caller will quantize with
        descriptor_length: Descriptor length the caller will quantize with

    Raises:
        PathError: If the file does not exist or cannot be read
        FormatError: If the file is not a well-formed artifact
        ConfigMismatchError: If the artifact disagrees with the expectations
    """
    path = Path(path)
    if not path.is_file():
        raise PathError(f"Vocabulary file not found: {path}")

    try:
        data = np.load(path, allow_pickle=False)
        if not isinstance(data, np.lib.npyio.NpzFile):
            raise FormatError(f"{path} is a single array, not a vocabulary archive")
        with data:
            missing = [name for name in _REQUIRED_FIELDS if name not in data.files]
            if missing:
                raise FormatError(f"{path}: missing fields {', '.join(missing)}")
            fields = {name: data[name] for name in _REQUIRED_FIELDS}
    except FormatError:
        raise
    except (OSError, ValueError, TypeError, zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise FormatError(f"{path} is not a vocabulary artifact: {e}") from e

    for name in _SCALAR_FIELDS:
        if fields[name].ndim != 0:
            raise FormatError(f"{path}: field '{name}' must be a scalar, got shape {fields[name].shape}")
    for name in _NODE_FIELDS:
        if fields[name].ndim != 1:
            raise FormatError(f"{path}: field '{name}' must be 1-D, got shape {fields[name].shape}")

    if str(fields["format"]) != FORMAT_NAME:
        raise FormatError(f"{path}: unknown format '{fields['format']}'")
    if int(fields["version"]) != FORMAT_VERSION:
        raise FormatError(f"{path}: unsupported format version {int(fields['version'])}")

    try:
        config = VocabularyConfig(
            branching_factor=int(fields["branching_factor"]),
            depth=int(fields["depth"]),
            weighting=WeightingType(int(fields["weighting"])),
            scoring=ScoringType(int(fields["scoring"])),
        )
        stored_kind = DescriptorKind(str(fields["descriptor_kind"]))
    except ValueError as e:
        raise FormatError(f"{path}: invalid configuration: {e}") from e

    stored_length = int(fields["descriptor_length"])
    descriptors = fields["descriptors"]
    if descriptors.ndim != 2 or descriptors.shape[1] != stored_length:
        raise FormatError(
            f"{path}: descriptors have shape {descriptors.shape}, "
            f"expected (*, {stored_length})"
        )
    if descriptors.dtype != stored_kind.dtype:
        raise FormatError(f"{path}: descriptor dtype {descriptors.dtype} does not match {stored_kind.value}")

    tree = _assemble(
        config,
        stored_kind,
        stored_length,
        fields["parents"],
        fields["is_leaf"],
        descriptors,
        fields["weights"],
        path,
    )
    return _check_expected(tree, path, expected, kind, descriptor_length)


# ----------------------------------------------------------------------
# Text form


def _format_component(value, kind: DescriptorKind) -> str:
    if kind is DescriptorKind.BINARY:
        return str(int(value))
    return repr(float(value))


def save_text(tree: VocabularyTree, path: str | Path) -> None:
    """Write the tree in the DBoW2 text layout.

    Raises:
        PathError: If the path cannot be written
    """
    path = Path(path)
    config = tree.config
    lines = [
        f"{config.branching_factor} {config.depth} {config.scoring.value} {config.weighting.value}"
    ]
    for node in tree.nodes[1:]:
        components = " ".join(_format_component(v, tree.kind) for v in node.descriptor)
        lines.append(f"{node.parent} {int(node.is_leaf)} {components} {repr(float(node.weight))}")

    content = ("\n".join(lines) + "\n").encode("ascii")
    _atomic_write(path, lambda f: f.write(content))


def _has_fractional(component_tokens: list[list[str]]) -> bool:
    """True if any component is written as a non-integer literal."""
    return any(
        not token.lstrip("-").isdigit() for tokens in component_tokens for token in tokens
    )


def load_text(
    path: str | Path,
    expected: VocabularyConfig | None = None,
    kind: DescriptorKind | None = None,
    descriptor_length: int | None = None,
) -> VocabularyTree:
    """Read a text artifact written by `save_text` or DBoW2.

    The descriptor variant is taken from `kind` when given. Otherwise
    components containing a decimal point or exponent mark floating
    descriptors, as do 128-component rows; anything else is binary.

    Raises:
        PathError: If the file does not exist or cannot be read
        FormatError: If the file is not a well-formed artifact
        ConfigMismatchError: If the artifact disagrees with the expectations
    """
    path = Path(path)
    if not path.is_file():
        raise PathError(f"Vocabulary file not found: {path}")

    try:
        text = path.read_text(encoding="ascii")
    except UnicodeDecodeError as e:
        raise FormatError(f"{path} is not a text vocabulary: {e}") from e
    except OSError as e:
        raise PathError(f"Cannot read vocabulary {path}: {e}") from e

    lines = [line.split() for line in text.splitlines() if line.strip()]
    if not lines:
        raise FormatError(f"{path} is empty")

    header = lines[0]
    try:
        if len(header) != 4:
            raise ValueError(f"expected 'k L scoring weighting', got {' '.join(header)}")
        k, depth, scoring_code, weighting_code = (int(token) for token in header)
        config = VocabularyConfig(
            branching_factor=k,
            depth=depth,
            weighting=WeightingType(weighting_code),
            scoring=ScoringType(scoring_code),
        )
    except ValueError as e:
        raise FormatError(f"{path}: invalid header: {e}") from e

    rows = lines[1:]
    lengths = {len(tokens) - 3 for tokens in rows}
    if len(lengths) > 1:
        raise FormatError(f"{path}: node lines have differing descriptor lengths {sorted(lengths)}")
    stored_length = lengths.pop() if lengths else (
        descriptor_length if descriptor_length is not None
        else (kind or DescriptorKind.BINARY).default_length
    )
    if stored_length < 1:
        raise FormatError(f"{path}: node lines carry no descriptor components")

    component_tokens = [tokens[2:-1] for tokens in rows]
    fractional = _has_fractional(component_tokens)
    looks_float = fractional or stored_length == SIFT_DESCRIPTOR_LENGTH
    if kind is None:
        stored_kind = DescriptorKind.FLOAT if looks_float else DescriptorKind.BINARY
    elif (kind is DescriptorKind.BINARY and fractional) or (
        kind is DescriptorKind.FLOAT and not looks_float
    ):
        found = "float" if fractional else "binary"
        raise ConfigMismatchError(f"{path} holds {found} descriptors, expected {kind.value}")
    else:
        stored_kind = kind

    n_nodes = len(rows) + 1
    parents = np.full(n_nodes, -1, dtype=np.int64)
    is_leaf = np.zeros(n_nodes, dtype=bool)
    weights = np.zeros(n_nodes, dtype=np.float64)
    descriptors = np.zeros((n_nodes, stored_length), dtype=np.float64)

    for i, tokens in enumerate(rows, start=1):
        try:
            parents[i] = int(tokens[0])
            leaf_flag = int(tokens[1])
            if leaf_flag not in (0, 1):
                raise ValueError(f"leaf flag must be 0 or 1, got {leaf_flag}")
            is_leaf[i] = bool(leaf_flag)
            descriptors[i] = [float(token) for token in tokens[2:-1]]
            weights[i] = float(tokens[-1])
        except ValueError as e:
            raise FormatError(f"{path}: line {i + 1}: {e}") from e

    if stored_kind is DescriptorKind.BINARY:
        if np.any(descriptors != np.round(descriptors)) or np.any((descriptors < 0) | (descriptors > 255)):
            raise FormatError(f"{path}: binary descriptor components must be integers in 0-255")

    tree = _assemble(
        config,
        stored_kind,
        stored_length,
        parents,
        is_leaf,
        descriptors.astype(stored_kind.dtype),
        weights,
        path,
    )
    return _check_expected(tree, path, expected, kind, descriptor_length)


convert_to_text = save_text
convert_from_text = load_text
