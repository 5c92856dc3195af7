"""Tests for vocabulary persistence in binary and text form."""

from pathlib import Path

import numpy as np
import pytest

from vocabtree.config import ScoringType, VocabularyConfig, WeightingType
from vocabtree.descriptors import DescriptorKind
from vocabtree.errors import ConfigMismatchError, FormatError, PathError
from vocabtree.vocabulary import (
    VocabularyTree,
    convert_from_text,
    convert_to_text,
    load,
    load_text,
    save,
    save_text,
    summary,
)


def float_tree() -> VocabularyTree:
    """k=2, L=2 float tree over 2-D descriptors with three words."""
    tree = VocabularyTree(VocabularyConfig(branching_factor=2, depth=2), DescriptorKind.FLOAT, 2)
    a = tree.add_node(0, [0.25, 0.0])
    tree.add_node(0, [10.0, 10.5])
    tree.add_node(a.id, [0.1, -1.0])
    tree.add_node(a.id, [0.3, 1.0])
    tree.assign_words()
    tree.set_document_frequencies(np.array([1, 2, 3]), n_documents=3)
    return tree


def binary_tree() -> VocabularyTree:
    """k=2, L=1 binary tree with two ORB-sized words."""
    config = VocabularyConfig(branching_factor=2, depth=1, scoring=ScoringType.L1_NORM)
    tree = VocabularyTree(config, DescriptorKind.BINARY, 32)
    tree.add_node(0, np.zeros(32, dtype=np.uint8))
    tree.add_node(0, np.arange(32, dtype=np.uint8) * 8)
    tree.assign_words()
    tree.set_document_frequencies(np.array([1, 2]), n_documents=2)
    return tree


class TestBinaryStore:
    """Test suite for the .npz artifact."""

    @pytest.mark.parametrize("make_tree", [float_tree, binary_tree])
    def test_round_trip(self, tmp_path: Path, make_tree):
        tree = make_tree()
        path = tmp_path / "vocabulary.npz"

        save(tree, path)
        loaded = load(path)

        assert loaded.is_equivalent(tree)
        assert loaded.kind is tree.kind

    def test_write_leaves_no_temporary_files(self, tmp_path: Path):
        save(float_tree(), tmp_path / "vocabulary.npz")

        assert [p.name for p in tmp_path.iterdir()] == ["vocabulary.npz"]

    def test_overwrites_existing_artifact(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        save(float_tree(), path)

        save(binary_tree(), path)

        assert load(path).kind is DescriptorKind.BINARY

    def test_unwritable_path(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")

        with pytest.raises(PathError):
            save(float_tree(), blocker / "vocabulary.npz")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(PathError, match="not found"):
            load(tmp_path / "missing.npz")

    def test_garbage_file(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        path.write_bytes(b"definitely not a vocabulary")

        with pytest.raises(FormatError):
            load(path)

    def test_missing_fields(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        np.savez(path, parents=np.arange(3))

        with pytest.raises(FormatError, match="missing fields"):
            load(path)

    def test_single_array_file(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        with open(path, "wb") as f:
            np.save(f, np.arange(3))

        with pytest.raises(FormatError, match="single array"):
            load(path)

    @pytest.mark.parametrize(
        "field, value",
        [("version", np.array([1, 2])), ("parents", np.zeros((2, 2), dtype=np.int64))],
    )
    def test_field_with_wrong_shape(self, tmp_path: Path, field, value):
        path = tmp_path / "vocabulary.npz"
        save(float_tree(), path)
        with np.load(path) as data:
            fields = {name: data[name] for name in data.files}
        fields[field] = value
        np.savez(path, **fields)

        with pytest.raises(FormatError, match=field):
            load(path)

    def test_kind_mismatch(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        save(float_tree(), path)

        with pytest.raises(ConfigMismatchError) as excinfo:
            load(path, kind=DescriptorKind.BINARY)

        assert isinstance(excinfo.value, FormatError)

    def test_expected_config_mismatch(self, tmp_path: Path):
        path = tmp_path / "vocabulary.npz"
        save(float_tree(), path)

        with pytest.raises(ConfigMismatchError):
            load(path, expected=VocabularyConfig(branching_factor=10, depth=6))

        assert load(path, expected=VocabularyConfig(branching_factor=2, depth=2)).num_words == 3


class TestTextStore:
    """Test suite for the DBoW2 text form."""

    @pytest.mark.parametrize("make_tree", [float_tree, binary_tree])
    def test_round_trip(self, tmp_path: Path, make_tree):
        tree = make_tree()
        path = tmp_path / "vocabulary.txt"

        save_text(tree, path)
        loaded = load_text(path)

        assert loaded.is_equivalent(tree)

    def test_layout(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"

        save_text(binary_tree(), path)

        lines = path.read_text().splitlines()
        assert lines[0] == "2 1 0 0"
        assert len(lines) == 3
        tokens = lines[2].split()
        assert tokens[:2] == ["0", "1"]
        assert len(tokens) == 2 + 32 + 1
        assert tokens[3] == "8"

    def test_convert_binary_to_text(self, tmp_path: Path):
        tree = float_tree()
        binary_path = tmp_path / "vocabulary.npz"
        text_path = tmp_path / "vocabulary.txt"
        save(tree, binary_path)

        convert_to_text(load(binary_path), text_path)

        assert convert_from_text(text_path).is_equivalent(tree)

    def test_reads_dbow2_file(self, tmp_path: Path):
        path = tmp_path / "dbow2.txt"
        first = " ".join(["0"] * 32)
        second = " ".join(["255"] * 32)
        path.write_text(f"2 1 0 0\n0 1 {first} 0.5\n0 1 {second} 0.25\n")

        tree = load_text(path)

        assert tree.kind is DescriptorKind.BINARY
        assert tree.descriptor_length == 32
        assert tree.config.weighting is WeightingType.TF_IDF
        assert tree.config.scoring is ScoringType.L1_NORM
        np.testing.assert_allclose(tree.weights, [0.5, 0.25])
        np.testing.assert_array_equal(tree.words[1].descriptor, np.full(32, 255))

    def test_bad_header(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"
        path.write_text("2 1 0\n")

        with pytest.raises(FormatError, match="invalid header"):
            load_text(path)

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"
        path.write_text("")

        with pytest.raises(FormatError):
            load_text(path)

    def test_float_components_requested_as_binary(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"
        save_text(float_tree(), path)

        with pytest.raises(ConfigMismatchError):
            load_text(path, kind=DescriptorKind.BINARY)

    def test_binary_component_out_of_range(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"
        components = " ".join(["300"] * 32)
        path.write_text(f"2 1 0 0\n0 1 {components} 0.5\n")

        with pytest.raises(FormatError, match="0-255"):
            load_text(path)

    def test_child_of_leaf(self, tmp_path: Path):
        path = tmp_path / "vocabulary.txt"
        components = " ".join(["1"] * 32)
        path.write_text(f"2 2 0 0\n0 1 {components} 0.5\n1 1 {components} 0.5\n")

        with pytest.raises(FormatError, match="child of leaf"):
            load_text(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(PathError):
            load_text(tmp_path / "missing.txt")


class TestSummary:
    """Test suite for vocabulary reports."""

    def test_fields(self):
        report = summary(float_tree())

        assert report.branching_factor == 2
        assert report.depth == 2
        assert report.num_words == 3
        assert report.num_nodes == 5
        assert report.max_leaf_depth == 2
        assert report.weighting is WeightingType.TF_IDF
        assert report.descriptor_kind is DescriptorKind.FLOAT

    def test_str(self):
        text = str(summary(binary_tree()))

        assert text.splitlines()[0] == (
            "Vocabulary: k = 2, L = 1, Weighting = tf-idf, Scoring = l1, Number of words = 2"
        )
