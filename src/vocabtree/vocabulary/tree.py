"""Hierarchical vocabulary tree of visual words.

The tree is a k-ary hierarchy of cluster centroids in descriptor space.
Leaves are visual words; each carries a weight derived from the
configured weighting scheme. New descriptors are quantized by descending
from the root to the nearest child at every level.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from ..config import VocabularyConfig, WeightingType
from ..descriptors import DescriptorKind, nearest, validate_descriptor_matrix
from .scoring import BowVector, must_normalize, normalize, score

ROOT_ID = 0


@dataclass
class Node:
    """A node of the vocabulary tree.

    Attributes:
        id: Index in VocabularyTree.nodes
        parent: Parent node id, -1 for the root
        descriptor: Cluster centroid; zeros for the root
        children: Child node ids
        weight: Word weight (leaves only)
        word_id: Visual word index, -1 for internal nodes
    """

    id: int
    parent: int
    descriptor: np.ndarray
    children: list[int] = field(default_factory=list)
    weight: float = 0.0
    word_id: int = -1

    @property
    def is_leaf(self) -> bool:
        return self.word_id >= 0


class VocabularyTree:
    """Visual vocabulary built by hierarchical clustering.

    Nodes are stored in creation order; a parent always precedes its
    children. Word ids number the leaves in node order.
    """

    def __init__(
        self,
        config: VocabularyConfig,
        kind: DescriptorKind,
        descriptor_length: int,
    ) -> None:
        """Create a tree holding only the root.

        Args:
            config: Branching factor, depth, weighting and scoring
            kind: Descriptor variant of every centroid
            descriptor_length: Components per centroid
        """
        self.config = config
        self.kind = kind
        self.descriptor_length = descriptor_length
        self.nodes: list[Node] = [
            Node(id=ROOT_ID, parent=-1, descriptor=np.zeros(descriptor_length, dtype=kind.dtype))
        ]
        self._words: list[int] = []

    # ------------------------------------------------------------------
    # Construction

    def add_node(self, parent: int, descriptor: np.ndarray) -> Node:
        """Append a child of `parent` and return it."""
        node = Node(
            id=len(self.nodes),
            parent=parent,
            descriptor=np.asarray(descriptor, dtype=self.kind.dtype).reshape(self.descriptor_length),
        )
        self.nodes.append(node)
        self.nodes[parent].children.append(node.id)
        return node

    def assign_words(self, leaf_ids: list[int] | None = None) -> None:
        """Number the leaves as visual words in node order.

        Args:
            leaf_ids: Nodes to mark as leaves. Defaults to every non-root
                node without children.
        """
        if leaf_ids is None:
            leaf_ids = [n.id for n in self.nodes[1:] if not n.children]
        for node in self.nodes:
            node.word_id = -1
        self._words = sorted(leaf_ids)
        for word_id, node_id in enumerate(self._words):
            self.nodes[node_id].word_id = word_id

    # ------------------------------------------------------------------
    # Structure

    @property
    def words(self) -> list[Node]:
        """Leaf nodes ordered by word id."""
        return [self.nodes[i] for i in self._words]

    @property
    def num_words(self) -> int:
        return len(self._words)

    @property
    def num_nodes(self) -> int:
        return len(self.nodes)

    @property
    def weights(self) -> np.ndarray:
        """Word weights ordered by word id, shape (num_words,)."""
        return np.array([self.nodes[i].weight for i in self._words], dtype=np.float64)

    def node_depth(self, node_id: int) -> int:
        depth = 0
        while self.nodes[node_id].parent >= 0:
            node_id = self.nodes[node_id].parent
            depth += 1
        return depth

    def leaf_depths(self) -> list[int]:
        """Depth of every word, ordered by word id."""
        depths = [0] * self.num_nodes
        for node in self.nodes[1:]:
            depths[node.id] = depths[node.parent] + 1
        return [depths[i] for i in self._words]

    @property
    def max_depth(self) -> int:
        depths = self.leaf_depths()
        return max(depths) if depths else 0

    # ------------------------------------------------------------------
    # Weighting

    def set_document_frequencies(self, document_frequencies: np.ndarray, n_documents: int) -> None:
        """Recompute word weights from corpus statistics.

        IDF(word) = ln(N / df(word)), where N is the number of images
        (including images without descriptors) and df the number of
        images with at least one descriptor quantized to the word. TF and
        binary weighting give every word weight 1.

        Args:
            document_frequencies: Images containing each word, shape (num_words,)
            n_documents: Total number of images
        """
        document_frequencies = np.asarray(document_frequencies)
        if len(document_frequencies) != self.num_words:
            raise ValueError(
                f"Expected {self.num_words} document frequencies, got {len(document_frequencies)}"
            )

        idf_weighting = self.config.weighting in (WeightingType.TF_IDF, WeightingType.IDF)
        for node, df in zip(self.words, document_frequencies):
            if idf_weighting:
                node.weight = math.log(n_documents / max(int(df), 1)) if n_documents > 0 else 0.0
            else:
                node.weight = 1.0

    # ------------------------------------------------------------------
    # Quantization

    def quantize(self, descriptors: np.ndarray) -> np.ndarray:
        """Word id of every descriptor, shape (N,).

        Descriptors descend from the root to the nearest child at each
        level until a leaf is reached.
        """
        descriptors = validate_descriptor_matrix(descriptors, self.kind, self.descriptor_length)
        current = np.full(len(descriptors), ROOT_ID, dtype=np.int64)
        if self.num_words == 0:
            return np.full(len(descriptors), -1, dtype=np.int64)

        while True:
            pending = [i for i in np.unique(current) if self.nodes[i].children]
            if not pending:
                break
            for node_id in pending:
                mask = current == node_id
                children = self.nodes[node_id].children
                centroids = np.stack([self.nodes[c].descriptor for c in children])
                current[mask] = np.asarray(children)[nearest(descriptors[mask], centroids, self.kind)]

        return np.array([self.nodes[i].word_id for i in current], dtype=np.int64)

    def transform(self, descriptors: np.ndarray) -> BowVector:
        """Convert an image's descriptors into a sparse BoW vector.

        TF and TF-IDF accumulate one weight per descriptor; IDF and
        binary record the word weight once. Vectors are normalized for
        the configured scoring; without normalization TF values are
        divided by the number of descriptors.

        Args:
            descriptors: (N, D) matrix of the tree's descriptor variant

        Returns:
            Mapping from word id to value, without zero entries
        """
        vector: BowVector = {}
        if len(descriptors) == 0 or self.num_words == 0:
            return vector

        weighting = self.config.weighting
        accumulate = weighting in (WeightingType.TF, WeightingType.TF_IDF)
        for word_id in self.quantize(descriptors):
            weight = self.nodes[self._words[word_id]].weight
            if weight <= 0:
                continue
            if accumulate:
                vector[int(word_id)] = vector.get(int(word_id), 0.0) + weight
            else:
                vector.setdefault(int(word_id), weight)

        if must_normalize(self.config.scoring):
            return normalize(vector, self.config.scoring)
        if accumulate:
            return {word: value / len(descriptors) for word, value in vector.items()}
        return vector

    def score(self, v: BowVector, w: BowVector) -> float:
        """Similarity of two vectors under the configured scoring."""
        return score(v, w, self.config.scoring)

    # ------------------------------------------------------------------
    # Comparison

    def is_equivalent(self, other: VocabularyTree, rtol: float = 1e-6, atol: float = 1e-9) -> bool:
        """Same configuration, topology and weights; centroids within tolerance."""
        if (
            self.config != other.config
            or self.kind is not other.kind
            or self.descriptor_length != other.descriptor_length
            or self.num_nodes != other.num_nodes
        ):
            return False

        for a, b in zip(self.nodes, other.nodes):
            if a.parent != b.parent or a.children != b.children or a.word_id != b.word_id:
                return False
            if not math.isclose(a.weight, b.weight, rel_tol=rtol, abs_tol=atol):
                return False
            if self.kind is DescriptorKind.BINARY:
                if not np.array_equal(a.descriptor, b.descriptor):
                    return False
            elif not np.allclose(a.descriptor, b.descriptor, rtol=rtol, atol=atol):
                return False

        return True

    def __repr__(self) -> str:
        return (
            f"VocabularyTree(k={self.config.branching_factor}, L={self.config.depth}, "
            f"words={self.num_words}, kind={self.kind.value})"
        )
