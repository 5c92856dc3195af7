"""Hierarchical k-means construction of the vocabulary tree.

The full descriptor set is partitioned into k clusters, and each cluster
is partitioned again, down to depth L. Floating descriptors are clustered
directly. Binary descriptors are clustered on their unpacked bits and the
resulting centres are binarized by majority, so every stored centroid is
itself a valid binary descriptor.

Degenerate branches:
- a node with fewer than k members becomes a leaf (early termination)
- a cluster with no members is omitted instead of producing an empty child
- the root is never a word; when the whole corpus holds fewer than k
  descriptors, each descriptor becomes its own word
"""

from __future__ import annotations

import time
import warnings
from collections import deque

import numpy as np
from sklearn.cluster import KMeans, MiniBatchKMeans
from sklearn.exceptions import ConvergenceWarning

from ..aggregation import CorpusDescriptorSet
from ..config import VocabularyConfig
from ..descriptors import DescriptorKind, binarize, nearest
from .tree import ROOT_ID, VocabularyTree

# Above this population MiniBatchKMeans replaces full KMeans
MINI_BATCH_THRESHOLD = 20000


class HierarchicalKMeansBuilder:
    """Builds a VocabularyTree from a CorpusDescriptorSet.

    Construction is deterministic for a given seed and corpus order.
    """

    def __init__(
        self,
        seed: int = 42,
        max_iter: int = 100,
        n_init: int = 3,
        batch_size: int = 10000,
        verbose: bool = False,
    ) -> None:
        """Initialize the builder.

        Args:
            seed: Random seed for k-means++ initialization
            max_iter: Maximum k-means iterations per node
            n_init: k-means++ restarts per node; the lowest inertia wins
            batch_size: Mini-batch size for large populations
            verbose: Print progress to stdout
        """
        self._seed = seed
        self._max_iter = max_iter
        self._n_init = n_init
        self._batch_size = batch_size
        self._verbose = verbose

    def build(self, corpus: CorpusDescriptorSet, config: VocabularyConfig) -> VocabularyTree:
        """Cluster the corpus into a tree and compute word weights.

        Args:
            corpus: Descriptors grouped by image; images may be empty
            config: Tree shape and weighting

        Returns:
            Tree with at most k^L words
        """
        k = config.branching_factor
        descriptors, image_ids = corpus.stacked()
        tree = VocabularyTree(config, corpus.kind, corpus.descriptor_length)
        rng = np.random.RandomState(self._seed)

        if self._verbose:
            print(f"[Vocabulary] Creating a {k}^{config.depth} vocabulary...")
            print(f"  Images: {len(corpus)}")
            print(f"  Descriptors: {len(descriptors)}")
        start_time = time.time()

        leaf_members: dict[int, np.ndarray] = {}
        queue: deque[tuple[int, np.ndarray, int]] = deque(
            [(ROOT_ID, np.arange(len(descriptors)), 0)]
        )

        while queue:
            node_id, members, depth = queue.popleft()

            if node_id == ROOT_ID and 0 < len(members) < k:
                for index in members:
                    child = tree.add_node(ROOT_ID, descriptors[index])
                    leaf_members[child.id] = np.array([index])
                continue

            if node_id != ROOT_ID and (depth >= config.depth or len(members) < k):
                leaf_members[node_id] = members
                continue

            if len(members) == 0:
                continue

            centroids, assignment = self._cluster(descriptors[members], corpus.kind, k, rng)
            for cluster in range(k):
                cluster_members = members[assignment == cluster]
                if len(cluster_members) == 0:
                    continue
                child = tree.add_node(node_id, centroids[cluster])
                queue.append((child.id, cluster_members, depth + 1))

        tree.assign_words(sorted(leaf_members))

        document_frequencies = np.array(
            [len(np.unique(image_ids[leaf_members[node.id]])) for node in tree.words],
            dtype=np.int64,
        )
        tree.set_document_frequencies(document_frequencies, len(corpus))

        if self._verbose:
            elapsed = time.time() - start_time
            print(f"[Vocabulary] ... done in {elapsed:.1f}s")
            print(f"  Words: {tree.num_words}")
            print(f"  Nodes: {tree.num_nodes}")

        return tree

    def _cluster(
        self,
        data: np.ndarray,
        kind: DescriptorKind,
        k: int,
        rng: np.random.RandomState,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Partition one node's members into k clusters.

        Returns:
            Tuple of (centroids, assignment) with shapes (k, D) and (N,).
            Assignment uses the stored centroids and the variant's distance.
        """
        if kind is DescriptorKind.BINARY:
            points = np.unpackbits(data, axis=1).astype(np.float32)
        else:
            points = data.astype(np.float32)

        if len(points) > MINI_BATCH_THRESHOLD:
            kmeans = MiniBatchKMeans(
                n_clusters=k,
                random_state=rng,
                batch_size=self._batch_size,
                n_init=self._n_init,
                max_iter=self._max_iter,
            )
        else:
            kmeans = KMeans(
                n_clusters=k,
                init="k-means++",
                n_init=self._n_init,
                max_iter=self._max_iter,
                random_state=rng,
            )

        # Fewer distinct points than k yields duplicate centres; the
        # resulting empty clusters are dropped by the caller
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            kmeans.fit(points)

        if kind is DescriptorKind.BINARY:
            centroids = binarize(kmeans.cluster_centers_)
        else:
            centroids = kmeans.cluster_centers_.astype(np.float32)

        return centroids, nearest(data, centroids, kind)


def build_vocabulary(
    corpus: CorpusDescriptorSet,
    config: VocabularyConfig,
    seed: int = 42,
    verbose: bool = False,
) -> VocabularyTree:
    """Build a vocabulary with the default hierarchical k-means builder."""
    return HierarchicalKMeansBuilder(seed=seed, verbose=verbose).build(corpus, config)
