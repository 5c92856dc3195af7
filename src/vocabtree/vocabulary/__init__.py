"""Vocabulary tree construction, quantization and persistence.

Key components:
- VocabularyTree: k-ary tree of centroids whose leaves are visual words
- HierarchicalKMeansBuilder: builds the tree from a CorpusDescriptorSet
- store: binary (.npz) and DBoW2 text serialization, summary reports
"""

from .builder import HierarchicalKMeansBuilder, build_vocabulary
from .scoring import BowVector, normalize, score
from .store import (
    VocabularyReport,
    convert_from_text,
    convert_to_text,
    load,
    load_text,
    save,
    save_text,
    summary,
)
from .tree import Node, VocabularyTree

__all__ = [
    # Tree
    "VocabularyTree",
    "Node",
    "BowVector",
    "normalize",
    "score",
    # Builder
    "HierarchicalKMeansBuilder",
    "build_vocabulary",
    # Store
    "VocabularyReport",
    "save",
    "load",
    "save_text",
    "load_text",
    "convert_to_text",
    "convert_from_text",
    "summary",
]
