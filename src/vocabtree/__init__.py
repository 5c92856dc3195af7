"""vocabtree - hierarchical visual vocabularies for bag-of-words place recognition."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .aggregation import CorpusDescriptorSet, aggregate, reassemble
from .config import (
    OrbConfig,
    PipelineConfig,
    ScoringType,
    SiftConfig,
    VocabularyConfig,
    WeightingType,
    load_config,
)
from .corpus import Corpus, scan_corpus
from .descriptors import DescriptorKind
from .errors import (
    ConfigMismatchError,
    DecodeError,
    DeviceError,
    FormatError,
    InsufficientDescriptorsError,
    PathError,
    VocabularyError,
)
from .extraction import (
    DescriptorExtractor,
    DeviceContext,
    OrbExtractor,
    SiftGpuExtractor,
    create_extractor,
    load_grayscale,
)
from .pipeline import PipelineResult, build_from_directory, extract_corpus, open_vocabulary
from .vocabulary import (
    BowVector,
    HierarchicalKMeansBuilder,
    VocabularyReport,
    VocabularyTree,
    build_vocabulary,
    convert_from_text,
    convert_to_text,
    load,
    load_text,
    save,
    save_text,
    summary,
)

__all__ = [
    "__version__",
    # Configuration
    "PipelineConfig",
    "VocabularyConfig",
    "OrbConfig",
    "SiftConfig",
    "WeightingType",
    "ScoringType",
    "load_config",
    # Corpus
    "Corpus",
    "scan_corpus",
    # Extraction
    "DescriptorKind",
    "DescriptorExtractor",
    "OrbExtractor",
    "SiftGpuExtractor",
    "DeviceContext",
    "create_extractor",
    "load_grayscale",
    # Aggregation
    "CorpusDescriptorSet",
    "aggregate",
    "reassemble",
    # Vocabulary
    "VocabularyTree",
    "BowVector",
    "HierarchicalKMeansBuilder",
    "build_vocabulary",
    "VocabularyReport",
    "save",
    "load",
    "save_text",
    "load_text",
    "convert_to_text",
    "convert_from_text",
    "summary",
    # Pipeline
    "PipelineResult",
    "build_from_directory",
    "extract_corpus",
    "open_vocabulary",
    # Errors
    "VocabularyError",
    "PathError",
    "DecodeError",
    "FormatError",
    "ConfigMismatchError",
    "DeviceError",
    "InsufficientDescriptorsError",
]
