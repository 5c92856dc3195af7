"""Vocabulary construction pipeline.

Scanner -> Extractor -> Aggregator -> Builder -> Store, run as a
single batch job. Extraction may be spread over worker processes (ORB
only); results are tagged with their corpus index and put back in corpus
order before aggregation. The GPU path always runs sequentially on one
device context, acquired once per run and released on every exit path.

A rerun performs full re-extraction and re-clustering; there is no
partial-state checkpointing.
"""

from __future__ import annotations

import multiprocessing as mp
import sys
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from .aggregation import CorpusDescriptorSet, aggregate, reassemble
from .config import OrbConfig, PipelineConfig
from .corpus import Corpus, scan_corpus
from .descriptors import ORB_DESCRIPTOR_BYTES, SIFT_DESCRIPTOR_LENGTH, DescriptorKind, empty_descriptors
from .errors import DecodeError, InsufficientDescriptorsError
from .extraction import DescriptorExtractor, DeviceContext, OrbExtractor, create_extractor, load_grayscale
from .vocabulary import VocabularyReport, VocabularyTree, build_vocabulary, load, load_text, save, save_text, summary

_GEOMETRY = {
    "orb": (DescriptorKind.BINARY, ORB_DESCRIPTOR_BYTES),
    "sift": (DescriptorKind.FLOAT, SIFT_DESCRIPTOR_LENGTH),
}


def descriptor_geometry(extractor: str) -> tuple[DescriptorKind, int]:
    """Descriptor variant and length produced by an extractor name."""
    try:
        return _GEOMETRY[extractor.lower()]
    except KeyError:
        raise ValueError(f"Unknown extractor '{extractor}'") from None


@dataclass
class ExtractionResult:
    """Per-image descriptor matrices in corpus order.

    Attributes:
        descriptors: One (N_i, D) matrix per corpus image
        failed: Images that could not be decoded (contribute empty matrices)
    """

    descriptors: list[np.ndarray]
    failed: list[Path] = field(default_factory=list)

    @property
    def total_descriptors(self) -> int:
        return sum(len(d) for d in self.descriptors)


@dataclass
class PipelineResult:
    """Everything produced by one vocabulary-building run."""

    corpus: Corpus
    descriptors: CorpusDescriptorSet
    vocabulary: VocabularyTree
    output_path: Path
    report: VocabularyReport
    failed: list[Path] = field(default_factory=list)
    text_path: Path | None = None


def extract_image(path: Path, extractor: DescriptorExtractor) -> tuple[np.ndarray, bool]:
    """Decode and extract one image.

    Returns:
        Tuple of (descriptors, decoded). Undecodable images yield an
        empty matrix and decoded=False.
    """
    try:
        image = load_grayscale(path)
    except DecodeError as e:
        print(f"Warning: {e}, skipping", file=sys.stderr)
        return empty_descriptors(extractor.kind, extractor.descriptor_length), False
    return extractor.extract(image), True


# Per-process extractor for parallel ORB extraction
_worker_extractor: OrbExtractor | None = None


def _init_worker(config: OrbConfig) -> None:
    global _worker_extractor
    _worker_extractor = OrbExtractor(config)


def _extract_indexed(task: tuple[int, Path]) -> tuple[int, np.ndarray, bool]:
    index, path = task
    if _worker_extractor is None:
        raise RuntimeError("Extraction worker was started without an extractor")
    descriptors, decoded = extract_image(path, _worker_extractor)
    return index, descriptors, decoded


def extract_corpus(
    corpus: Corpus,
    extractor: DescriptorExtractor,
    workers: int = 1,
    verbose: bool = True,
) -> ExtractionResult:
    """Extract descriptors for every corpus image.

    Args:
        corpus: Images to process
        extractor: Extraction backend
        workers: Worker processes; only the ORB extractor runs in parallel
        verbose: Print "i of N" progress to stdout

    Returns:
        ExtractionResult with exactly one matrix per corpus image
    """
    n_images = len(corpus)
    if verbose:
        print(f"[Extract] {n_images} images in {corpus.root}")

    if workers > 1 and not isinstance(extractor, OrbExtractor):
        print(
            "Warning: parallel extraction is only supported for ORB, running sequentially",
            file=sys.stderr,
        )
        workers = 1

    failed: list[Path] = []

    if workers == 1 or n_images <= 1:
        descriptors = []
        for i, path in enumerate(corpus, start=1):
            if verbose:
                print(f"{i} of {n_images}: {path}")
            matrix, decoded = extract_image(path, extractor)
            if not decoded:
                failed.append(path)
            descriptors.append(matrix)
        return ExtractionResult(descriptors=descriptors, failed=failed)

    tagged: list[tuple[int, np.ndarray]] = []
    failed_indices: list[int] = []
    # Workers must not inherit OpenCV thread state from the parent
    ctx = mp.get_context("spawn")
    with ctx.Pool(workers, initializer=_init_worker, initargs=(extractor.config,)) as pool:
        results = pool.imap_unordered(_extract_indexed, enumerate(corpus.paths), chunksize=8)
        for i, (index, matrix, decoded) in enumerate(results, start=1):
            if verbose:
                print(f"{i} of {n_images}: {corpus[index]}")
            if not decoded:
                failed_indices.append(index)
            tagged.append((index, matrix))

    failed = [corpus[index] for index in sorted(failed_indices)]
    return ExtractionResult(descriptors=reassemble(tagged, n_images), failed=failed)


def check_descriptor_count(
    descriptors: CorpusDescriptorSet,
    minimum: int,
    n_failed: int = 0,
) -> None:
    """Fail when the corpus is too sparse for a meaningful vocabulary.

    Raises:
        InsufficientDescriptorsError: If fewer than `minimum` descriptors
            were extracted, or none at all
    """
    total = descriptors.total_descriptors
    if total < max(minimum, 1):
        raise InsufficientDescriptorsError(total, minimum, len(descriptors), n_failed)


def build_from_directory(
    root: str | Path,
    config: PipelineConfig | None = None,
    write_text: bool = False,
    verbose: bool = True,
) -> PipelineResult:
    """Build and save a vocabulary from the images under a directory.

    The binary artifact is written to `<root>/{orb|sift}_vocabulary.npz`,
    and its text twin next to it when `write_text` is set.

    Raises:
        PathError: If root cannot be scanned or the artifact cannot be written
        DeviceError: If the GPU context fails
        InsufficientDescriptorsError: If too few descriptors were extracted
    """
    config = config or PipelineConfig()
    root = Path(root)
    kind, length = descriptor_geometry(config.extractor)

    corpus = scan_corpus(root, config.extensions)
    start_time = time.time()

    with ExitStack() as stack:
        context = None
        if config.extractor == "sift":
            context = stack.enter_context(DeviceContext(config.sift.device))
        extractor = create_extractor(config, context)
        stack.callback(extractor.close)
        extraction = extract_corpus(corpus, extractor, workers=config.workers, verbose=verbose)

    descriptors = aggregate(extraction.descriptors, kind=kind, descriptor_length=length)
    if verbose:
        elapsed = time.time() - start_time
        print(
            f"[Extract] {descriptors.total_descriptors} descriptors from {len(descriptors)} "
            f"images in {elapsed:.1f}s ({len(extraction.failed)} failed)"
        )

    check_descriptor_count(descriptors, config.min_descriptors, len(extraction.failed))

    vocabulary = build_vocabulary(descriptors, config.vocabulary, seed=config.seed, verbose=verbose)

    output_path = root / config.output_name
    if verbose:
        print(f"[Vocabulary] Saving to {output_path}")
    save(vocabulary, output_path)

    text_path = None
    if write_text:
        text_path = output_path.with_suffix(".txt")
        save_text(vocabulary, text_path)

    return PipelineResult(
        corpus=corpus,
        descriptors=descriptors,
        vocabulary=vocabulary,
        output_path=output_path,
        report=summary(vocabulary),
        failed=extraction.failed,
        text_path=text_path,
    )


def open_vocabulary(path: str | Path, extractor: str | None = None) -> VocabularyTree:
    """Load a binary or text artifact, checking it suits an extractor.

    Files ending in .txt are read as text, anything else as binary.

    Raises:
        ConfigMismatchError: If the artifact's descriptors do not match
            what `extractor` produces
    """
    path = Path(path)
    kind = length = None
    if extractor is not None:
        kind, length = descriptor_geometry(extractor)

    if path.suffix.lower() == ".txt":
        return load_text(path, kind=kind, descriptor_length=length)
    return load(path, kind=kind, descriptor_length=length)
