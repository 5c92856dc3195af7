"""Command line tools.

    build-vocabulary <image_directory>   scan, extract, cluster and save
    load-vocabulary <path>               load an artifact and print its summary
    convert-vocabulary <path>            write the text twin of a binary artifact

Progress and summaries go to stdout, errors to stderr. Every command exits
with status 1 when it fails and 0 otherwise.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from .config import EXTRACTOR_KINDS, PipelineConfig, ScoringType, VocabularyConfig, WeightingType, load_config
from .errors import VocabularyError
from .pipeline import build_from_directory, open_vocabulary
from .vocabulary import save_text, summary

BANNER = "=" * 60


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _build_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_config(args.config) if args.config else PipelineConfig()

    if args.extractor is not None and args.extractor != config.extractor:
        # Re-derive the default scoring for the new extractor unless configured
        vocabulary = config.vocabulary if args.config else None
        config = replace(config, extractor=args.extractor, vocabulary=vocabulary)

    # __post_init__ always fills in the per-extractor default
    vocabulary = config.vocabulary
    config.vocabulary = VocabularyConfig(
        branching_factor=args.k if args.k is not None else vocabulary.branching_factor,
        depth=args.L if args.L is not None else vocabulary.depth,
        weighting=args.weighting if args.weighting is not None else vocabulary.weighting,
        scoring=args.scoring if args.scoring is not None else vocabulary.scoring,
    )
    if args.workers is not None:
        config.workers = args.workers
    if args.min_descriptors is not None:
        config.min_descriptors = args.min_descriptors
    if args.device is not None:
        config.sift.device = args.device
    return config


def build_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="build-vocabulary",
        description="Build a hierarchical visual vocabulary from a directory of images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("image_directory", type=Path, help="Root directory of the image corpus")
    parser.add_argument("--config", type=Path, default=None, help="YAML pipeline configuration")
    parser.add_argument(
        "--extractor",
        choices=EXTRACTOR_KINDS,
        default=None,
        help="orb (CPU, binary) or sift (GPU, float) (default: orb)",
    )
    parser.add_argument("-k", type=int, default=None, help="Branching factor (default: 10)")
    parser.add_argument("-L", type=int, default=None, help="Depth levels (default: 6)")
    parser.add_argument(
        "--weighting",
        type=WeightingType.parse,
        default=None,
        help="tf-idf, tf, idf or binary (default: tf-idf)",
    )
    parser.add_argument(
        "--scoring",
        type=ScoringType.parse,
        default=None,
        help="l1, l2, chi-square, kl, bhattacharyya or dot-product "
        "(default: l1 for orb, l2 for sift)",
    )
    parser.add_argument("--workers", type=int, default=None, help="Parallel ORB extraction processes")
    parser.add_argument(
        "--min-descriptors",
        type=int,
        default=None,
        help="Fail if fewer descriptors are extracted (default: 1000)",
    )
    parser.add_argument("--device", default=None, help="torch device for SIFT (default: cuda)")
    parser.add_argument("--text", action="store_true", help="Also write the text form")
    parser.add_argument("--quiet", action="store_true", help="Only print the final summary")
    args = parser.parse_args(argv)

    try:
        config = _build_config(args)
    except (ValueError, VocabularyError) as e:
        return _fail(str(e))

    vocabulary = config.vocabulary
    print(BANNER)
    print("Visual Vocabulary Construction")
    print(BANNER)
    print(f"Image directory: {args.image_directory}")
    print(f"Extractor: {config.extractor}")
    print(
        f"Vocabulary: k={vocabulary.branching_factor}, L={vocabulary.depth}, "
        f"weighting={vocabulary.weighting.label}, scoring={vocabulary.scoring.label}"
    )
    print()

    try:
        result = build_from_directory(
            args.image_directory, config, write_text=args.text, verbose=not args.quiet
        )
    except VocabularyError as e:
        return _fail(str(e))

    print()
    print(BANNER)
    print(result.report)
    print(f"Vocabulary saved to: {result.output_path}")
    if result.text_path is not None:
        print(f"Text form saved to: {result.text_path}")
    if result.failed:
        print(f"Skipped {len(result.failed)} undecodable images")
    print(BANNER)
    return 0


def load_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="load-vocabulary",
        description="Load a vocabulary artifact and print its summary",
    )
    parser.add_argument("path", type=Path, help="Binary (.npz) or text (.txt) artifact")
    parser.add_argument(
        "--extractor",
        choices=EXTRACTOR_KINDS,
        default=None,
        help="Require descriptors produced by this extractor",
    )
    args = parser.parse_args(argv)

    print("Retrieving vocabulary...")
    try:
        vocabulary = open_vocabulary(args.path, args.extractor)
    except VocabularyError as e:
        return _fail(str(e))

    print("... done! Vocabulary info:")
    print(summary(vocabulary))
    return 0


def convert_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="convert-vocabulary",
        description="Write the text form of a binary vocabulary artifact next to it",
    )
    parser.add_argument("path", type=Path, help="Binary (.npz) artifact")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Text output path (default: <path> with a .txt suffix)",
    )
    args = parser.parse_args(argv)

    output = args.output or args.path.with_suffix(".txt")

    print("Retrieving vocabulary...")
    try:
        vocabulary = open_vocabulary(args.path)
        print("... done! Vocabulary info:")
        print(summary(vocabulary))
        print("Saving vocabulary as txt...")
        save_text(vocabulary, output)
    except VocabularyError as e:
        return _fail(str(e))

    print(f"Text vocabulary saved to: {output}")
    return 0


if __name__ == "__main__":
    sys.exit(build_main())
