#!/usr/bin/env python3
"""
vdtier.video_tiers – CLI entrypoint

Scans video folders with the tiered detector and keeps the last result set in
an output directory (cache, results, favorites and log live side by side).

Examples:

  # Metadata tiers only (fast)
  video-tiers "D:\\Videos" -r --no-visual -O D:\\vt

  # All tiers with the live dashboard, GPU frame decode
  video-tiers "D:\\Videos" -r -L -g -O D:\\vt

  # Print the last results (favorites only)
  video-tiers -P -O D:\\vt --favorites-only

  # Delete assets and prune the stored results
  video-tiers --delete "D:\\Videos\\a copy.mp4" -b D:\\Quarantine -O D:\\vt

  # Tag years into the cache
  video-tiers "D:\\Videos" -r --tag-years -O D:\\vt
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

# NOTE: absolute imports so the CLI works whether installed or run from source
from vdtier.cache import AnalysisCache
from vdtier.descriptors import ImageHashExtractor
from vdtier.errors import DetectionError, VdtierError
from vdtier.grouping import CLUSTER_MODES, EXACT_DURATION_TOLERANCE, NEAR_DURATION_TOLERANCE, VISUAL_DISTANCE_THRESHOLD
from vdtier.pipeline import DetectionConfig, DuplicateDetector
from vdtier.progress import ProgressReporter
from vdtier.results import ResultStore, delete_members, render_groups
from vdtier.store import DirectoryAssetStore
from vdtier.years import tag_years

CACHE_NAME = "vdtier-cache.jsonl"
RESULTS_NAME = "vdtier-results.json"
FAVORITES_NAME = "vdtier-favorites.json"
LOG_NAME = "vdtier.log"


def _setup_logging(log_file: Optional[Path] = None, log_level: str = "INFO", console_level: str = "WARNING") -> logging.Logger:
    """
    Configure the 'vdtier' logger: detailed file log plus a terse console log.

    Args:
        log_file: Path to log file (None = console only)
        log_level: File logging level (DEBUG, INFO, WARNING, ERROR)
        console_level: Console logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logger = logging.getLogger('vdtier')
    logger.setLevel(logging.DEBUG)  # filter at handler level

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(funcName)-20s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    logger.addHandler(console_handler)

    return logger


def _banner_text(*, visual: bool, gpu: bool, roots: int) -> str:
    return f"Roots: {roots}  |  Visual tier: {'ON' if visual else 'OFF'}  |  GPU: {'ON' if gpu else 'OFF'}"


# -------- CLI parsing --------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="video-tiers",
        description="Find duplicate and visually similar videos with a tiered detector (exact -> near -> visual).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("directories", nargs="*", help="One or more root directories to scan.")

    # Core scan options
    p.add_argument("-p", "--pattern", action="append", help="Glob to include (repeatable), e.g. -p *.mp4 -p *.mkv. Default: common video extensions")
    p.add_argument("-r", "--recursive", action="store_true", help="Recurse into subdirectories (unlimited). Default: top level only")
    p.add_argument("--max-depth", type=int, default=None, help="Recurse at most this many directory levels (overrides -r)")
    p.add_argument("--no-visual", action="store_true", help="Skip the visual-similarity tier (metadata tiers only)")

    p.add_argument("-O", "--output-dir", type=str,
                   help="Directory for cache, results, favorites and log. Default: current directory")
    p.add_argument("-g", "--gpu", action="store_true", help="Hint CUDA decoding for frame sampling")
    p.add_argument("-L", "--live", action="store_true", help="Show live progress UI")

    # Logging options
    p.add_argument("--log-level", type=str, default="INFO",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                   help="File logging level (default: INFO)")
    p.add_argument("--console-log-level", type=str, default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                   help="Console logging level (default: WARNING)")
    p.add_argument("--no-log-file", action="store_true", help="Disable file logging (console only)")

    # Results
    p.add_argument("-P", "--print-results", action="store_true", help="Print the last stored results")
    p.add_argument("--favorites-only", action="store_true", help="When printing, only show favorite videos")
    p.add_argument("-V", "--verbosity", type=int, default=1, choices=[0, 1], help="Print verbosity (0-1). Default: 1")

    # Library edits
    p.add_argument("--delete", action="append", metavar="ASSET", help="Delete an asset (path) and prune stored results (repeatable)")
    p.add_argument("-b", "--backup", type=str, help="Move deleted videos to this folder instead of unlinking them")
    p.add_argument("-f", "--force", action="store_true", help="Do not prompt before deleting")
    p.add_argument("--tag-years", action="store_true", help="Record estimated years for the scanned videos in the cache")

    advanced = p.add_argument_group('advanced options', 'Fine-tune detection parameters')
    advanced.add_argument("--exact-tolerance", type=float, default=EXACT_DURATION_TOLERANCE,
                          help=f"Duration tolerance in seconds for exact duplicates (default: {EXACT_DURATION_TOLERANCE})")
    advanced.add_argument("--near-tolerance", type=float, default=NEAR_DURATION_TOLERANCE,
                          help=f"Duration tolerance in seconds for near duplicates (default: {NEAR_DURATION_TOLERANCE})")
    advanced.add_argument("--visual-threshold", type=float, default=VISUAL_DISTANCE_THRESHOLD,
                          help=f"Maximum descriptor distance for visual similarity (default: {VISUAL_DISTANCE_THRESHOLD})")
    advanced.add_argument("--hash-method", type=str, default="phash", choices=["phash", "average", "dhash"],
                          help="Perceptual hash used as frame descriptor (default: phash)")
    advanced.add_argument("--cluster-mode", type=str, default="union-find", choices=list(CLUSTER_MODES),
                          help="Clustering mode (default: union-find). union-find merges chains: with near tolerance 3s, "
                               "60s/62s/64s clips of one resolution form a single group. greedy only groups clips "
                               "that match the first unclaimed clip directly, but depends on input order")

    return p.parse_args(argv)


def _validate_args(args: argparse.Namespace) -> Optional[str]:
    if args.max_depth is not None and args.max_depth < 0:
        return "--max-depth must be >= 0"
    if args.visual_threshold <= 0:
        return "--visual-threshold must be positive"
    if args.exact_tolerance < 0 or args.near_tolerance < 0:
        return "duration tolerances must be >= 0"
    if not (args.directories or args.print_results or args.delete):
        return "nothing to do: give directories to scan, -P/--print-results or --delete"
    if args.tag_years and not args.directories:
        return "--tag-years needs directories to scan"
    return None


def _confirm(prompt: str) -> bool:
    try:
        return input(f"{prompt} [y/N] ").strip().lower() in {"y", "yes"}
    except EOFError:
        return False


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    validation_error = _validate_args(args)
    if validation_error:
        print(f"video-tiers: error: {validation_error}", file=sys.stderr)
        return 2

    output_dir = Path(args.output_dir).expanduser().resolve() if args.output_dir else Path.cwd()
    output_dir.mkdir(parents=True, exist_ok=True)

    log_file = None if args.no_log_file else output_dir / LOG_NAME
    logger = _setup_logging(log_file, args.log_level, args.console_log_level)
    logger.info(f"video-tiers started with args: {' '.join(sys.argv[1:])}")
    logger.info(f"Output directory: {output_dir}")

    max_depth = args.max_depth if args.max_depth is not None else (None if args.recursive else 0)
    store = DirectoryAssetStore(
        [Path(d) for d in args.directories],
        patterns=args.pattern,
        max_depth=max_depth,
        favorites_path=output_dir / FAVORITES_NAME,
        backup_dir=Path(args.backup) if args.backup else None,
    )
    cache = AnalysisCache(output_dir / CACHE_NAME)
    results = ResultStore(output_dir / RESULTS_NAME)

    # DELETE mode
    if args.delete:
        targets: List[str] = [str(Path(d).expanduser().resolve()) for d in args.delete]
        if not args.force and not _confirm(f"Delete {len(targets)} video(s)?"):
            print("Aborted.")
            return 1
        loaded = results.load(store)
        try:
            cache.open()
            deleted, pruned = delete_members(targets, store, cache, loaded.groups if loaded else [])
        except VdtierError as e:
            logger.error(f"Delete failed: {e}")
            print(f"video-tiers: error: {e}", file=sys.stderr)
            return 1
        if loaded:
            saved = results.save(pruned, scan_date=loaded.scan_date)
            if not saved.ok:
                logger.warning(f"Could not save pruned results: {saved.error}")
        print(f"Deleted {deleted} video(s); {len(pruned)} group(s) remain")
        if not args.directories:
            return 0

    # PRINT-only mode
    if args.print_results and not args.directories:
        loaded = results.load(store)
        if not loaded:
            print("No stored results.")
            return 0
        print(render_groups(loaded.groups, store, scan_date=loaded.scan_date,
                            favorites_only=args.favorites_only, verbosity=args.verbosity))
        return 0

    # TAG-YEARS mode
    if args.tag_years:
        try:
            assets = store.list()
            count = tag_years(assets, store, cache)
        except VdtierError as e:
            print(f"video-tiers: error: {e}", file=sys.stderr)
            return 1
        print(f"Tagged {count} of {len(assets)} video(s) with a year")
        return 0

    # SCAN mode
    visual = not args.no_visual
    config = DetectionConfig(
        exact_duration_tolerance=args.exact_tolerance,
        near_duration_tolerance=args.near_tolerance,
        visual_threshold=args.visual_threshold,
        cluster_mode=args.cluster_mode,
        gpu=args.gpu,
    )
    reporter = ProgressReporter(
        enable_dash=args.live,
        banner=_banner_text(visual=visual, gpu=args.gpu, roots=len(args.directories)),
    )
    detector = DuplicateDetector(
        store, cache,
        extractor=ImageHashExtractor(method=args.hash_method),
        config=config,
        reporter=reporter,
    )
    reporter.start()
    try:
        groups = detector.detect(include_visual_similarity=visual)
    except DetectionError as e:
        logger.error(f"Detection failed: {e}")
        print(f"video-tiers: error: {e}", file=sys.stderr)
        return 1
    finally:
        reporter.stop()

    saved = results.save(groups)
    if not saved.ok:
        logger.warning(f"Results not saved: {saved.error}")
        print(f"warning: results not saved: {saved.error}", file=sys.stderr)
    else:
        print(f"Wrote results to: {results.path}")

    counts = reporter.snapshot()["groups"]
    print(
        f"Groups: {len(groups)} "
        f"(exact {counts.get('exact', 0)}, near {counts.get('near', 0)}, visual {counts.get('visual', 0)})"
    )
    if args.print_results:
        print(render_groups(groups, store, favorites_only=args.favorites_only, verbosity=args.verbosity))

    logger.info("Scan completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
