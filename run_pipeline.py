#!/usr/bin/env python3
import argparse
import logging
import os
import sys
from concurrent.futures import ProcessPoolExecutor
from functools import partial
from pathlib import Path

from fastgeod import MODES, process_subject
from fastgeod_errors import GeodesicError
from fastgeod_settings import SPLINE_KINDS, GeodesicSettings, configure_logging


def run_subject(subject, args):
    """
    Pipeline for one subject:
    1. Load lh/rh surfaces and cortex labels
    2. Compute the requested geodesic measure over all cortical vertices
    3. Write curv/CSV outputs (existing outputs are kept unless --overwrite)

    Returns (subject, ok) so the parent can report failures.
    """
    logging.info(f"STARTING: {subject}")
    settings = GeodesicSettings(
        log_level=args.log_level,
        spline=args.spline,
        workers=args.threads,
        backend='thread',
        progress=False,
    )
    try:
        process_subject(
            args.subjects_dir, subject,
            output_dir=args.output_dir,
            hemispheres=args.hemispheres,
            surf_type=args.surf_type,
            custom_label=args.custom_label,
            mode=args.mode,
            scale=args.scale,
            compute_mean_distance=args.compute_mean_distance,
            max_distance=args.max_distance,
            k=args.k,
            include_self=args.include_self,
            descriptor=args.descriptor,
            neigh_write_size=args.neigh_write_size,
            allow_nan=args.allow_nan,
            source=args.source,
            target=args.target,
            overwrite=args.overwrite,
            settings=settings,
        )
    except (GeodesicError, OSError) as e:
        logging.error(f"FAILED: {subject}: {e}")
        return subject, False
    logging.info(f"FINISHED: {subject}")
    return subject, True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Parallel geodesic circle pipeline over a subject list")
    parser.add_argument("subject_list", help="Path to text file containing subject IDs (one per line)")

    # Core Paths
    parser.add_argument("--subjects-dir", default=os.environ.get("SUBJECTS_DIR"),
                        help="Path to FreeSurfer SUBJECTS_DIR")
    parser.add_argument("--output-dir", default=None,
                        help="Output directory (default: each subject's surf/ directory)")

    # Pipeline Parameters
    parser.add_argument("--mode", choices=MODES, default="circles", help="Measure to compute")
    parser.add_argument("--hemispheres", nargs="+", default=["lh", "rh"], help="Hemispheres to process")
    parser.add_argument("--surf-type", default="pial", help="Surface name")
    parser.add_argument("--custom-label", default=None, help="Cortex label name (default: cortex)")
    parser.add_argument("--scale", type=float, default=5.0, help="Circle area in percent of cortical area")
    parser.add_argument("--no-compute-mean-dist", dest="compute_mean_distance", action="store_false",
                        default=True, help="Skip the mean geodesic distance in circles mode")
    parser.add_argument("--max-dist", dest="max_distance", type=float, default=5.0,
                        help="Neighborhood radius for neighbors mode")
    parser.add_argument("--k", type=int, default=None, help="k-hop edge rings instead of a radius in neighbors mode")
    parser.add_argument("--no-include-self", dest="include_self", action="store_false", default=True,
                        help="Leave the source vertex out of its own neighborhood")
    parser.add_argument("--descriptor", default=None, help="Morph data name passed through in neighborhood rows")
    parser.add_argument("--neigh-write-size", type=int, default=0, help="Neighbor slots per wide CSV row")
    parser.add_argument("--allow-nan", action="store_true", help="Pad short neighborhoods with NaN")
    parser.add_argument("--source", type=int, default=None, help="Path start vertex for path mode")
    parser.add_argument("--target", type=int, default=None, help="Path end vertex for path mode")
    parser.add_argument("--spline", choices=SPLINE_KINDS, default="pchip", help="Spline used for the radius fit")

    # Execution Parameters
    parser.add_argument("-j", "--jobs", type=int, default=4, help="Number of subjects processed in parallel")
    parser.add_argument("--threads", type=int, default=1, help="Worker threads per subject")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite existing outputs")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    # Validation Checks
    if not args.subjects_dir:
        logging.error("SUBJECTS_DIR is not set in the environment and was not provided via --subjects-dir.")
        return 1

    if not Path(args.subject_list).exists():
        logging.error(f"Subject list '{args.subject_list}' not found.")
        return 1

    with open(args.subject_list, "r") as f:
        subjects = [line.strip() for line in f if line.strip()]

    logging.info(f"Processing {len(subjects)} subjects ({args.mode}) using {args.jobs} workers.")

    with ProcessPoolExecutor(max_workers=args.jobs, initializer=configure_logging,
                             initargs=(args.log_level,)) as executor:
        worker_func = partial(run_subject, args=args)
        results = list(executor.map(worker_func, subjects))

    failed = [s for s, ok in results if not ok]
    if failed:
        logging.error(f"{len(failed)} subjects failed: {' '.join(failed)}")
        return 1
    logging.info("Pipeline complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
