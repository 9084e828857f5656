from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import ROOT_ENV_VAR, load_config
from .errors import Era5PrecipError
from .logging_utils import setup_logging
from .processing import STAGES, run_all

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="era5-precip",
        description="ERA5 precipitation post-processing: monthly export, area summary, site reports and climatologies.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to plain-text configuration file (key=value per line).",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help=f"Main directory holding AOI/, Raw/, Input/ ... (overrides {ROOT_ENV_VAR}).",
    )
    parser.add_argument("--workers", type=int, default=None, help="Number of worker threads per stage.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "stage",
        choices=[*STAGES, "all"],
        help="Stage to run: export, summary, sites, aggregate, or all of them in order.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.root is not None:
            config.root = args.root
        if args.workers is not None:
            config.workers = args.workers
        setup_logging(config.log_level, config.log_file, verbose=args.verbose)

        if args.stage == "all":
            summaries = run_all(config)
        else:
            summaries = [STAGES[args.stage](config)]
    except Era5PrecipError as exc:
        logger.error("%s", exc)
        return 1

    summary_lines = []
    for summary in summaries:
        summary_lines.extend(summary.lines())
        summary_lines.append(f"  {len(summary.outputs)} file(s) written")
    print("\n".join(summary_lines))
    return 0


if __name__ == "__main__":
    sys.exit(main())
