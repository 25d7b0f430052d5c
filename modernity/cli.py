"""CLI entrypoint for modernity measurements."""

from __future__ import annotations

import argparse
from pathlib import Path

from .config import CONFIG_FILENAME, load_config
from .errors import FatalError
from .logging import configure_logging
from .pipeline import Pipeline
from .selection import TimeRange, parse_time_range


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def _time_range(value: str) -> TimeRange:
    try:
        return parse_time_range(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modernity",
        description="Measure idiom adoption across the published versions of a Rust crate.",
    )
    parser.add_argument("crate", help="Name of the crate on the registry.")
    parser.add_argument(
        "-n",
        "--count",
        type=_positive_int,
        default=None,
        help="Number of versions to sample (defaults to the configured sample size, 20).",
    )
    parser.add_argument(
        "--range",
        dest="time_range",
        type=_time_range,
        default=None,
        metavar="START..END",
        help="Only consider releases published in this inclusive range (ISO dates; either side optional).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("."),
        help=f"Path to {CONFIG_FILENAME} or the directory containing it (defaults to the current directory).",
    )
    parser.add_argument(
        "--expansions-dir",
        type=Path,
        default=None,
        help="Directory holding expanded-std.rs, expanded-core.rs and expanded-alloc.rs.",
    )
    parser.add_argument(
        "--results-dir",
        type=Path,
        default=None,
        help="Directory the crate's CSV table is written to.",
    )
    parser.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help="Number of versions analyzed in parallel.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity for troubleshooting.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write a timestamped log to this file.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for modernity."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    try:
        config = load_config(args.config)
        if args.expansions_dir is not None:
            config.expansions_dir = args.expansions_dir.expanduser().resolve()
        if args.results_dir is not None:
            config.results_dir = args.results_dir.expanduser().resolve()
        if args.workers is not None:
            config.workers = args.workers
        outcome = Pipeline(config).run(args.crate, count=args.count, time_range=args.time_range)
    except FatalError as exc:
        parser.exit(exc.exit_code, f"modernity: {exc}\n")
    except KeyboardInterrupt:
        parser.exit(130, "modernity: interrupted; no table was written\n")

    print(f"Wrote {len(outcome.report.rows)} of {outcome.selected} versions to {outcome.table}")


if __name__ == "__main__":
    main()
