import argparse
import logging
import os
import webbrowser
from pathlib import Path

from bundlemap.config import DEFAULT_REPORT_FILENAMES, LOG_LEVELS, REPORT_MODES, SOURCE_READ_WORKERS
from bundlemap.errors import ParseError
from bundlemap.services.analysis import analyze_stats_file
from bundlemap.services.report import write_json_report, write_static_report


def _open_report(path: Path) -> None:
    try:
        webbrowser.open(path.resolve().as_uri())
    except Exception:
        # Don't crash the CLI if opening the browser fails (e.g. headless env)
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bundlemap",
        description=(
            "Build a treemap-ready size report from a webpack stats file. "
            "Parsed and gzip sizes are measured from the emitted bundles."
        ),
    )
    parser.add_argument("stats", help="Path to the stats JSON file.")
    parser.add_argument(
        "bundle_dir",
        nargs="?",
        default=None,
        help="Directory with the emitted bundles (default: the stats file's directory).",
    )
    parser.add_argument(
        "-m",
        "--mode",
        choices=REPORT_MODES,
        default="static",
        help="Report format: an HTML page or plain JSON chart data (default: static).",
    )
    parser.add_argument(
        "-r",
        "--report",
        default=None,
        help="Report file to write (default: report.html / report.json next to the stats file).",
    )
    parser.add_argument("-t", "--title", default=None, help="Title of the HTML report.")
    parser.add_argument(
        "-O",
        "--no-open",
        action="store_true",
        help="Don't open the HTML report in the default browser.",
    )
    parser.add_argument(
        "-e",
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Leave out emitted files matching this gitignore-style pattern (repeatable).",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=SOURCE_READ_WORKERS,
        help=f"Threads used to read module sources (default: {SOURCE_READ_WORKERS}).",
    )
    parser.add_argument(
        "-l",
        "--log-level",
        choices=list(LOG_LEVELS),
        default="info",
        help="Log level (default: info).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """
    Entry point for the CLI.

    - Reads the stats file and the bundles next to it (or in ``bundle_dir``).
    - Writes the static HTML or JSON report.
    - Opens the HTML report in the browser unless ``--no-open`` is given.
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=LOG_LEVELS[args.log_level], format="%(levelname)s: %(message)s")

    stats_path = Path(os.path.abspath(args.stats))
    if not stats_path.exists():
        raise SystemExit(f"Stats file does not exist: {stats_path}")

    bundle_dir = Path(args.bundle_dir) if args.bundle_dir else stats_path.parent
    if not bundle_dir.is_dir():
        raise SystemExit(f"Bundle directory does not exist: {bundle_dir}")

    print(f"📂 Analyzing stats at: {stats_path}")
    try:
        report = analyze_stats_file(
            stats_path,
            bundle_dir=bundle_dir,
            exclude=args.exclude,
            max_workers=args.workers,
        )
    except ParseError as e:
        raise SystemExit(f"Couldn't parse stats: {e}")

    for skipped in report.skipped:
        print(f"⚠️ Skipped {skipped.entry}: {skipped.message}")

    report_path = Path(args.report) if args.report else stats_path.parent / DEFAULT_REPORT_FILENAMES[args.mode]

    if args.mode == "json":
        written = write_json_report(report.chart_data, report_path)
        print(f"✅ Saved JSON report to {written}")
        return

    written = write_static_report(report.chart_data, report_path, title=args.title)
    print(f"✅ Saved static report to {written}")
    if not args.no_open:
        _open_report(written)


if __name__ == "__main__":
    main()
