#!/usr/bin/env python
"""
Export the derived conformance views as JSON.

Usage:
    python scripts/export_conformance_views.py --input runtime/payloads --output runtime/views.json
    python scripts/export_conformance_views.py --input runtime/payloads --output runtime/views.json \\
        --threshold 0.4 --select "3, 7, 12" --desired "Payment Handled" --mode end

The input directory holds saved backend responses (fitness.json, trace-sequences.json, ...).
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from conformance_viz.analysis import ConformanceSession  # noqa: E402  pylint: disable=wrong-import-position
from conformance_viz.config import load_config  # noqa: E402  pylint: disable=wrong-import-position
from conformance_viz.logging_config import configure_logging  # noqa: E402  pylint: disable=wrong-import-position
from conformance_viz.selection import FilterState  # noqa: E402  pylint: disable=wrong-import-position
from conformance_viz.trace_store import (  # noqa: E402  pylint: disable=wrong-import-position
    PayloadFormatError,
    sequences_from_event_log,
)


def export_views(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    logger = configure_logging(config.log_file).getChild("export")

    trace_sequences = None
    if args.event_log is not None:
        suffix = args.event_log.suffix.lower()
        if suffix not in (".csv", ".xes"):
            raise ValueError(f"Unsupported input format: {suffix}. Use .csv or .xes")
        try:
            trace_sequences = sequences_from_event_log(args.event_log.read_bytes(), kind=suffix)
        except PayloadFormatError as exc:
            raise SystemExit(f"Failed to load event log: {exc}") from exc

    try:
        session = ConformanceSession.from_directory(
            args.input,
            trace_sequences=trace_sequences,
            desired_outcomes=args.desired,
            matching_mode=args.mode,
            config=config,
        )
    except PayloadFormatError as exc:
        raise SystemExit(f"Failed to load payloads: {exc}") from exc

    state = session.select(FilterState(threshold=args.threshold), args.select or "")
    payload = session.export_views(state)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Exported %s view for %s traces to %s", payload["mode"], len(session.store), args.output)
    print(f"Wrote conformance views to {args.output}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export bucketed conformance views as JSON.")
    parser.add_argument("--input", required=True, type=pathlib.Path, help="Directory with the backend payload files.")
    parser.add_argument("--output", required=True, type=pathlib.Path, help="Destination JSON file.")
    parser.add_argument("--threshold", type=float, default=0.0, help="Conformance threshold (default: %(default)s).")
    parser.add_argument("--select", type=str, default=None, help="Comma separated 1-based trace numbers.")
    parser.add_argument(
        "--desired",
        action="append",
        default=None,
        help="Desired outcome activity; repeat for several. Classifies traces locally.",
    )
    parser.add_argument("--mode", choices=("end", "contains"), default=None, help="Outcome matching mode.")
    parser.add_argument(
        "--event-log",
        type=pathlib.Path,
        default=None,
        help="Optional .csv or .xes log used to derive activity sequences.",
    )
    parser.add_argument("--config", type=pathlib.Path, default=None, help="Optional JSON config overrides.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    export_views(parse_args(argv))


if __name__ == "__main__":
    main()
