#!/usr/bin/env python3
"""
Layer quality checks command-line entry point.

Commands:
    parse-baseline      Convert the verification spreadsheet (CSV path or URL) to baseline JSON
    validate-baseline   Check baseline ids and categories against the catalog vocabulary
    run                 Run the criteria battery on every categorized layer and record a checkpoint
    progress            Print regressions, progressions and trend from the ledger
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional, Sequence

import config
from pipeline import LayerQualityPipeline, QualityCheckOrchestrator
from services import ArcGISServiceAdapter, categorized_layers, load_baseline_csv, load_baseline_json, save_baseline_json
from services.expectation_source import baseline_summary
from shared_schema import Criteria, LayerConfig
from structured_logging import configure_logging
from tracking import CheckpointRecorder, LedgerWriteError, analyze_ledger, format_progress_report
from validation import TIMEOUT_PROFILES, TimeoutEstimator, validate_baseline_categories, validate_unique_ids


def parse_baseline(args: argparse.Namespace) -> int:
    try:
        layers = load_baseline_csv(args.source, timeout=config.HTTP_TIMEOUT_SECONDS)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not read baseline from {args.source}: {e}")
        return 1

    save_baseline_json(layers, args.output, source=args.source)

    summary = baseline_summary(layers)
    print(f"Baseline written to {args.output}")
    for key, value in summary.items():
        print(f"  {key.replace('_', ' ').title()}: {value}")
    return 0


def validate_baseline(args: argparse.Namespace) -> int:
    try:
        layers = load_baseline_json(args.baseline)
    except FileNotFoundError:
        print(f"ERROR: Baseline not found: {args.baseline}")
        return 1

    categories = validate_baseline_categories(layers, config.CATALOG_CATEGORIES)
    ids = validate_unique_ids(layers)

    print(f"Validated {categories['total_layers']} layers")
    print(f"  Categories used: {', '.join(categories['categories_used']) or 'none'}")
    for category, offenders in categories['invalid_categories'].items():
        print(f"  Invalid category '{category}': {', '.join(offenders)}")
    for error in ids['errors']:
        print(f"  {error}")

    valid = categories['valid'] and ids['valid']
    print("Baseline is valid" if valid else "Baseline has errors")
    return 0 if valid else 1


def select_layers(layers: Sequence[LayerConfig], layer_ids: Optional[List[str]]) -> List[LayerConfig]:
    selected = categorized_layers(layers)
    if layer_ids:
        wanted = set(layer_ids)
        selected = [layer for layer in selected if layer.id in wanted]
    return selected


def print_run_summary(output: dict) -> None:
    accuracy = output['accuracy']

    print("\n" + "=" * 60)
    print("Checkpoint Summary")
    print("=" * 60)
    print(f"Run: {output['run_timestamp']}")
    if output['record']:
        print(f"Type: {output['record'].run_type}")
        print(f"Snapshot: {output['record'].snapshot_path}")
        if output['record'].accuracy_path:
            print(f"Accuracy history: {output['record'].accuracy_path}")

    print(f"\nTest accuracy: {accuracy.accuracy * 100:.1f}% ({accuracy.total} comparable criteria)")
    print(f"  True positives:  {accuracy.true_positives}")
    print(f"  True negatives:  {accuracy.true_negatives}")
    print(f"  False positives: {accuracy.false_positives}")
    print(f"  False negatives: {accuracy.false_negatives}")
    print(f"\nCriteria passing: {accuracy.total_passing_tests}, failing: {accuracy.total_failing_tests}")

    for kind, counts in accuracy.kind_counts.items():
        if counts['total']:
            print(f"  {kind}: {counts['passing']}/{counts['total']} layers match the baseline")

    if accuracy.failing_layers:
        print(f"\nLayers disagreeing with the baseline ({len(accuracy.failing_layers)}):")
        for result in output['results']:
            for message in output['mismatches'].get(result.layer_id, []):
                print(f"  {result.layer_title}: {message}")

    aborted = [result for result in output['results'] if result.error]
    if aborted:
        print(f"\nAborted runs ({len(aborted)}):")
        for result in aborted:
            print(f"  {result.layer_title}: {result.error}")


def run_checks(args: argparse.Namespace) -> int:
    try:
        baseline = load_baseline_json(args.baseline)
    except FileNotFoundError:
        print(f"ERROR: Baseline not found: {args.baseline}")
        print("Run `run_quality_checks.py parse-baseline --source <csv>` first")
        return 1

    layers = select_layers(baseline, args.layer)
    if not layers:
        print("ERROR: No categorized layers selected")
        return 1

    estimator = TimeoutEstimator.from_profile(args.profile, ceiling_ms=config.TIMEOUT_CEILING_MS)
    enabled = [c for c in Criteria.ORDERED if c not in config.DISABLED_CRITERIA]
    if args.include_disabled:
        enabled = list(Criteria.ORDERED)

    pipeline = LayerQualityPipeline(
        adapter_factory=ArcGISServiceAdapter,
        recorder=CheckpointRecorder(args.checkpoint_dir, expected_total=len(categorized_layers(baseline))),
        orchestrator=QualityCheckOrchestrator(enabled_criteria=enabled, timeout_estimator=estimator),
        max_parallel=args.max_parallel,
    )

    print(f"Checking {len(layers)} layers (timeout profile: {args.profile})")
    try:
        output = asyncio.run(pipeline.run(layers, record=not args.no_record))
    except LedgerWriteError as e:
        print(f"ERROR: Results could not be recorded: {e}")
        return 1

    print_run_summary(output)

    has_mismatches = any(output['mismatches'].values())
    return 1 if args.strict and has_mismatches else 0


def show_progress(args: argparse.Namespace) -> int:
    recorder = CheckpointRecorder(args.checkpoint_dir)
    try:
        report = analyze_ledger(recorder.ledger_path, recorder.accuracy_path)
    except FileNotFoundError:
        print(f"ERROR: No ledger at {recorder.ledger_path}")
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_progress_report(report))
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="run_quality_checks",
        description="Verify catalog layers against the expectation baseline and track progress over time",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    parse = sub.add_parser("parse-baseline", help="Convert the verification spreadsheet to baseline JSON")
    parse.add_argument("--source", required=True, help="CSV path or http(s) URL of the spreadsheet export")
    parse.add_argument("--output", default=config.BASELINE_PATH, help=f"Output JSON (default: {config.BASELINE_PATH})")
    parse.set_defaults(handler=parse_baseline)

    validate = sub.add_parser("validate-baseline", help="Check baseline ids and categories")
    validate.add_argument("--baseline", default=config.BASELINE_PATH, help="Baseline JSON path")
    validate.set_defaults(handler=validate_baseline)

    run = sub.add_parser("run", help="Run all criteria and record a checkpoint")
    run.add_argument("--baseline", default=config.BASELINE_PATH, help="Baseline JSON path")
    run.add_argument("--layer", action="append", help="Only check this layer id (repeatable)")
    run.add_argument("--profile", default=config.TIMEOUT_PROFILE, choices=sorted(TIMEOUT_PROFILES),
                     help=f"Timeout profile (default: {config.TIMEOUT_PROFILE})")
    run.add_argument("--max-parallel", type=int, default=config.MAX_PARALLEL_LAYERS,
                     help=f"Parallel layer sessions (default: {config.MAX_PARALLEL_LAYERS})")
    run.add_argument("--checkpoint-dir", default=config.CHECKPOINT_DIR, help="Ledger and snapshot directory")
    run.add_argument("--include-disabled", action="store_true", help="Also evaluate criteria disabled by policy")
    run.add_argument("--no-record", action="store_true", help="Do not write the ledger or a snapshot")
    run.add_argument("--strict", action="store_true", help="Exit 1 when any result disagrees with the baseline")
    run.set_defaults(handler=run_checks)

    progress = sub.add_parser("progress", help="Report regressions, progressions and trend")
    progress.add_argument("--checkpoint-dir", default=config.CHECKPOINT_DIR, help="Ledger and snapshot directory")
    progress.add_argument("--json", action="store_true", help="Print the report as JSON")
    progress.set_defaults(handler=show_progress)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging("layer-quality", config.LOG_LEVEL)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
