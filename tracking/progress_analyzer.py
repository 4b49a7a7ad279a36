"""
Progress Analyzer

Rebuilds checkpoints from the ledger and compares them over time:
- regressions: layers passing every criterion before, failing now
- progressions: layers failing before, passing every criterion now
- trend: first checkpoint against the latest one
- accuracy trend: test accuracy of the first FULL run against the latest one

Checkpoints are grouped by exact timestamp string, which is only sound
because the recorder stamps every row of a batch with one shared timestamp.
Layers absent from either side of a comparison are never reported.
"""

import csv
import logging
from io import StringIO
from typing import Dict, List, Optional, Sequence

from shared_schema import (
    AccuracyPoint, AccuracyTrend, Checkpoint, CheckpointDiff, Criteria, LayerRunSummary, LedgerStatus, ProgressReport,
    TrendReport
)

logger = logging.getLogger(__name__)


def _read_rows(path: str) -> List[Dict[str, str]]:
    with open(path, "r", encoding="utf-8", newline="") as f:
        content = f.read()

    if content and not content.endswith("\n"):
        content = content[:content.rfind("\n") + 1]

    rows = []
    skipped = 0
    for row in csv.DictReader(StringIO(content)):
        # Short rows get None values, long rows a None key
        if None in row or any(value is None for value in row.values()):
            skipped += 1
            continue
        rows.append(row)

    if skipped:
        logger.warning(f"Skipped {skipped} malformed ledger rows in {path}")
    return rows


def read_ledger(path: str) -> List[Dict[str, str]]:
    """
    Read every complete ledger row.

    The file is read once, so a concurrent append is either fully visible
    or not at all; a trailing line without newline is an append in progress
    and is dropped.

    Raises:
        FileNotFoundError: No ledger exists at path
    """
    return _read_rows(path)


def read_accuracy_history(path: str) -> List[AccuracyPoint]:
    """Accuracy rows in file order; a missing file is an empty history"""
    try:
        rows = _read_rows(path)
    except FileNotFoundError:
        return []

    points = []
    for row in rows:
        try:
            points.append(AccuracyPoint(
                timestamp=row["timestamp"],
                run_type=row["run_type"],
                total_layers=int(row["total_layers"]),
                true_positives=int(row["true_positives"]),
                true_negatives=int(row["true_negatives"]),
                false_positives=int(row["false_positives"]),
                false_negatives=int(row["false_negatives"]),
                accuracy=float(row["test_accuracy"].rstrip("%")),
                passing_layers=int(row["passing_layers"]),
                failing_layers=int(row["failing_layers"]),
            ))
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipped unreadable accuracy row in {path}: {e}")
    return points


def summarize_row(row: Dict[str, str]) -> LayerRunSummary:
    statuses = [row.get(Criteria.LEDGER_COLUMNS[criterion], LedgerStatus.SKIP) for criterion in Criteria.ORDERED]
    executed = [status for status in statuses if status != LedgerStatus.SKIP]

    return LayerRunSummary(
        layer_id=row["layer_id"],
        layer_title=row.get("layer_title", ""),
        layer_kind=row.get("layer_kind", ""),
        passed_tests=len([status for status in executed if status == LedgerStatus.PASS]),
        total_tests=len(executed),
    )


def build_checkpoints(rows: Sequence[Dict[str, str]]) -> List[Checkpoint]:
    """Group rows into checkpoints, oldest first; a repeated layer keeps its last row"""
    checkpoints: Dict[str, Checkpoint] = {}

    for row in rows:
        timestamp = row["timestamp"]
        checkpoint = checkpoints.setdefault(timestamp, Checkpoint(timestamp=timestamp))
        summary = summarize_row(row)
        checkpoint.layers[summary.layer_id] = summary

    return [checkpoints[timestamp] for timestamp in sorted(checkpoints)]


def find_regressions(previous: Checkpoint, current: Checkpoint) -> List[str]:
    return [
        layer_id for layer_id, before in previous.layers.items()
        if before.all_passed and layer_id in current.layers and not current.layers[layer_id].all_passed
    ]


def find_progressions(previous: Checkpoint, current: Checkpoint) -> List[str]:
    return [
        layer_id for layer_id, now in current.layers.items()
        if now.all_passed and layer_id in previous.layers and not previous.layers[layer_id].all_passed
    ]


def diff_checkpoints(previous: Checkpoint, current: Checkpoint) -> CheckpointDiff:
    return CheckpointDiff(
        previous_timestamp=previous.timestamp,
        current_timestamp=current.timestamp,
        regressions=find_regressions(previous, current),
        progressions=find_progressions(previous, current),
        layers_delta=current.layers_passing_all - previous.layers_passing_all,
        bugs_delta=current.total_bugs - previous.total_bugs,
    )


def compute_trend(first: Checkpoint, last: Checkpoint) -> TrendReport:
    return TrendReport(
        initial_pass_rate=first.pass_rate,
        current_pass_rate=last.pass_rate,
        initial_bugs=first.total_bugs,
        current_bugs=last.total_bugs,
    )


def compute_accuracy_trend(history: Sequence[AccuracyPoint]) -> Optional[AccuracyTrend]:
    """Only FULL runs are compared; partial runs cover a different layer set"""
    full_runs = [point for point in history if point.run_type == "FULL"]
    if len(full_runs) < 2:
        return None
    return AccuracyTrend(initial_accuracy=full_runs[0].accuracy, current_accuracy=full_runs[-1].accuracy)


def analyze(rows: Sequence[Dict[str, str]], accuracy_history: Sequence[AccuracyPoint] = ()) -> ProgressReport:
    """Checkpoints, consecutive diffs and overall trends (None below two checkpoints)"""
    checkpoints = build_checkpoints(rows)
    diffs = [
        diff_checkpoints(previous, current)
        for previous, current in zip(checkpoints, checkpoints[1:])
    ]
    trend = compute_trend(checkpoints[0], checkpoints[-1]) if len(checkpoints) >= 2 else None
    return ProgressReport(
        checkpoints=checkpoints,
        diffs=diffs,
        trend=trend,
        accuracy_history=list(accuracy_history),
        accuracy_trend=compute_accuracy_trend(accuracy_history),
    )


def analyze_ledger(path: str, accuracy_path: Optional[str] = None) -> ProgressReport:
    history = read_accuracy_history(accuracy_path) if accuracy_path else []
    report = analyze(read_ledger(path), history)
    logger.info(f"Analyzed {len(report.checkpoints)} checkpoints and {len(history)} accuracy rows from {path}")
    return report


def format_progress_report(report: ProgressReport) -> str:
    """Plain-text report for terminals"""
    lines = ["=" * 60, "Progress Report", "=" * 60]

    if not report.checkpoints:
        lines.append("No checkpoints recorded yet.")
        return "\n".join(lines)

    lines.append(f"\nCheckpoints: {len(report.checkpoints)}")
    for checkpoint in report.checkpoints:
        lines.append(
            f"  {checkpoint.timestamp}: {checkpoint.layers_passing_all}/{checkpoint.total_layers} layers passing "
            f"({checkpoint.pass_rate:.1f}%), {checkpoint.total_bugs} bugs"
        )

    for diff in report.diffs:
        lines.append(f"\n{diff.previous_timestamp} -> {diff.current_timestamp}")
        lines.append(f"  Layers passing: {diff.layers_delta:+d}, bugs: {diff.bugs_delta:+d}")
        if diff.regressions:
            lines.append(f"  Regressions ({len(diff.regressions)}): {', '.join(diff.regressions)}")
        if diff.progressions:
            lines.append(f"  Progressions ({len(diff.progressions)}): {', '.join(diff.progressions)}")

    if report.trend:
        trend = report.trend
        lines.append("\nOverall trend:")
        lines.append(
            f"  Pass rate: {trend.initial_pass_rate:.1f}% -> {trend.current_pass_rate:.1f}% "
            f"({trend.pass_rate_change:+.1f} points)"
        )
        lines.append(f"  Bugs: {trend.initial_bugs} -> {trend.current_bugs} ({trend.bug_change:+d})")
        lines.append(f"  Direction: {trend.direction.value}")

    if report.accuracy_history:
        lines.append(f"\nTest accuracy history: {len(report.accuracy_history)} runs")
        for point in report.accuracy_history:
            lines.append(
                f"  {point.timestamp} ({point.run_type}): {point.accuracy:.1f}% "
                f"(TP {point.true_positives}, TN {point.true_negatives}, "
                f"FP {point.false_positives}, FN {point.false_negatives})"
            )

    if report.accuracy_trend:
        accuracy_trend = report.accuracy_trend
        lines.append(
            f"  Accuracy: {accuracy_trend.initial_accuracy:.1f}% -> {accuracy_trend.current_accuracy:.1f}% "
            f"({accuracy_trend.accuracy_change:+.1f} points, {accuracy_trend.direction.value})"
        )

    return "\n".join(lines)
