"""
Checkpoint Recorder

Persists a finished batch run in up to three places:
- the ledger: one append-only CSV row per layer with PASS/FAIL/SKIP per
  criterion, cheap to scan across the whole history
- the accuracy history: one append-only CSV row per run comparing results
  with the baseline expectations (only when the baseline is supplied)
- a snapshot: one JSON document per run with every CriterionResult in full,
  for later deep inspection

Neither CSV is ever rewritten. A batch is appended with a single write; on
failure the file is truncated back to its previous size so no partial rows
survive, and LedgerWriteError is raised to the caller. A line left without
newline by an interrupted append is dropped before the next batch is written.
"""

import csv
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from io import StringIO
from typing import Any, Dict, List, Optional, Sequence

import config
from shared_schema import (
    BatchAccuracy, CriterionResult, Criteria, LayerConfig, LayerKind, LedgerStatus, QualityCheckResult,
    utc_timestamp
)
from validation.expectation_comparator import mismatches, summarize, summarize_batch

logger = logging.getLogger(__name__)

LEDGER_HEADER = (
    ["timestamp", "layer_id", "layer_title", "layer_kind"]
    + [Criteria.LEDGER_COLUMNS[criterion] for criterion in Criteria.ORDERED]
    + ["notes"]
)

ACCURACY_HEADER = [
    "timestamp", "run_type", "total_layers", "feature_services", "image_services",
    "true_positives", "true_negatives", "false_positives", "false_negatives", "test_accuracy",
    "passing_layers", "failing_layers", "failing_layer_names", "snapshot",
]


class LedgerWriteError(Exception):
    """Persisting a batch failed; nothing from the batch was kept in the ledger"""


@dataclass
class CheckpointRecord:
    """Where and how one batch was recorded"""
    run_timestamp: str
    run_type: str
    ledger_path: str
    snapshot_path: str
    rows_written: int
    accuracy_path: Optional[str] = None


def ledger_status(outcome: CriterionResult) -> str:
    if outcome.skipped:
        return LedgerStatus.SKIP
    return LedgerStatus.PASS if outcome.passed else LedgerStatus.FAIL


def snapshot_filename(run_timestamp: str) -> str:
    return f"checkpoint-{re.sub(r'[:.+]', '-', run_timestamp)}.json"


class CheckpointRecorder:
    """Single writer of the ledgers and snapshot store for one checkpoint directory"""

    def __init__(self, checkpoint_dir: Optional[str] = None, ledger_filename: Optional[str] = None,
                 expected_total: Optional[int] = None, accuracy_filename: Optional[str] = None):
        """
        Args:
            checkpoint_dir: Directory holding the ledgers and snapshots (config default if None)
            ledger_filename: Ledger CSV name inside checkpoint_dir (config default if None)
            expected_total: Layer count of a full run; batches of another size are PARTIAL
            accuracy_filename: Accuracy history CSV name inside checkpoint_dir (config default if None)
        """
        self.checkpoint_dir = checkpoint_dir or config.CHECKPOINT_DIR
        self.ledger_path = os.path.join(self.checkpoint_dir, ledger_filename or config.LEDGER_FILENAME)
        self.accuracy_path = os.path.join(
            self.checkpoint_dir, accuracy_filename or config.ACCURACY_LEDGER_FILENAME
        )
        self.snapshot_dir = os.path.join(self.checkpoint_dir, config.SNAPSHOT_SUBDIR)
        self.expected_total = expected_total

    def record(self, results: Sequence[QualityCheckResult], layers: Optional[Sequence[LayerConfig]] = None,
               run_timestamp: Optional[str] = None) -> CheckpointRecord:
        """
        Record a complete batch: snapshot first, then every ledger row at once,
        then the run's accuracy row.

        Args:
            results: All results of the batch, in the order they were produced
            layers: Baseline configs, used for accuracy metrics in the snapshot and the accuracy history
            run_timestamp: Shared timestamp of every row (now, if None)

        Raises:
            ValueError: The batch is empty or a result still has unexecuted criteria
            LedgerWriteError: The snapshot or a ledger could not be written
        """
        results = list(results)
        self._validate(results)

        run_timestamp = run_timestamp or utc_timestamp()
        run_type = "FULL" if self.expected_total is None or len(results) == self.expected_total else "PARTIAL"
        rows = [self._ledger_row(result, run_timestamp) for result in results]
        accuracy = summarize_batch(results, layers) if layers else None

        try:
            os.makedirs(self.snapshot_dir, exist_ok=True)
        except OSError as e:
            raise LedgerWriteError(f"Cannot create checkpoint directory {self.checkpoint_dir}: {e}") from e

        snapshot_path = self._write_snapshot(results, layers, accuracy, run_timestamp, run_type)
        ledger_start = self._append_rows(self.ledger_path, LEDGER_HEADER, rows)

        accuracy_path = None
        if accuracy is not None:
            accuracy_row = self._accuracy_row(accuracy, run_timestamp, run_type, len(results), snapshot_path)
            try:
                self._append_rows(self.accuracy_path, ACCURACY_HEADER, [accuracy_row])
            except LedgerWriteError:
                self._rollback(self.ledger_path, ledger_start)
                raise
            accuracy_path = self.accuracy_path

        logger.info(
            f"Recorded {run_type} checkpoint with {len(rows)} layers",
            extra={"run_timestamp": run_timestamp}
        )
        return CheckpointRecord(
            run_timestamp=run_timestamp,
            run_type=run_type,
            ledger_path=self.ledger_path,
            snapshot_path=snapshot_path,
            rows_written=len(rows),
            accuracy_path=accuracy_path,
        )

    def _validate(self, results: List[QualityCheckResult]) -> None:
        if not results:
            raise ValueError("Cannot record an empty batch")

        seen = set()
        for result in results:
            pending = result.pending_criteria()
            if pending:
                raise ValueError(f"Result for '{result.layer_id}' has unexecuted criteria: {pending}")
            if result.layer_id in seen:
                logger.warning(f"Layer '{result.layer_id}' appears more than once in the batch")
            seen.add(result.layer_id)

    def _ledger_row(self, result: QualityCheckResult, run_timestamp: str) -> List[str]:
        return (
            [run_timestamp, result.layer_id, result.layer_title, result.layer_kind]
            + [ledger_status(result.tests[criterion]) for criterion in Criteria.ORDERED]
            + [result.error or ""]
        )

    def _accuracy_row(self, accuracy: BatchAccuracy, run_timestamp: str, run_type: str,
                      total_layers: int, snapshot_path: str) -> List[Any]:
        kinds = accuracy.kind_counts
        return [
            run_timestamp,
            run_type,
            total_layers,
            kinds[LayerKind.FEATURE_SERVICE.value]["total"],
            kinds[LayerKind.IMAGE_SERVICE.value]["total"],
            accuracy.true_positives,
            accuracy.true_negatives,
            accuracy.false_positives,
            accuracy.false_negatives,
            f"{accuracy.accuracy * 100:.1f}",
            len(accuracy.passing_layers),
            len(accuracy.failing_layers),
            "; ".join(accuracy.failing_layers),
            os.path.basename(snapshot_path),
        ]

    def _write_snapshot(self, results: List[QualityCheckResult], layers: Optional[Sequence[LayerConfig]],
                        accuracy: Optional[BatchAccuracy], run_timestamp: str, run_type: str) -> str:
        layers_by_id = {layer.id: layer for layer in layers or []}

        entries = []
        for result in results:
            entry = result.to_dict()
            layer = layers_by_id.get(result.layer_id)
            if layer is not None:
                entry["accuracy"] = summarize(result, layer).to_dict()
                entry["mismatches"] = mismatches(result, layer)
            entries.append(entry)

        snapshot: Dict[str, Any] = {
            "timestamp": run_timestamp,
            "run_type": run_type,
            "total_layers": len(results),
            "ledger": os.path.basename(self.ledger_path),
            "results": entries,
        }
        if accuracy is not None:
            snapshot["accuracy"] = accuracy.to_dict()

        path = os.path.join(self.snapshot_dir, snapshot_filename(run_timestamp))
        try:
            with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=self.snapshot_dir,
                                             suffix=".tmp", delete=False) as tmp:
                json.dump(snapshot, tmp, indent=2)
                tmp_path = tmp.name
            os.replace(tmp_path, path)
        except OSError as e:
            raise LedgerWriteError(f"Failed to write snapshot {path}: {e}") from e

        return path

    def _append_rows(self, path: str, header: List[str], rows: List[List[Any]]) -> int:
        """Append rows in one write; returns the offset the file can be rolled back to"""
        start = os.path.getsize(path) if os.path.exists(path) else 0
        if start > 0:
            self._check_header(path, header)
            start = self._drop_torn_line(path, start)

        buffer = StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if start == 0:
            writer.writerow(header)
        writer.writerows(rows)

        try:
            with open(path, "ab") as f:
                f.write(buffer.getvalue().encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self._rollback(path, start)
            raise LedgerWriteError(f"Failed to append {len(rows)} rows to {path}: {e}") from e

        return start

    def _check_header(self, path: str, header: List[str]) -> None:
        with open(path, "r", encoding="utf-8", newline="") as f:
            found = next(csv.reader(f), [])
        if found != header:
            raise LedgerWriteError(f"Ledger {path} has an unexpected header: {found}")

    def _drop_torn_line(self, path: str, size: int) -> int:
        """Truncate a trailing line without newline; returns the new size"""
        with open(path, "rb") as f:
            content = f.read()
        if content.endswith(b"\n"):
            return size

        keep = content.rfind(b"\n") + 1
        logger.warning(f"Dropping {size - keep} bytes of an incomplete row at the end of {path}")
        try:
            os.truncate(path, keep)
        except OSError as e:
            raise LedgerWriteError(f"Cannot drop the incomplete row at the end of {path}: {e}") from e
        return keep

    def _rollback(self, path: str, size: int) -> None:
        try:
            os.truncate(path, size)
        except OSError as e:
            logger.error(f"Could not roll {path} back to {size} bytes: {e}")


def list_snapshots(checkpoint_dir: str) -> List[str]:
    """Snapshot filenames, oldest first"""
    snapshot_dir = os.path.join(checkpoint_dir, config.SNAPSHOT_SUBDIR)
    if not os.path.isdir(snapshot_dir):
        return []
    return sorted(name for name in os.listdir(snapshot_dir) if name.endswith(".json"))


def load_snapshot(checkpoint_dir: str, name: str) -> Dict[str, Any]:
    if os.path.basename(name) != name or not name.endswith(".json"):
        raise ValueError(f"Invalid snapshot name '{name}'")

    with open(os.path.join(checkpoint_dir, config.SNAPSHOT_SUBDIR, name), "r", encoding="utf-8") as f:
        return json.load(f)
