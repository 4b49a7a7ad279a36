"""
Regression tracking package

- Checkpoint recorder (append-only ledger, accuracy history and per-run JSON snapshots)
- Progress analyzer (checkpoints, regressions, progressions, pass-rate and accuracy trends)
"""

from .checkpoint_recorder import (
    CheckpointRecorder,
    CheckpointRecord,
    LedgerWriteError,
    LEDGER_HEADER,
    ACCURACY_HEADER,
    list_snapshots,
    load_snapshot,
)
from .progress_analyzer import (
    read_ledger,
    read_accuracy_history,
    build_checkpoints,
    find_regressions,
    find_progressions,
    compute_trend,
    compute_accuracy_trend,
    analyze,
    analyze_ledger,
    format_progress_report,
)

__all__ = [
    'CheckpointRecorder',
    'CheckpointRecord',
    'LedgerWriteError',
    'LEDGER_HEADER',
    'ACCURACY_HEADER',
    'list_snapshots',
    'load_snapshot',
    'read_ledger',
    'read_accuracy_history',
    'build_checkpoints',
    'find_regressions',
    'find_progressions',
    'compute_trend',
    'compute_accuracy_trend',
    'analyze',
    'analyze_ledger',
    'format_progress_report',
]
