"""
Shared Data Schema for the Layer Quality Pipeline

This module defines the data structures passed between the pipeline stages:
expectation baseline (LayerConfig), per-criterion outcomes (CriterionResult),
per-layer runs (QualityCheckResult), accuracy metrics and the checkpoint
views rebuilt from the ledger. Every stage reads and writes these shapes so
results can be persisted, compared and served without translation.
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Criterion identifiers
class Criteria:
    """Standardized criterion identifiers, in evaluation order"""
    SHOWS_IN_CATEGORIES = "shows_in_categories"
    LAYERS_LOAD = "layers_load"
    DOWNLOAD_WORKS = "download_works"
    DESCRIPTION_MATCHES = "description_matches"
    TOOLTIPS_POPUP = "tooltips_popup"
    LEGEND_EXISTS = "legend_exists"
    LEGEND_LABELS_DESCRIPTIVE = "legend_labels_descriptive"
    LEGEND_FILTERS_WORK = "legend_filters_work"

    ORDERED = (
        SHOWS_IN_CATEGORIES,
        LAYERS_LOAD,
        DOWNLOAD_WORKS,
        DESCRIPTION_MATCHES,
        TOOLTIPS_POPUP,
        LEGEND_EXISTS,
        LEGEND_LABELS_DESCRIPTIVE,
        LEGEND_FILTERS_WORK,
    )

    # Ledger column per criterion; order and names are part of the ledger contract
    LEDGER_COLUMNS = {
        SHOWS_IN_CATEGORIES: "test_1_shows_in_categories",
        LAYERS_LOAD: "test_2_layers_load",
        DOWNLOAD_WORKS: "test_3_download_works",
        DESCRIPTION_MATCHES: "test_4_description_matches",
        TOOLTIPS_POPUP: "test_5_tooltips_popup",
        LEGEND_EXISTS: "test_6_legend_exists",
        LEGEND_LABELS_DESCRIPTIVE: "test_7_legend_labels_descriptive",
        LEGEND_FILTERS_WORK: "test_8_filters_work",
    }

    # Column headers of the manually curated baseline spreadsheet
    BASELINE_HEADERS = {
        SHOWS_IN_CATEGORIES: "Shows Up In All Categories",
        LAYERS_LOAD: "All Layers Load",
        DOWNLOAD_WORKS: "ArcGIS Download Link Works",
        DESCRIPTION_MATCHES: "Description Matches Website",
        TOOLTIPS_POPUP: "Tooltips Pop-Up",
        LEGEND_EXISTS: "Legend Exists",
        LEGEND_LABELS_DESCRIPTIVE: "Legend Labels Descriptive",
        LEGEND_FILTERS_WORK: "Legend Filters Work",
    }

    LABELS = {
        SHOWS_IN_CATEGORIES: "Shows In Categories",
        LAYERS_LOAD: "Layers Load",
        DOWNLOAD_WORKS: "Download Works",
        DESCRIPTION_MATCHES: "Description Matches",
        TOOLTIPS_POPUP: "Tooltips Pop Up",
        LEGEND_EXISTS: "Legend Exists",
        LEGEND_LABELS_DESCRIPTIVE: "Legend Labels Descriptive",
        LEGEND_FILTERS_WORK: "Legend Filters Work",
    }


class LayerKind(str, Enum):
    """Service types the catalog exposes as data layers"""
    FEATURE_SERVICE = "FeatureService"
    IMAGE_SERVICE = "ImageService"


class LedgerStatus:
    """Tri-state vocabulary of ledger criterion cells"""
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


class Classification(str, Enum):
    """Outcome of comparing an actual result with its expectation"""
    SKIP = "SKIP"
    TRUE_POSITIVE = "TP"
    TRUE_NEGATIVE = "TN"
    FALSE_POSITIVE = "FP"
    FALSE_NEGATIVE = "FN"


class TrendDirection(str, Enum):
    IMPROVEMENT = "improvement"
    DECLINE = "decline"
    NO_CHANGE = "no-change"


def utc_timestamp() -> str:
    """ISO8601 UTC timestamp with fixed millisecond precision (sorts lexicographically)"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class LayerConfig(BaseModel):
    """Identity and expectation baseline for one catalog layer"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable key, unique across all runs")
    title: str = Field(..., description="Display name (not unique)")
    layer_kind: LayerKind
    categories: List[str] = Field(default_factory=list)
    expected_results: Dict[str, Optional[bool]] = Field(
        default_factory=dict,
        description="Criterion key -> True (must pass), False (known issue) or None (untested)"
    )
    notes: str = ""
    url: str = ""

    @field_validator('categories')
    @classmethod
    def dedupe_categories(cls, v):
        """Keep first occurrence of each category, preserving order"""
        seen = []
        for category in v:
            category = category.strip()
            if category and category not in seen:
                seen.append(category)
        return seen

    @field_validator('expected_results')
    @classmethod
    def validate_criterion_keys(cls, v):
        """Reject expectations for criteria the pipeline does not know"""
        unknown = sorted(set(v) - set(Criteria.ORDERED))
        if unknown:
            raise ValueError(f"Unknown criterion keys in expected_results: {unknown}")
        return v

    def expected(self, criterion: str) -> Optional[bool]:
        """Expectation for a criterion; missing entries mean untested"""
        return self.expected_results.get(criterion)


@dataclass(frozen=True)
class CriterionResult:
    """Outcome of one criterion evaluated once during one run"""
    passed: bool
    message: str                                            # Human-readable justification
    details: Dict[str, Any] = field(default_factory=dict)   # Diagnostic payload, not interpreted

    @property
    def skipped(self) -> bool:
        return bool(self.details.get("skipped"))

    @classmethod
    def skip(cls, message: str, reason: str) -> "CriterionResult":
        """A skip is recorded as passing and never counts as a failure"""
        return cls(passed=True, message=message, details={"skipped": reason})

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "CriterionResult":
        return cls(passed=False, message=message, details={"error": error or message})

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed, "message": self.message, "details": self.details}


@dataclass
class QualityCheckResult:
    """One run of the criteria battery against one layer"""
    layer_id: str
    layer_title: str
    layer_kind: str
    tests: Dict[str, Optional[CriterionResult]]
    timestamp: str
    error: Optional[str] = None     # Fatal or timeout message, if the run was aborted
    duration_ms: int = 0

    @classmethod
    def pending(cls, layer: LayerConfig) -> "QualityCheckResult":
        """Fresh result where every criterion is not yet executed"""
        return cls(
            layer_id=layer.id,
            layer_title=layer.title,
            layer_kind=LayerKind(layer.layer_kind).value,
            tests={criterion: None for criterion in Criteria.ORDERED},
            timestamp=utc_timestamp(),
        )

    def pending_criteria(self) -> List[str]:
        return [criterion for criterion, outcome in self.tests.items() if outcome is None]

    def fail_pending(self, message: str, error: str) -> List[str]:
        """Convert every unexecuted criterion into a failure sharing one message"""
        converted = self.pending_criteria()
        for criterion in converted:
            self.tests[criterion] = CriterionResult.failure(message, error)
        self.error = message
        return converted

    @property
    def passed_count(self) -> int:
        return len([t for t in self.tests.values() if t is not None and t.passed])

    @property
    def executed_count(self) -> int:
        return len([t for t in self.tests.values() if t is not None])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "layer_id": self.layer_id,
            "layer_title": self.layer_title,
            "layer_kind": self.layer_kind,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "tests": {
                criterion: outcome.to_dict() if outcome else None
                for criterion, outcome in self.tests.items()
            }
        }


@dataclass
class AccuracyMetrics:
    """Confusion-matrix summary of one result against its baseline"""
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    skipped: int = 0        # Criteria classified SKIP (untested, disabled or not executed)
    classifications: Dict[str, Classification] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.true_positives + self.true_negatives + self.false_positives + self.false_negatives

    @property
    def accuracy(self) -> float:
        # No comparable criteria means no discovered inaccuracy
        if self.total == 0:
            return 1.0
        return (self.true_positives + self.true_negatives) / self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "true_positives": self.true_positives,
            "true_negatives": self.true_negatives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
            "total": self.total,
            "skipped": self.skipped,
            "accuracy": self.accuracy,
            "classifications": {k: v.value for k, v in self.classifications.items()},
        }


@dataclass
class BatchAccuracy:
    """Aggregate test-validation and quality statistics for a batch run"""
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    total_passing_tests: int = 0
    total_failing_tests: int = 0
    passing_layers: List[str] = field(default_factory=list)
    failing_layers: List[str] = field(default_factory=list)
    kind_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.true_positives + self.true_negatives + self.false_positives + self.false_negatives

    @property
    def accuracy(self) -> float:
        if self.total == 0:
            return 1.0
        return (self.true_positives + self.true_negatives) / self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "true_positives": self.true_positives,
            "true_negatives": self.true_negatives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
            "total": self.total,
            "accuracy": self.accuracy,
            "total_passing_tests": self.total_passing_tests,
            "total_failing_tests": self.total_failing_tests,
            "passing_layers": self.passing_layers,
            "failing_layers": self.failing_layers,
            "kind_counts": self.kind_counts,
        }


@dataclass
class LayerRunSummary:
    """One ledger row reduced to pass counts"""
    layer_id: str
    layer_title: str
    layer_kind: str
    passed_tests: int
    total_tests: int        # Non-skipped criteria

    @property
    def all_passed(self) -> bool:
        return self.total_tests > 0 and self.passed_tests == self.total_tests

    @property
    def bugs(self) -> int:
        return self.total_tests - self.passed_tests


@dataclass
class Checkpoint:
    """All layer results recorded under one run timestamp"""
    timestamp: str
    layers: Dict[str, LayerRunSummary] = field(default_factory=dict)

    @property
    def total_layers(self) -> int:
        return len(self.layers)

    @property
    def layers_passing_all(self) -> int:
        return len([s for s in self.layers.values() if s.all_passed])

    @property
    def total_bugs(self) -> int:
        return sum(s.bugs for s in self.layers.values())

    @property
    def pass_rate(self) -> float:
        """Percentage of layers passing all non-skipped criteria"""
        if self.total_layers == 0:
            return 0.0
        return self.layers_passing_all / self.total_layers * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total_layers": self.total_layers,
            "layers_passing_all": self.layers_passing_all,
            "total_bugs": self.total_bugs,
            "pass_rate": round(self.pass_rate, 1),
        }


@dataclass
class CheckpointDiff:
    """Layer-level changes between two consecutive checkpoints"""
    previous_timestamp: str
    current_timestamp: str
    regressions: List[str]      # Layer ids passing all before, failing now
    progressions: List[str]     # Layer ids failing before, passing all now
    layers_delta: int
    bugs_delta: int

    def to_dict(self) -> Dict[str, Any]:
        return self.__dict__.copy()


@dataclass
class TrendReport:
    """First-to-last checkpoint comparison"""
    initial_pass_rate: float
    current_pass_rate: float
    initial_bugs: int
    current_bugs: int

    @property
    def pass_rate_change(self) -> float:
        return self.current_pass_rate - self.initial_pass_rate

    @property
    def bug_change(self) -> int:
        return self.current_bugs - self.initial_bugs

    @property
    def direction(self) -> TrendDirection:
        if self.pass_rate_change > 0:
            return TrendDirection.IMPROVEMENT
        if self.pass_rate_change < 0:
            return TrendDirection.DECLINE
        return TrendDirection.NO_CHANGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_pass_rate": round(self.initial_pass_rate, 1),
            "current_pass_rate": round(self.current_pass_rate, 1),
            "pass_rate_change": round(self.pass_rate_change, 1),
            "initial_bugs": self.initial_bugs,
            "current_bugs": self.current_bugs,
            "bug_change": self.bug_change,
            "direction": self.direction.value,
        }


@dataclass
class AccuracyPoint:
    """One run's test-validation summary, as recorded in the accuracy history"""
    timestamp: str
    run_type: str
    total_layers: int
    true_positives: int
    true_negatives: int
    false_positives: int
    false_negatives: int
    accuracy: float             # Percentage of comparable criteria matching the baseline
    passing_layers: int
    failing_layers: int

    def to_dict(self) -> Dict[str, Any]:
        return self.__dict__.copy()


@dataclass
class AccuracyTrend:
    """First-to-last test accuracy comparison"""
    initial_accuracy: float
    current_accuracy: float

    @property
    def accuracy_change(self) -> float:
        return self.current_accuracy - self.initial_accuracy

    @property
    def direction(self) -> TrendDirection:
        if self.accuracy_change > 0:
            return TrendDirection.IMPROVEMENT
        if self.accuracy_change < 0:
            return TrendDirection.DECLINE
        return TrendDirection.NO_CHANGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_accuracy": round(self.initial_accuracy, 1),
            "current_accuracy": round(self.current_accuracy, 1),
            "accuracy_change": round(self.accuracy_change, 1),
            "direction": self.direction.value,
        }


@dataclass
class ProgressReport:
    """Checkpoints in timestamp order with their pairwise diffs"""
    checkpoints: List[Checkpoint]
    diffs: List[CheckpointDiff]
    trend: Optional[TrendReport] = None
    accuracy_history: List[AccuracyPoint] = field(default_factory=list)
    accuracy_trend: Optional[AccuracyTrend] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "diffs": [d.to_dict() for d in self.diffs],
            "trend": self.trend.to_dict() if self.trend else None,
            "accuracy_history": [point.to_dict() for point in self.accuracy_history],
            "accuracy_trend": self.accuracy_trend.to_dict() if self.accuracy_trend else None,
        }
