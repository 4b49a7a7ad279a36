"""
Expectation Comparator

Classifies criterion outcomes against the tri-state expectation baseline and
aggregates them into confusion-matrix accuracy metrics.

- Expected pass, actual pass -> true positive
- Expected fail, actual fail -> true negative
- Expected fail, actual pass -> false positive (check is too lenient)
- Expected pass, actual fail -> false negative (app bug or over-strict check)
- No expectation             -> skipped, never counted

False positives and negatives are data, not errors: they flag that either
the baseline or the criterion implementation needs revision.
"""

from typing import Dict, List, Optional, Sequence

from shared_schema import (
    AccuracyMetrics, BatchAccuracy, Classification, CriterionResult,
    Criteria, LayerConfig, LayerKind, QualityCheckResult
)


def classify(actual: Optional[CriterionResult], expected: Optional[bool]) -> Classification:
    """Place one outcome in the confusion matrix"""
    if expected is None or actual is None:
        return Classification.SKIP

    if expected:
        return Classification.TRUE_POSITIVE if actual.passed else Classification.FALSE_NEGATIVE
    return Classification.FALSE_POSITIVE if actual.passed else Classification.TRUE_NEGATIVE


def matches(actual: Optional[CriterionResult], expected: Optional[bool]) -> bool:
    """True when the outcome agrees with the expectation or either side has no opinion"""
    if expected is None or actual is None:
        return True
    return actual.passed == expected


def summarize(result: QualityCheckResult, layer: LayerConfig) -> AccuracyMetrics:
    """
    Accumulate the confusion matrix for one layer run.

    Criteria without an expectation, or whose outcome is missing or
    skip-marked, are classified SKIP and excluded from the total.
    """
    metrics = AccuracyMetrics()

    for criterion in Criteria.ORDERED:
        expected = layer.expected(criterion)
        actual = result.tests.get(criterion)
        if actual is not None and actual.skipped:
            actual = None

        classification = classify(actual, expected)
        metrics.classifications[criterion] = classification

        if classification == Classification.TRUE_POSITIVE:
            metrics.true_positives += 1
        elif classification == Classification.TRUE_NEGATIVE:
            metrics.true_negatives += 1
        elif classification == Classification.FALSE_POSITIVE:
            metrics.false_positives += 1
        elif classification == Classification.FALSE_NEGATIVE:
            metrics.false_negatives += 1
        else:
            metrics.skipped += 1

    return metrics


def mismatches(result: QualityCheckResult, layer: LayerConfig) -> List[str]:
    """Soft-assertion messages for every comparable criterion that disagrees with the baseline"""
    messages = []

    for criterion in Criteria.ORDERED:
        expected = layer.expected(criterion)
        actual = result.tests.get(criterion)
        if expected is None or actual is None or actual.skipped:
            continue

        if not matches(actual, expected):
            messages.append(
                f"{Criteria.LABELS[criterion]}: Expected {'PASS' if expected else 'FAIL'}, "
                f"got {'PASS' if actual.passed else 'FAIL'} - {actual.message}"
            )

    return messages


def summarize_batch(results: Sequence[QualityCheckResult], layers: Sequence[LayerConfig]) -> BatchAccuracy:
    """
    Aggregate accuracy and actual quality across a batch.

    A layer counts as failing when any comparable criterion disagrees with
    its expectation. Results without a matching layer config are ignored.
    """
    layers_by_id: Dict[str, LayerConfig] = {layer.id: layer for layer in layers}
    batch = BatchAccuracy(kind_counts={
        kind.value: {"total": 0, "passing": 0, "failing": 0} for kind in LayerKind
    })

    for result in results:
        layer = layers_by_id.get(result.layer_id)
        if layer is None:
            continue

        metrics = summarize(result, layer)
        batch.true_positives += metrics.true_positives
        batch.true_negatives += metrics.true_negatives
        batch.false_positives += metrics.false_positives
        batch.false_negatives += metrics.false_negatives

        # Actual quality, regardless of expectation
        for criterion, classification in metrics.classifications.items():
            if classification == Classification.SKIP:
                continue
            if result.tests[criterion].passed:
                batch.total_passing_tests += 1
            else:
                batch.total_failing_tests += 1

        counts = batch.kind_counts[LayerKind(layer.layer_kind).value]
        counts["total"] += 1
        if metrics.false_positives or metrics.false_negatives:
            batch.failing_layers.append(result.layer_title)
            counts["failing"] += 1
        else:
            batch.passing_layers.append(result.layer_title)
            counts["passing"] += 1

    return batch
