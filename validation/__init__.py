"""
Validation and Quality Assurance

Expectation comparison, accuracy metrics, timeout budgets and baseline
validation for the layer quality pipeline.
"""

from .expectation_comparator import classify, matches, mismatches, summarize, summarize_batch
from .timeout_estimator import TimeoutEstimator, TIMEOUT_PROFILES
from .baseline_validation import validate_baseline_categories, validate_unique_ids

__all__ = [
    "classify",
    "matches",
    "mismatches",
    "summarize",
    "summarize_batch",
    "TimeoutEstimator",
    "TIMEOUT_PROFILES",
    "validate_baseline_categories",
    "validate_unique_ids",
]
