"""
Baseline Validation Module

Validates the expectation baseline against the catalog's category vocabulary
before a batch run, so typos in the curated spreadsheet surface as a report
instead of as layers that silently never show up in a category.
"""

from typing import Dict, List, Sequence

from shared_schema import LayerConfig

UNCATEGORIZED = "Uncategorized"


def validate_baseline_categories(layers: Sequence[LayerConfig], valid_categories: Sequence[str]) -> dict:
    """
    Check that every category referenced by the baseline exists in the catalog.

    Args:
        layers: Parsed baseline layers
        valid_categories: Category names the catalog exposes

    Returns:
        Dictionary with validation results and invalid categories grouped by name
    """
    valid = set(valid_categories)
    used = set()
    invalid: Dict[str, List[str]] = {}

    for layer in layers:
        for category in layer.categories:
            used.add(category)
            if category == UNCATEGORIZED:
                continue
            if category not in valid:
                invalid.setdefault(category, []).append(f"{layer.title} ({layer.id})")

    return {
        "valid": len(invalid) == 0,
        "total_layers": len(layers),
        "categories_used": sorted(used),
        "invalid_categories": invalid,
        "errors": [
            f"Invalid category '{category}' used by {len(users)} layer(s)"
            for category, users in sorted(invalid.items())
        ]
    }


def validate_unique_ids(layers: Sequence[LayerConfig]) -> dict:
    """Layer ids must identify one layer across all runs"""
    seen = set()
    duplicates = []

    for layer in layers:
        if layer.id in seen and layer.id not in duplicates:
            duplicates.append(layer.id)
        seen.add(layer.id)

    return {
        "valid": len(duplicates) == 0,
        "duplicates": duplicates,
        "errors": [f"Duplicate layer id '{layer_id}'" for layer_id in duplicates]
    }
