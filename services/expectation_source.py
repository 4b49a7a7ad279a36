"""
Expectation Source

Converts the manually curated verification spreadsheet (one row per layer)
into structured LayerConfig baselines and stores them as JSON for batch runs.

Tri-state cells:
- "Yes"              -> True  (must pass)
- "No"               -> False (known issue)
- "Some (See Notes)" -> False (partial success treated conservatively)
- empty              -> None  (untested)
"""

import csv
import json
import logging
import os
import re
from datetime import datetime, timezone
from io import StringIO
from typing import Any, Dict, List, Optional, Sequence, Set

import requests

from shared_schema import Criteria, LayerConfig, LayerKind

logger = logging.getLogger(__name__)

# Spreadsheet "Type" values the pipeline supports
SUPPORTED_TYPES = {
    "Feature Service": LayerKind.FEATURE_SERVICE,
    "Image Service": LayerKind.IMAGE_SERVICE,
}

UNCATEGORIZED = "Uncategorized"

SERVICE_NAME_PATTERNS = [
    re.compile(r"/rest/services/([^/]+)/(?:FeatureServer|ImageServer|MapServer)"),
    re.compile(r"services\.arcgis\.com/([^/]+)/"),
]


def parse_tri_state(value: Optional[str]) -> Optional[bool]:
    trimmed = (value or "").strip()
    if trimmed == "Yes":
        return True
    if trimmed == "No":
        return False
    if trimmed.startswith("Some"):
        return False
    return None


def parse_categories(value: Optional[str]) -> List[str]:
    """Semicolon-separated categories; 'Uncategorized' is not a category"""
    if not value or not value.strip():
        return []

    return [
        category.strip()
        for category in value.split(";")
        if category.strip() and category.strip() != UNCATEGORIZED
    ]


def _slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def derive_layer_id(url: str, title: str) -> str:
    """
    Stable id from the service URL, falling back to the title, then to the whole URL.

    Examples:
    - .../rest/services/Cattle_Pastures/FeatureServer -> cattle-pastures
    - title "Minor Watersheds" (no recognizable URL)  -> minor-watersheds
    - no title, https://x.org/somewhere               -> x-org-somewhere
    """
    for pattern in SERVICE_NAME_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return _slugify(match.group(1))
    return _slugify(title) or _slugify(re.sub(r"^[a-z]+://", "", url or "", flags=re.IGNORECASE))


def unique_layer_id(layer_id: str, taken: Set[str]) -> str:
    """layer_id itself if unused, otherwise the first free numeric suffix (-2, -3, ...)"""
    if layer_id not in taken:
        return layer_id

    suffix = 2
    while f"{layer_id}-{suffix}" in taken:
        suffix += 1
    return f"{layer_id}-{suffix}"


def parse_baseline_csv(content: str) -> List[LayerConfig]:
    """
    Parse the verification spreadsheet export into layer configs.

    Rows whose Type is not a Feature/Image Service, whose URL is empty, or
    from which no id can be derived are excluded. Duplicate derived ids get
    the first numeric suffix no other layer uses.
    """
    reader = csv.DictReader(StringIO(content.replace("\r", "")))
    headers = reader.fieldnames or []
    logger.info(f"Found {len(headers)} columns: {', '.join(headers)}")

    layers = []
    taken_ids: Set[str] = set()
    excluded = 0

    for row in reader:
        row = {key.strip(): (value or "") for key, value in row.items() if key}

        layer_type = row.get("Type", "").strip()
        url = row.get("URL", "").strip()
        if layer_type not in SUPPORTED_TYPES or not url:
            excluded += 1
            continue

        title = row.get("Title", "").strip()
        derived_id = derive_layer_id(url, title)
        if not derived_id:
            logger.warning(f"No layer id can be derived for row with URL '{url}', skipping")
            excluded += 1
            continue

        layer_id = unique_layer_id(derived_id, taken_ids)
        if layer_id != derived_id:
            logger.warning(f"Duplicate layer id '{derived_id}' for '{title}', using '{layer_id}'")
        taken_ids.add(layer_id)

        layers.append(LayerConfig(
            id=layer_id,
            title=title,
            layer_kind=SUPPORTED_TYPES[layer_type],
            categories=parse_categories(row.get("Mapped Categories")),
            expected_results={
                criterion: parse_tri_state(row.get(header))
                for criterion, header in Criteria.BASELINE_HEADERS.items()
            },
            notes=row.get("Notes", "").strip(),
            url=url,
        ))

    logger.info(f"Parsed {len(layers)} layers ({excluded} rows excluded)")
    return layers


def load_baseline_csv(source: str, timeout: int = 30) -> List[LayerConfig]:
    """Read the spreadsheet export from a local path or an http(s) URL"""
    if source.startswith(("http://", "https://")):
        logger.info(f"Downloading baseline from {source}")
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        content = response.text
    else:
        with open(source, "r", encoding="utf-8-sig") as f:
            content = f.read()

    return parse_baseline_csv(content)


def categorized_layers(layers: Sequence[LayerConfig]) -> List[LayerConfig]:
    """Layers that appear in at least one catalog category"""
    return [
        layer for layer in layers
        if layer.categories and UNCATEGORIZED not in layer.categories
    ]


def baseline_summary(layers: Sequence[LayerConfig]) -> Dict[str, int]:
    untested = len([
        layer for layer in layers
        if all(value is None for value in layer.expected_results.values())
    ])
    return {
        "total_layers": len(layers),
        "feature_services": len([l for l in layers if l.layer_kind == LayerKind.FEATURE_SERVICE]),
        "image_services": len([l for l in layers if l.layer_kind == LayerKind.IMAGE_SERVICE]),
        "with_categories": len([l for l in layers if l.categories]),
        "untested": untested,
        "tested": len(layers) - untested,
    }


def save_baseline_json(layers: Sequence[LayerConfig], path: str, source: str = "") -> None:
    output: Dict[str, Any] = {
        "generated": datetime.now(timezone.utc).isoformat(),
        "source": source,
        "layers": [layer.model_dump(mode="json") for layer in layers],
    }

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(output, f, indent=2)

    logger.info(f"Wrote baseline for {len(layers)} layers to {path}")


def load_baseline_json(path: str) -> List[LayerConfig]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return [LayerConfig.model_validate(entry) for entry in data.get("layers", [])]
