"""
Services package for the layer quality pipeline

Contains the collaborators the orchestrator talks to:
- TargetAdapter interface and error taxonomy
- ArcGIS REST/Hub adapter
- Expectation baseline source (verification spreadsheet)
"""

from .target_adapter import TargetAdapter, TargetAdapterError, SessionLostError, LayerNotActiveError
from .arcgis_adapter import ArcGISServiceAdapter
from .expectation_source import (
    parse_baseline_csv,
    load_baseline_csv,
    load_baseline_json,
    save_baseline_json,
    categorized_layers,
)

__all__ = [
    'TargetAdapter',
    'TargetAdapterError',
    'SessionLostError',
    'LayerNotActiveError',
    'ArcGISServiceAdapter',
    'parse_baseline_csv',
    'load_baseline_csv',
    'load_baseline_json',
    'save_baseline_json',
    'categorized_layers',
]
