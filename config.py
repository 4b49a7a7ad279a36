"""
Layer Quality Pipeline Configuration

This file contains all configuration settings for the layer quality pipeline.
Modify these settings (or the matching environment variables) to customize
where checkpoints are stored, how runs are timed and which criteria run.
"""

import os
from dotenv import load_dotenv

# Load environment variables from a .env file if present (project root or parents)
# This enables local development without exporting variables globally.
load_dotenv()

# Checkpoint Storage
CHECKPOINT_DIR = os.getenv("CHECKPOINT_DIR", "checkpoints")
LEDGER_FILENAME = os.getenv("LEDGER_FILENAME", "test-results-history.csv")
# One test-validation summary row per run that had baseline expectations
ACCURACY_LEDGER_FILENAME = os.getenv("ACCURACY_LEDGER_FILENAME", "test-validation-history.csv")
SNAPSHOT_SUBDIR = "snapshots"

# Expectation Baseline
# Structured baseline produced by `run_quality_checks.py parse-baseline`
BASELINE_PATH = os.getenv("BASELINE_PATH", os.path.join("test-data", "all-arcgis-layers.json"))

# Timeout Budgets (milliseconds)
# Profiles: standalone (90s + 30s/sublayer), checkpoint (60s + 30s/sublayer), quick (60s + 5s/sublayer)
TIMEOUT_PROFILE = os.getenv("TIMEOUT_PROFILE", "checkpoint")
TIMEOUT_BASE_MS = os.getenv("TIMEOUT_BASE_MS")                  # Overrides the profile base when set
TIMEOUT_PER_SUBLAYER_MS = os.getenv("TIMEOUT_PER_SUBLAYER_MS")  # Overrides the profile increment when set
TIMEOUT_CEILING_MS = int(os.getenv("TIMEOUT_CEILING_MS", "240000"))

# Criteria Controls
# Comma-separated criterion keys that are never evaluated (recorded as SKIP)
DISABLED_CRITERIA = [
    key.strip()
    for key in os.getenv("DISABLED_CRITERIA", "description_matches").split(",")
    if key.strip()
]

# Batch Execution
MAX_PARALLEL_LAYERS = int(os.getenv("MAX_PARALLEL_LAYERS", "6"))  # Isolated adapter sessions run at once
DEFAULT_CATEGORY = os.getenv("DEFAULT_CATEGORY", "Fire")          # Used when a layer has no categories

# Catalog vocabulary used to validate baseline categories
CATALOG_CATEGORIES = [
    category.strip()
    for category in os.getenv(
        "CATALOG_CATEGORIES",
        "Fire,Freshwater,Land Cover,Marine,Oceans and Coasts,Research and Sensor Equipment,"
        "Soils and Geology,Topographic,Vegetation,Weather and Climate,Wildlife",
    ).split(",")
    if category.strip()
]

# ArcGIS Hub backing the catalog
ARCGIS_HUB_URL = os.getenv("ARCGIS_HUB_URL", "https://dangermondpreserve-tnc.hub.arcgis.com")
HTTP_TIMEOUT_SECONDS = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# Report API
REPORT_API_PORT = int(os.getenv("PORT", "8000"))

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR
