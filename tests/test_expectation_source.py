"""
Tests for parsing the verification spreadsheet into layer baselines.
"""

import json

import pytest

from shared_schema import Criteria, LayerKind
from services import expectation_source
from services.expectation_source import (
    baseline_summary, categorized_layers, derive_layer_id, load_baseline_csv, load_baseline_json,
    parse_baseline_csv, parse_categories, parse_tri_state, save_baseline_json
)
from validation.baseline_validation import validate_unique_ids

HEADER = (
    "Title,Type,URL,Mapped Categories,Shows Up In All Categories,All Layers Load,"
    "ArcGIS Download Link Works,Description Matches Website,Tooltips Pop-Up,Legend Exists,"
    "Legend Labels Descriptive,Legend Filters Work,Notes"
)

SPREADSHEET = "\n".join([
    HEADER,
    "Cattle Pastures,Feature Service,https://services.arcgis.com/abc/arcgis/rest/services/Cattle_Pastures/FeatureServer,"
    "Land Cover; Wildlife,Yes,Yes,No,,Yes,Yes,Some (See Notes),Yes,legend partly numeric",
    "Elevation,Image Service,https://example.org/arcgis/rest/services/Elevation/ImageServer,Topographic,"
    "Yes,Yes,Yes,,Yes,No,No,No,",
    "Orphan Layer,Feature Service,https://example.org/arcgis/rest/services/Orphan/FeatureServer,Uncategorized,"
    ",,,,,,,,",
    "Basemap,Map Service,https://example.org/arcgis/rest/services/Basemap/MapServer,Fire,Yes,Yes,Yes,,Yes,Yes,Yes,Yes,",
    "No Url Layer,Feature Service,,Fire,Yes,Yes,Yes,,Yes,Yes,Yes,Yes,",
])


@pytest.mark.parametrize("value, expected", [
    ("Yes", True),
    (" Yes ", True),
    ("No", False),
    ("Some (See Notes)", False),
    ("", None),
    (None, None),
    ("Maybe", None),
])
def test_parse_tri_state(value, expected):
    assert parse_tri_state(value) is expected


def test_parse_categories():
    assert parse_categories("Fire; Wildlife ;;Marine") == ["Fire", "Wildlife", "Marine"]
    assert parse_categories("Uncategorized") == []
    assert parse_categories("") == []


def test_derive_layer_id():
    assert derive_layer_id(
        "https://services.arcgis.com/abc/arcgis/rest/services/Cattle_Pastures/FeatureServer", "x"
    ) == "cattle-pastures"
    assert derive_layer_id("https://services.arcgis.com/OrgName/items/1", "x") == "orgname"
    assert derive_layer_id("", "Minor Watersheds (2020)") == "minor-watersheds-2020"
    assert derive_layer_id("https://x.org/somewhere", "") == "x-org-somewhere"


def test_parse_baseline_csv_filters_rows():
    layers = parse_baseline_csv(SPREADSHEET)

    assert [layer.id for layer in layers] == ["cattle-pastures", "elevation", "orphan"]


def test_parse_baseline_csv_fields():
    cattle, elevation, orphan = parse_baseline_csv(SPREADSHEET)

    assert cattle.title == "Cattle Pastures"
    assert cattle.layer_kind == LayerKind.FEATURE_SERVICE
    assert cattle.categories == ["Land Cover", "Wildlife"]
    assert cattle.expected(Criteria.DOWNLOAD_WORKS) is False
    assert cattle.expected(Criteria.DESCRIPTION_MATCHES) is None
    assert cattle.expected(Criteria.LEGEND_LABELS_DESCRIPTIVE) is False
    assert cattle.notes == "legend partly numeric"
    assert elevation.layer_kind == LayerKind.IMAGE_SERVICE
    assert orphan.categories == []


def test_duplicate_ids_get_suffixes():
    row = "Pastures,Feature Service,https://x.org/arcgis/rest/services/Pastures/FeatureServer,Fire,Yes,,,,,,,,"
    layers = parse_baseline_csv("\n".join([HEADER, row, row, row]))

    assert [layer.id for layer in layers] == ["pastures", "pastures-2", "pastures-3"]


def test_suffixed_id_never_collides_with_a_real_id():
    pastures = "Pastures,Feature Service,https://x.org/arcgis/rest/services/Pastures/FeatureServer,Fire,Yes,,,,,,,,"
    pastures_2 = (
        "Pastures 2,Feature Service,https://x.org/arcgis/rest/services/Pastures_2/FeatureServer,Fire,Yes,,,,,,,,"
    )
    layers = parse_baseline_csv("\n".join([HEADER, pastures, pastures, pastures_2, pastures]))

    ids = [layer.id for layer in layers]
    assert ids == ["pastures", "pastures-2", "pastures-2-2", "pastures-3"]
    assert validate_unique_ids(layers)["valid"]


def test_unrecognized_url_without_title_uses_url():
    row = ",Feature Service,https://x.org/somewhere,Fire,Yes,,,,,,,,"
    layers = parse_baseline_csv("\n".join([HEADER, row]))

    assert [layer.id for layer in layers] == ["x-org-somewhere"]


def test_row_without_derivable_id_is_excluded():
    valid = "Elevation,Image Service,https://x.org/arcgis/rest/services/Elevation/ImageServer,Fire,Yes,,,,,,,,"
    unusable = ",Feature Service,///,Fire,Yes,,,,,,,,"

    layers = parse_baseline_csv("\n".join([HEADER, valid, unusable]))

    assert [layer.id for layer in layers] == ["elevation"]


def test_categorized_layers_and_summary():
    layers = parse_baseline_csv(SPREADSHEET)

    assert [layer.id for layer in categorized_layers(layers)] == ["cattle-pastures", "elevation"]
    assert baseline_summary(layers) == {
        "total_layers": 3,
        "feature_services": 2,
        "image_services": 1,
        "with_categories": 2,
        "untested": 1,
        "tested": 2,
    }


def test_baseline_json_round_trip(tmp_path):
    layers = parse_baseline_csv(SPREADSHEET)
    path = tmp_path / "baseline" / "layers.json"

    save_baseline_json(layers, str(path), source="sheet.csv")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["source"] == "sheet.csv"
    assert data["layers"][0]["layer_kind"] == "FeatureService"
    assert load_baseline_json(str(path)) == layers


def test_load_baseline_csv_from_file(tmp_path):
    path = tmp_path / "sheet.csv"
    path.write_text("\ufeff" + SPREADSHEET, encoding="utf-8")

    assert len(load_baseline_csv(str(path))) == 3


def test_load_baseline_csv_from_url(monkeypatch):
    class FakeResponse:
        text = SPREADSHEET

        def raise_for_status(self):
            pass

    requested = {}

    def fake_get(url, timeout):
        requested["url"] = url
        requested["timeout"] = timeout
        return FakeResponse()

    monkeypatch.setattr(expectation_source.requests, "get", fake_get)

    layers = load_baseline_csv("https://docs.example.com/sheet.csv", timeout=5)

    assert len(layers) == 3
    assert requested == {"url": "https://docs.example.com/sheet.csv", "timeout": 5}
