"""
Tests for the ArcGIS REST adapter against a local aiohttp server.
"""

from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp import test_utils

from conftest import make_layer
from shared_schema import Criteria, LayerKind
from services.arcgis_adapter import ArcGISServiceAdapter, is_descriptive_label
from services.target_adapter import LayerNotActiveError, SessionLostError, TargetAdapterError

CATEGORIES = ["Land Cover", "Topographic"]

SERVICES = {
    "Cattle": {
        "root": {"layers": [{"id": 0}, {"id": 1}], "capabilities": "Query,Extract", "serviceDescription": "Pastures"},
        "0": {"name": "Pastures", "fields": [{"name": "NAME"}]},
        "1": {"name": "Fences", "fields": []},
        "legend": {"layers": [{"layerId": 0, "legend": [{"label": "Winter"}, {"label": "Summer"}]}]},
    },
    "Broken": {
        "root": {"layers": [{"id": 0}, {"id": 1}], "capabilities": "Map"},
        "0": {"fields": []},
        "1": {"error": {"code": 500, "message": "Layer failed"}},
        "legend": {"layers": [{"legend": [{"label": "10"}, {"label": "20"}]}]},
    },
}

IMAGE_SERVICE = {
    "root": {"capabilities": "Image,Metadata"},
    "legend": {"layers": [{"legend": [{"label": "1500"}]}]},
}

HUB_TITLES = ["Cattle Pastures", "Elevation"]


def build_app():
    async def search(request):
        query = request.query.get("q", "")
        return web.json_response({
            "features": [{"properties": {"title": title}} for title in HUB_TITLES if query in title]
        })

    async def feature_service(request):
        service = SERVICES[request.match_info["name"]]
        return web.json_response(service[request.match_info.get("part", "root")])

    async def image_service(request):
        return web.json_response(IMAGE_SERVICE[request.match_info.get("part", "root")])

    async def dataset(request):
        dataset_id = request.match_info["id"]
        if dataset_id == "missing":
            return web.Response(status=404, text="Not here")
        if dataset_id == "moved":
            return web.Response(text="<h1>Page Not Found</h1>")
        return web.Response(text="<h1>Download</h1>")

    app = web.Application()
    app.router.add_get("/api/search/v1/collections/all/items", search)
    app.router.add_get("/arcgis/rest/services/{name}/FeatureServer", feature_service)
    app.router.add_get("/arcgis/rest/services/{name}/FeatureServer/{part}", feature_service)
    app.router.add_get("/arcgis/rest/services/Elevation/ImageServer", image_service)
    app.router.add_get("/arcgis/rest/services/Elevation/ImageServer/{part}", image_service)
    app.router.add_get("/datasets/{id}", dataset)
    return app


@asynccontextmanager
async def arcgis_session():
    server = test_utils.TestServer(build_app())
    await server.start_server()
    adapter = ArcGISServiceAdapter(
        hub_url=str(server.make_url("/")), catalog_categories=CATEGORIES, timeout_seconds=5
    )
    try:
        yield server, adapter
    finally:
        await adapter.close()
        await server.close()


def service_layer(server, name, layer_id, kind=LayerKind.FEATURE_SERVICE, categories=("Land Cover",)):
    server_type = "ImageServer" if kind == LayerKind.IMAGE_SERVICE else "FeatureServer"
    layer = make_layer(layer_id, kind=kind, categories=categories)
    return layer.model_copy(update={"url": str(server.make_url(f"/arcgis/rest/services/{name}/{server_type}"))})


async def evaluate(adapter, layer, criterion):
    adapter.located = await adapter.locate_layer(layer.title)
    await adapter.activate(layer)
    return await adapter.evaluate_criterion(criterion)


@pytest.mark.parametrize("label, descriptive", [
    ("Winter pasture", True),
    ("0 - 10 m", True),
    ("10 - 20", False),
    ("1500", False),
    ("", True),
])
def test_is_descriptive_label(label, descriptive):
    assert is_descriptive_label(label) is descriptive


@pytest.mark.asyncio
async def test_locate_layer_uses_hub_search():
    async with arcgis_session() as (server, adapter):
        assert await adapter.locate_layer("Cattle Pastures") is True
        assert await adapter.locate_layer("Cattle") is False


@pytest.mark.asyncio
async def test_unknown_category_rejected():
    async with arcgis_session() as (server, adapter):
        with pytest.raises(TargetAdapterError):
            await adapter.select_category("Astronomy")


@pytest.mark.asyncio
async def test_criterion_requires_active_layer():
    async with arcgis_session() as (server, adapter):
        with pytest.raises(LayerNotActiveError):
            await adapter.evaluate_criterion(Criteria.LAYERS_LOAD)


@pytest.mark.asyncio
async def test_unknown_criterion_rejected():
    async with arcgis_session() as (server, adapter):
        await adapter.activate(service_layer(server, "Cattle", "cattle-pastures"))
        with pytest.raises(ValueError):
            await adapter.evaluate_criterion("legend_colors")


@pytest.mark.asyncio
async def test_feature_service_passing_criteria():
    async with arcgis_session() as (server, adapter):
        layer = service_layer(server, "Cattle", "cattle-pastures")

        for criterion in [
            Criteria.SHOWS_IN_CATEGORIES, Criteria.LAYERS_LOAD, Criteria.DOWNLOAD_WORKS,
            Criteria.DESCRIPTION_MATCHES, Criteria.TOOLTIPS_POPUP, Criteria.LEGEND_EXISTS,
            Criteria.LEGEND_LABELS_DESCRIPTIVE, Criteria.LEGEND_FILTERS_WORK,
        ]:
            outcome = await evaluate(adapter, layer, criterion)
            assert outcome.passed, f"{criterion}: {outcome.message}"
            assert not outcome.skipped


@pytest.mark.asyncio
async def test_broken_sublayer_fails_load():
    async with arcgis_session() as (server, adapter):
        layer = service_layer(server, "Broken", "broken")

        outcome = await evaluate(adapter, layer, Criteria.LAYERS_LOAD)

        assert not outcome.passed
        assert outcome.details["failed"] == [1]


@pytest.mark.asyncio
async def test_numeric_legend_labels_and_missing_query():
    async with arcgis_session() as (server, adapter):
        layer = service_layer(server, "Broken", "broken")

        labels = await evaluate(adapter, layer, Criteria.LEGEND_LABELS_DESCRIPTIVE)
        filters = await adapter.evaluate_criterion(Criteria.LEGEND_FILTERS_WORK)
        description = await adapter.evaluate_criterion(Criteria.DESCRIPTION_MATCHES)

        assert not labels.passed
        assert labels.details["labels"] == ["10", "20"]
        assert not filters.passed
        assert not description.passed


@pytest.mark.asyncio
async def test_missing_download_page():
    async with arcgis_session() as (server, adapter):
        missing = await evaluate(adapter, service_layer(server, "Cattle", "missing"), Criteria.DOWNLOAD_WORKS)
        moved = await evaluate(adapter, service_layer(server, "Cattle", "moved"), Criteria.DOWNLOAD_WORKS)

        assert not missing.passed
        assert missing.details["status"] == 404
        assert not moved.passed


@pytest.mark.asyncio
async def test_layer_not_in_catalog_category():
    async with arcgis_session() as (server, adapter):
        layer = service_layer(server, "Cattle", "cattle-pastures", categories=("Marine",))

        outcome = await evaluate(adapter, layer, Criteria.SHOWS_IN_CATEGORIES)

        assert not outcome.passed
        assert outcome.details["missing_categories"] == ["Marine"]


@pytest.mark.asyncio
async def test_image_service_criteria():
    async with arcgis_session() as (server, adapter):
        layer = service_layer(server, "Elevation", "elevation", kind=LayerKind.IMAGE_SERVICE,
                              categories=("Topographic",))

        loads = await evaluate(adapter, layer, Criteria.LAYERS_LOAD)
        tooltips = await adapter.evaluate_criterion(Criteria.TOOLTIPS_POPUP)
        legend = await adapter.evaluate_criterion(Criteria.LEGEND_EXISTS)
        filters = await adapter.evaluate_criterion(Criteria.LEGEND_FILTERS_WORK)

        assert loads.passed
        assert tooltips.passed
        assert legend.passed
        # Single-item legend has nothing to filter
        assert filters.passed and filters.details["skipped"] == "not_applicable"


@pytest.mark.asyncio
async def test_activate_requires_url():
    async with arcgis_session() as (server, adapter):
        with pytest.raises(TargetAdapterError):
            await adapter.activate(make_layer().model_copy(update={"url": ""}))


@pytest.mark.asyncio
async def test_unreachable_hub_loses_session():
    adapter = ArcGISServiceAdapter(hub_url="http://127.0.0.1:1", catalog_categories=CATEGORIES, timeout_seconds=2)
    async with adapter:
        with pytest.raises(SessionLostError):
            await adapter.locate_layer("Cattle Pastures")


@pytest.mark.asyncio
async def test_set_opacity_bounds():
    async with arcgis_session() as (server, adapter):
        await adapter.set_opacity(100)
        assert adapter.opacity == 100
        with pytest.raises(ValueError):
            await adapter.set_opacity(150)
