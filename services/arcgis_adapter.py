"""
ArcGIS Service Adapter

TargetAdapter that evaluates the quality criteria against the ArcGIS REST
services and Hub site behind each catalog layer, without a rendering
surface. Provides:
- Hub search to locate a layer by title
- Service and sublayer metadata for load, tooltip and filter checks
- Legend endpoint for legend presence and label quality
- Hub dataset page for download availability (404 detection)

Responses are cached per adapter instance, so each isolated session sees a
consistent view of the services it touched and nothing leaks across runs.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

import config
from shared_schema import CriterionResult, Criteria, LayerConfig, LayerKind
from services.target_adapter import (
    LayerNotActiveError, SessionLostError, TargetAdapter, TargetAdapterError
)

logger = logging.getLogger(__name__)

NOT_FOUND_PATTERN = re.compile(r"404|Page Not Found|This page may have been moved or deleted", re.IGNORECASE)


def is_descriptive_label(label: str) -> bool:
    """A label containing numbers must also contain letters (units, class names)"""
    trimmed = label.strip()
    has_numbers = bool(re.search(r"\d", trimmed))
    has_letters = bool(re.search(r"[a-zA-Z]", trimmed))
    return not (has_numbers and not has_letters)


class ArcGISServiceAdapter(TargetAdapter):
    """
    One HTTP session against the catalog's ArcGIS Hub and layer services.

    Hub failures (search unreachable) are treated as a lost session;
    failures of an individual layer service only fail the criterion.
    """

    def __init__(self, hub_url: Optional[str] = None, catalog_categories: Optional[Sequence[str]] = None,
                 timeout_seconds: Optional[int] = None, session: Optional[aiohttp.ClientSession] = None):
        self.hub_url = (hub_url or config.ARCGIS_HUB_URL).rstrip("/")
        self.catalog_categories = set(
            config.CATALOG_CATEGORIES if catalog_categories is None else catalog_categories
        )
        self.timeout_seconds = timeout_seconds or config.HTTP_TIMEOUT_SECONDS
        self._session = session
        self._owns_session = session is None
        self._cache: Dict[str, Tuple[int, Any]] = {}

        # Session state left behind by setup and read by criteria
        self.selected_category: Optional[str] = None
        self.located = False
        self.layer: Optional[LayerConfig] = None
        self.opacity: Optional[int] = None

        self._criteria = {
            Criteria.SHOWS_IN_CATEGORIES: self._check_shows_in_categories,
            Criteria.LAYERS_LOAD: self._check_layers_load,
            Criteria.DOWNLOAD_WORKS: self._check_download_works,
            Criteria.DESCRIPTION_MATCHES: self._check_description_matches,
            Criteria.TOOLTIPS_POPUP: self._check_tooltips_popup,
            Criteria.LEGEND_EXISTS: self._check_legend_exists,
            Criteria.LEGEND_LABELS_DESCRIPTIVE: self._check_legend_labels_descriptive,
            Criteria.LEGEND_FILTERS_WORK: self._check_legend_filters_work,
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def _request(self, url: str, params: Optional[Dict[str, str]] = None,
                       as_json: bool = True, fatal: bool = False) -> Tuple[int, Any]:
        """GET with per-session caching; returns (status, body) with body None on bad payloads"""
        cache_key = f"{url}?{sorted((params or {}).items())}:{as_json}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        error_type = SessionLostError if fatal else TargetAdapterError
        try:
            async with self._get_session().get(url, params=params) as response:
                if as_json:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
                else:
                    body = await response.text()
                outcome = (response.status, body)
        except asyncio.TimeoutError:
            raise error_type(f"Request timed out after {self.timeout_seconds} seconds: {url}")
        except aiohttp.ClientError as e:
            raise error_type(f"Network error: {str(e)}")

        self._cache[cache_key] = outcome
        return outcome

    def _active_layer(self) -> LayerConfig:
        if self.layer is None:
            raise LayerNotActiveError("No layer is active in this session")
        return self.layer

    async def _service_json(self, path: str = "") -> Optional[Dict[str, Any]]:
        layer = self._active_layer()
        status, data = await self._request(f"{layer.url.rstrip('/')}{path}", params={"f": "json"})
        if status != 200 or not isinstance(data, dict) or "error" in data:
            return None
        return data

    async def _legend_layers(self) -> List[Dict[str, Any]]:
        legend = await self._service_json("/legend")
        if not legend:
            return []
        return [entry for entry in legend.get("layers", []) if isinstance(entry, dict)]

    # Setup operations

    async def select_category(self, name: str) -> None:
        self.selected_category = name
        if name not in self.catalog_categories:
            raise TargetAdapterError(f"Category '{name}' is not offered by the catalog")

    async def locate_layer(self, title: str) -> bool:
        status, data = await self._request(
            f"{self.hub_url}/api/search/v1/collections/all/items",
            params={"q": title, "limit": "20"},
            fatal=True,
        )
        if status != 200 or not isinstance(data, dict):
            raise TargetAdapterError(f"Hub search returned status {status}")

        features = data.get("features", [])
        self.located = any(
            (feature.get("properties") or {}).get("title") == title for feature in features
        )
        return self.located

    async def activate(self, layer: LayerConfig) -> None:
        if not layer.url:
            raise TargetAdapterError(f"Layer '{layer.title}' has no service URL")
        self.layer = layer

    async def set_opacity(self, percent: int) -> None:
        if not 0 <= percent <= 100:
            raise ValueError(f"Opacity {percent} must be between 0 and 100")
        self.opacity = percent

    async def evaluate_criterion(self, key: str) -> CriterionResult:
        if key not in self._criteria:
            raise ValueError(f"Unknown criterion '{key}'")
        self._active_layer()
        return await self._criteria[key]()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    # Criteria

    async def _check_shows_in_categories(self) -> CriterionResult:
        layer = self._active_layer()
        if not layer.categories:
            return CriterionResult(False, "Layer has no mapped categories", {})

        missing = [c for c in layer.categories if c not in self.catalog_categories]
        passed = self.located and not missing
        if passed:
            message = f"Listed in {len(layer.categories)} categories"
        elif missing:
            message = f"Categories not offered by the catalog: {', '.join(missing)}"
        else:
            message = "Layer not found in catalog search results"
        return CriterionResult(passed, message, {"missing_categories": missing, "located": self.located})

    async def _check_layers_load(self) -> CriterionResult:
        layer = self._active_layer()
        service = await self._service_json()
        if service is None:
            return CriterionResult(False, "Service metadata could not be loaded", {"url": layer.url})

        if LayerKind(layer.layer_kind) == LayerKind.IMAGE_SERVICE:
            return CriterionResult(True, "Image service loaded", {"sublayers": 1})

        sublayer_ids = [entry.get("id") for entry in service.get("layers", [])]
        failed = []
        for sublayer_id in sublayer_ids:
            if await self._service_json(f"/{sublayer_id}") is None:
                failed.append(sublayer_id)

        if not sublayer_ids:
            return CriterionResult(False, "Feature service exposes no sublayers", {"sublayers": 0})
        if failed:
            return CriterionResult(
                False, f"{len(failed)}/{len(sublayer_ids)} sublayers failed to load",
                {"sublayers": len(sublayer_ids), "failed": failed}
            )
        return CriterionResult(True, f"All {len(sublayer_ids)} sublayers loaded", {"sublayers": len(sublayer_ids)})

    async def _check_download_works(self) -> CriterionResult:
        layer = self._active_layer()
        url = f"{self.hub_url}/datasets/{layer.id}"
        status, body = await self._request(url, as_json=False)

        has_404 = status == 404 or bool(NOT_FOUND_PATTERN.search(body or ""))
        if has_404:
            return CriterionResult(False, f"Download page not found: {url}", {"status": status, "url": url})
        return CriterionResult(True, "Download page available", {"status": status, "url": url})

    async def _check_description_matches(self) -> CriterionResult:
        service = await self._service_json()
        description = ""
        if service:
            description = (service.get("serviceDescription") or service.get("description") or "").strip()
        if not description:
            return CriterionResult(False, "Service has no description", {})
        return CriterionResult(True, "Service description present", {"length": len(description)})

    async def _check_tooltips_popup(self) -> CriterionResult:
        layer = self._active_layer()
        service = await self._service_json()
        if service is None:
            return CriterionResult(False, "Service metadata could not be loaded", {})

        if LayerKind(layer.layer_kind) == LayerKind.IMAGE_SERVICE:
            capabilities = service.get("capabilities", "")
            passed = "Image" in capabilities or "Catalog" in capabilities
            return CriterionResult(passed, f"Identify capabilities: {capabilities or 'none'}", {})

        with_fields = []
        for entry in service.get("layers", []):
            sublayer = await self._service_json(f"/{entry.get('id')}")
            if sublayer and sublayer.get("fields"):
                with_fields.append(entry.get("id"))

        if with_fields:
            return CriterionResult(True, f"{len(with_fields)} sublayers expose popup fields", {"sublayers": with_fields})
        return CriterionResult(False, "No sublayer exposes attribute fields for popups", {})

    async def _check_legend_exists(self) -> CriterionResult:
        entries = sum(len(entry.get("legend", [])) for entry in await self._legend_layers())
        if entries == 0:
            return CriterionResult(False, "Legend is empty or unavailable", {"items": 0})
        return CriterionResult(True, f"Legend has {entries} items", {"items": entries})

    async def _check_legend_labels_descriptive(self) -> CriterionResult:
        labels = [
            (item.get("label") or "").strip()
            for entry in await self._legend_layers()
            for item in entry.get("legend", [])
        ]
        labels = [label for label in labels if label]
        if not labels:
            return CriterionResult(False, "No legend labels found", {})

        bad = [label for label in labels if not is_descriptive_label(label)]
        if bad:
            return CriterionResult(False, f"{len(bad)} legend labels are bare numbers", {"labels": bad[:10]})
        return CriterionResult(True, f"All {len(labels)} legend labels are descriptive", {})

    async def _check_legend_filters_work(self) -> CriterionResult:
        layer = self._active_layer()
        # Sublayers with a single legend item have nothing to filter
        filterable = [entry for entry in await self._legend_layers() if len(entry.get("legend", [])) > 1]
        if not filterable:
            return CriterionResult.skip("skipped (not applicable: no multi-item legend)", "not_applicable")

        if LayerKind(layer.layer_kind) == LayerKind.IMAGE_SERVICE:
            return CriterionResult(True, "Image legend items can be toggled", {"layers": len(filterable)})

        service = await self._service_json() or {}
        capabilities = service.get("capabilities", "")
        if "Query" not in capabilities:
            return CriterionResult(False, "Service does not support query filtering", {"capabilities": capabilities})
        return CriterionResult(True, f"{len(filterable)} legends support filtering", {"layers": len(filterable)})
