"""
Shared fixtures for the layer quality pipeline tests.

FakeAdapter is a scripted TargetAdapter: each criterion maps to a result,
an exception to raise, or an async callable, and every call is recorded.
"""

import asyncio
import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared_schema import CriterionResult, Criteria, LayerConfig, LayerKind
from services.target_adapter import TargetAdapter
from validation.timeout_estimator import TimeoutEstimator


class FakeAdapter(TargetAdapter):
    def __init__(self, outcomes=None, located=True, setup_errors=None, delays=None):
        self.outcomes = outcomes or {}
        self.located = located
        self.setup_errors = setup_errors or {}
        self.delays = delays or {}
        self.calls = []
        self.closed = False

    async def _setup(self, step, value=None):
        self.calls.append((step, value))
        if step in self.setup_errors:
            raise self.setup_errors[step]

    async def select_category(self, name):
        await self._setup("select_category", name)

    async def locate_layer(self, title):
        await self._setup("locate_layer", title)
        return self.located

    async def activate(self, layer):
        await self._setup("activate", layer.id)

    async def set_opacity(self, percent):
        await self._setup("set_opacity", percent)

    async def evaluate_criterion(self, key):
        self.calls.append(("evaluate", key))
        if key in self.delays:
            await asyncio.sleep(self.delays[key])

        outcome = self.outcomes.get(key, CriterionResult(True, f"{key} ok", {}))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True

    @property
    def evaluated(self):
        return [value for step, value in self.calls if step == "evaluate"]


def make_layer(layer_id="cattle-pastures", expected=None, kind=LayerKind.FEATURE_SERVICE,
               categories=("Land Cover",), title=None):
    """Layer expecting every criterion to pass unless overridden"""
    expected_results = {criterion: True for criterion in Criteria.ORDERED}
    expected_results.update(expected or {})
    return LayerConfig(
        id=layer_id,
        title=title or layer_id.replace("-", " ").title(),
        layer_kind=kind,
        categories=list(categories),
        expected_results=expected_results,
        url=f"https://example.com/arcgis/rest/services/{layer_id}/FeatureServer",
    )


@pytest.fixture
def layer():
    return make_layer()


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def estimator():
    # Generous budget so only explicit timeouts expire
    return TimeoutEstimator(base_ms=10000, per_sublayer_ms=0, ceiling_ms=10000)
