"""
Target Adapter Interface

Capability interface between the orchestrator and the system under test.
Implementations drive one isolated session (browser page, HTTP client, fake)
and must never be shared by two concurrent orchestrator runs.
"""

from abc import ABC, abstractmethod

from shared_schema import CriterionResult, LayerConfig


class TargetAdapterError(Exception):
    """Expected failure reported by the system under test"""


class SessionLostError(TargetAdapterError):
    """Infrastructure failure; the session can no longer be trusted and the run is aborted"""


class LayerNotActiveError(TargetAdapterError):
    """A criterion was requested before any layer was activated"""


class TargetAdapter(ABC):
    """
    Asynchronous session against the catalog under test.

    Every call is a suspension point and may raise. The orchestrator calls
    the setup operations once per run, then evaluate_criterion once per
    enabled, tested criterion, strictly in sequence.
    """

    @abstractmethod
    async def select_category(self, name: str) -> None:
        """Filter the catalog to one category"""

    @abstractmethod
    async def locate_layer(self, title: str) -> bool:
        """Find the layer in the filtered catalog; False when not listed"""

    @abstractmethod
    async def activate(self, layer: LayerConfig) -> None:
        """Load the layer so criteria observe it"""

    @abstractmethod
    async def set_opacity(self, percent: int) -> None:
        """Normalize the active layer's opacity"""

    @abstractmethod
    async def evaluate_criterion(self, key: str) -> CriterionResult:
        """Evaluate one criterion against the active layer"""

    async def close(self) -> None:
        """Release session resources"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
