"""
Layer Quality Pipeline

Runs the fixed battery of quality criteria against catalog layers through a
TargetAdapter, compares the outcomes to the expectation baseline and hands
the complete batch to the checkpoint recorder.

Each layer run is isolated: its own adapter session, its own time budget,
and failures that stay inside the run. Criteria within a run execute
strictly in order because they share session state.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import config
from shared_schema import CriterionResult, Criteria, LayerConfig, QualityCheckResult, utc_timestamp
from services.target_adapter import SessionLostError, TargetAdapter
from tracking.checkpoint_recorder import CheckpointRecorder
from validation.expectation_comparator import mismatches, summarize_batch
from validation.timeout_estimator import TimeoutEstimator

logger = logging.getLogger(__name__)

DISABLED_MESSAGE = "skipped (disabled by policy)"
UNTESTED_MESSAGE = "skipped (untested)"
NOT_APPLICABLE_MESSAGE = "skipped (not applicable)"
FULL_OPACITY = 100

AdapterFactory = Callable[[], TargetAdapter]


class QualityCheckOrchestrator:
    """
    Executes the criteria battery for one layer against one adapter session.

    Failure semantics:
    - an exception while evaluating one criterion fails only that criterion
    - SessionLostError (or any error outside a criterion) aborts the run and
      fails every criterion not yet executed
    - the whole run is bounded by a time budget; on expiry the remaining
      criteria are failed and completed ones are kept
    """

    def __init__(self, enabled_criteria: Optional[Iterable[str]] = None,
                 timeout_estimator: Optional[TimeoutEstimator] = None,
                 default_category: Optional[str] = None):
        """
        Args:
            enabled_criteria: Criterion keys to evaluate (all but config.DISABLED_CRITERIA if None)
            timeout_estimator: Budget source for runs without an explicit timeout
            default_category: Category selected for layers without categories
        """
        if enabled_criteria is None:
            enabled_criteria = [c for c in Criteria.ORDERED if c not in config.DISABLED_CRITERIA]

        enabled = set(enabled_criteria)
        unknown = sorted(enabled - set(Criteria.ORDERED))
        if unknown:
            raise ValueError(f"Unknown criteria: {unknown}")

        self.enabled_criteria = frozenset(enabled)
        self.timeout_estimator = timeout_estimator or TimeoutEstimator.from_config()
        self.default_category = default_category or config.DEFAULT_CATEGORY

    def mark_disabled(self, result: QualityCheckResult) -> None:
        for criterion in Criteria.ORDERED:
            if criterion not in self.enabled_criteria and result.tests[criterion] is None:
                result.tests[criterion] = CriterionResult.skip(DISABLED_MESSAGE, "disabled")

    async def run(self, layer: LayerConfig, adapter: TargetAdapter,
                  timeout_ms: Optional[int] = None) -> QualityCheckResult:
        """
        Run every criterion for one layer.

        Args:
            layer: Layer identity and expectation baseline
            adapter: Session dedicated to this run
            timeout_ms: Budget for the whole run (estimated from the layer if None)

        Returns:
            Result in which every criterion holds a CriterionResult
        """
        if timeout_ms is None:
            timeout_ms = self.timeout_estimator.estimate_for_layer(layer)

        result = QualityCheckResult.pending(layer)
        self.mark_disabled(result)

        start_time = time.time()
        logger.info(f"Checking '{layer.title}' with a {timeout_ms / 1000:g}s budget", extra={"layer_id": layer.id})

        try:
            await asyncio.wait_for(self._execute(layer, adapter, result), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            message = f"skipped due to timeout after {timeout_ms / 1000:g}s"
            converted = result.fail_pending(message, f"Run exceeded {timeout_ms}ms budget")
            logger.error(f"Timeout for '{layer.title}', {len(converted)} criteria not executed",
                         extra={"layer_id": layer.id})
        except Exception as e:
            converted = result.fail_pending(f"skipped due to fatal error: {e}", str(e))
            logger.error(f"Fatal error for '{layer.title}': {e}, {len(converted)} criteria not executed",
                         extra={"layer_id": layer.id}, exc_info=True)

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Finished '{layer.title}': {result.passed_count}/{len(result.tests)} passed",
            extra={"layer_id": layer.id, "duration_ms": result.duration_ms}
        )
        return result

    async def _execute(self, layer: LayerConfig, adapter: TargetAdapter, result: QualityCheckResult) -> None:
        await self._setup(layer, adapter)

        for criterion in Criteria.ORDERED:
            if result.tests[criterion] is not None:
                continue

            if layer.expected(criterion) is None:
                result.tests[criterion] = CriterionResult.skip(UNTESTED_MESSAGE, "untested")
                continue

            result.tests[criterion] = await self._evaluate(layer, adapter, criterion)

    async def _setup(self, layer: LayerConfig, adapter: TargetAdapter) -> None:
        """Bring the session to the layer; only a lost session stops the run"""
        category = layer.categories[0] if layer.categories else self.default_category

        await self._setup_step(layer, "select category", adapter.select_category(category))
        found = await self._setup_step(layer, "locate layer", adapter.locate_layer(layer.title))

        if not found:
            logger.warning(f"'{layer.title}' not found in category '{category}'", extra={"layer_id": layer.id})
            return

        await self._setup_step(layer, "activate layer", adapter.activate(layer))
        await self._setup_step(layer, "set opacity", adapter.set_opacity(FULL_OPACITY))

    async def _setup_step(self, layer: LayerConfig, step: str, operation) -> Any:
        try:
            return await operation
        except SessionLostError:
            raise
        except Exception as e:
            logger.warning(f"Setup step '{step}' failed for '{layer.title}': {e}", extra={"layer_id": layer.id})
            return None

    async def _evaluate(self, layer: LayerConfig, adapter: TargetAdapter, criterion: str) -> CriterionResult:
        try:
            outcome = await adapter.evaluate_criterion(criterion)
        except SessionLostError:
            raise
        except Exception as e:
            logger.warning(
                f"{Criteria.LABELS[criterion]} failed for '{layer.title}': {e}",
                extra={"layer_id": layer.id, "criterion": criterion}
            )
            return CriterionResult.failure(str(e) or type(e).__name__)

        if outcome is None:
            return CriterionResult.skip(NOT_APPLICABLE_MESSAGE, "not_applicable")

        logger.debug(
            f"{Criteria.LABELS[criterion]}: {'PASS' if outcome.passed else 'FAIL'} - {outcome.message}",
            extra={"layer_id": layer.id, "criterion": criterion}
        )
        return outcome


async def run_batch(layers: Sequence[LayerConfig], adapter_factory: AdapterFactory,
                    orchestrator: Optional[QualityCheckOrchestrator] = None,
                    max_parallel: Optional[int] = None) -> List[QualityCheckResult]:
    """
    Run many layers concurrently, one fresh adapter session per layer.

    Args:
        layers: Layers to check
        adapter_factory: Zero-argument callable returning a new TargetAdapter
        orchestrator: Shared, stateless orchestrator (default policy if None)
        max_parallel: Sessions open at once (config.MAX_PARALLEL_LAYERS if None)

    Returns:
        One result per layer, in input order
    """
    orchestrator = orchestrator or QualityCheckOrchestrator()
    limit = max_parallel or config.MAX_PARALLEL_LAYERS
    if limit < 1:
        raise ValueError(f"max_parallel must be at least 1, got {limit}")
    semaphore = asyncio.Semaphore(limit)

    async def run_isolated(layer: LayerConfig) -> QualityCheckResult:
        async with semaphore:
            try:
                adapter = adapter_factory()
            except Exception as e:
                logger.error(f"Could not open a session for '{layer.title}': {e}", extra={"layer_id": layer.id})
                result = QualityCheckResult.pending(layer)
                orchestrator.mark_disabled(result)
                result.fail_pending(f"skipped due to fatal error: {e}", str(e))
                return result

            try:
                return await orchestrator.run(layer, adapter)
            finally:
                try:
                    await adapter.close()
                except Exception as e:
                    logger.warning(f"Failed to close session for '{layer.title}': {e}", extra={"layer_id": layer.id})

    logger.info(f"Running {len(layers)} layers with up to {limit} parallel sessions")
    return list(await asyncio.gather(*(run_isolated(layer) for layer in layers)))


class LayerQualityPipeline:
    """
    Batch workflow: run every layer, compare with the baseline, record a checkpoint.
    """

    def __init__(self, adapter_factory: AdapterFactory, recorder: Optional[CheckpointRecorder] = None,
                 orchestrator: Optional[QualityCheckOrchestrator] = None,
                 max_parallel: Optional[int] = None):
        self.adapter_factory = adapter_factory
        self.recorder = recorder or CheckpointRecorder()
        self.orchestrator = orchestrator or QualityCheckOrchestrator()
        self.max_parallel = max_parallel or config.MAX_PARALLEL_LAYERS

        disabled = [c for c in Criteria.ORDERED if c not in self.orchestrator.enabled_criteria]
        logger.info(
            f"Pipeline initialized - parallel sessions: {self.max_parallel}, "
            f"disabled criteria: {', '.join(disabled) or 'none'}"
        )

    async def run(self, layers: Sequence[LayerConfig], record: bool = True) -> Dict[str, Any]:
        """
        Execute one checkpoint run.

        Args:
            layers: Layers to check, each with its expectation baseline
            record: Persist the batch to the ledger and snapshot store

        Returns:
            Dictionary with the results, accuracy summary, mismatches and checkpoint record
        """
        if not layers:
            raise ValueError("No layers to check")

        run_timestamp = utc_timestamp()
        start_time = time.time()

        results = await run_batch(layers, self.adapter_factory, self.orchestrator, self.max_parallel)

        layers_by_id = {layer.id: layer for layer in layers}
        accuracy = summarize_batch(results, layers)

        output = {
            'run_timestamp': run_timestamp,
            'results': results,
            'accuracy': accuracy,
            'mismatches': {
                result.layer_id: mismatches(result, layers_by_id[result.layer_id])
                for result in results
            },
            'record': None,
            'summary': {
                'total_layers': len(results),
                'aborted_layers': len([r for r in results if r.error]),
                'accuracy': accuracy.accuracy,
                'processing_time_ms': int((time.time() - start_time) * 1000),
            }
        }

        if record:
            output['record'] = self.recorder.record(results, layers=layers, run_timestamp=run_timestamp)

        summary = output['summary']
        logger.info(
            f"Checkpoint run complete: {summary['total_layers']} layers, "
            f"{summary['aborted_layers']} aborted, accuracy {summary['accuracy'] * 100:.1f}%",
            extra={"run_timestamp": run_timestamp, "duration_ms": summary['processing_time_ms']}
        )
        return output
