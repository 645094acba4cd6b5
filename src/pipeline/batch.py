"""
Batch Processing

Runs many product images through the pipeline at once: one orchestrator
(and so one workflow) per image, all driven concurrently. A failing image
becomes an error entry in the results; it never fails the whole batch.
"""

import asyncio
import inspect
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel

from src.core.config import Settings, settings as default_settings
from src.core.exceptions import BackgroundGenError
from src.core.logging import get_logger
from src.core.storage import ArtifactSink
from src.modules.background.catalog import Catalog
from src.modules.background.models import PipelineState
from src.pipeline.dependencies import create_orchestrator
from src.pipeline.stages import ProviderAdapter

logger = get_logger(__name__)


class BatchItem(BaseModel):
    """One image plus optional per-image overrides of the batch settings."""
    image_ref: str
    style: Optional[str] = None
    custom_prompt: Optional[str] = None
    quality_tier: Optional[str] = None
    budget_tier: Optional[str] = None


class BatchItemResult(BaseModel):
    index: int
    image_ref: str
    success: bool
    workflow_id: str
    final_image_ref: Optional[str] = None
    model_id: Optional[str] = None
    total_cost: Decimal = Decimal("0")
    error: Optional[Dict[str, Any]] = None


class BatchProgress(BaseModel):
    completed: int
    total: int
    percentage: int
    result: BatchItemResult


ProgressCallback = Callable[[BatchProgress], Any]


def _as_item(entry: Union[str, BatchItem]) -> BatchItem:
    if isinstance(entry, BatchItem):
        return entry
    return BatchItem(image_ref=entry)


def _result(index: int, item: BatchItem, state: PipelineState, error: Optional[BackgroundGenError] = None) -> BatchItemResult:
    return BatchItemResult(
        index=index,
        image_ref=item.image_ref,
        success=error is None,
        workflow_id=state.workflow_id,
        final_image_ref=state.final_image_ref,
        model_id=state.model_id,
        total_cost=state.total_cost,
        error=error.to_dict() if error is not None else None,
    )


async def run_batch(
    image_refs: Sequence[Union[str, BatchItem]],
    style: Optional[str] = None,
    quality_tier: str = "standard",
    budget_tier: str = "medium",
    custom_prompt: Optional[str] = None,
    complexity: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    config: Settings = default_settings,
    catalog: Optional[Catalog] = None,
    provider: Optional[ProviderAdapter] = None,
    sink: Optional[ArtifactSink] = None
) -> List[BatchItemResult]:
    """
    Generate a new background for every image concurrently.

    Args:
        image_refs: Image references, or BatchItem entries overriding the
                    batch-wide style, prompt and tiers for one image
        on_progress: Called (or awaited, if it returns an awaitable) each
                     time an image finishes, in completion order

    Returns:
        One result per input, in input order. Failed images carry the
        error's ``to_dict()`` payload; unexpected exceptions propagate.
    """
    items = [_as_item(entry) for entry in image_refs]
    total = len(items)
    completed = 0

    logger.info("batch_started", total=total, quality_tier=quality_tier, budget_tier=budget_tier)

    async def process(index: int, item: BatchItem) -> BatchItemResult:
        nonlocal completed
        orchestrator = create_orchestrator(config, catalog=catalog, provider=provider, sink=sink)

        try:
            await orchestrator.submit_for_background_removal(item.image_ref)
            orchestrator.choose_style(item.style or style, custom_prompt=item.custom_prompt or custom_prompt)
            await orchestrator.generate_background(
                quality_tier=item.quality_tier or quality_tier,
                budget_tier=item.budget_tier or budget_tier,
                complexity=complexity,
            )
            result = _result(index, item, orchestrator.state)
        except BackgroundGenError as e:
            logger.warning(
                "batch_item_failed",
                index=index,
                workflow_id=orchestrator.workflow_id,
                error_type=type(e).__name__,
                error=e.message
            )
            result = _result(index, item, orchestrator.state, error=e)

        completed += 1
        if on_progress is not None:
            outcome = on_progress(BatchProgress(
                completed=completed,
                total=total,
                percentage=round(completed * 100 / total),
                result=result,
            ))
            if inspect.isawaitable(outcome):
                await outcome
        return result

    results = await asyncio.gather(*(process(i, item) for i, item in enumerate(items)))

    logger.info(
        "batch_completed",
        total=total,
        succeeded=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success)
    )
    return list(results)
