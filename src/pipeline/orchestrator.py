"""
Pipeline Orchestrator

Drives one user workflow through the four stages:

    upload -> background_removed -> style_chosen -> synthesized

Every transition is checked by the StepGate before it mutates anything,
provider calls go through the RetryPolicy under the workflow's
cancellation token, and the generation request is priced by the
CostLedger before any provider spend.

One orchestrator per workflow. Transitions on the same instance are
strictly sequential; a second call while one is outstanding is rejected.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, Union

from src.core.cancellation import CancellationToken
from src.core.exceptions import (
    BudgetExceededError,
    ProviderPermanentError,
    TransitionInProgressError,
    ValidationError,
)
from src.core.logging import get_logger, with_logging
from src.core.metrics import (
    record_budget_rejection,
    record_workflow_completion,
    track_stage_latency,
)
from src.core.storage import ArtifactSink
from src.engines.generation.costs import CostLedger, ModelSelector
from src.engines.generation.gate import StepGate
from src.engines.generation.prompts import PromptResolver
from src.engines.generation.retry import RetryPolicy
from src.engines.generation.tuning import ParamTuner
from src.modules.background.catalog import Catalog
from src.modules.background.models import (
    ComplexitySignal,
    GenerationRequest,
    PipelineState,
    QualityTier,
    Stage,
    SynthesisResult,
)
from src.pipeline.stages import REMOVE_BACKGROUND, SYNTHESIZE, ProviderAdapter

logger = get_logger(__name__)

DEFAULT_SEED = 206554476


class PipelineOrchestrator:

    def __init__(
        self,
        catalog: Catalog,
        provider: ProviderAdapter,
        retry_policy: Optional[RetryPolicy] = None,
        sink: Optional[ArtifactSink] = None,
        default_seed: int = DEFAULT_SEED,
        state: Optional[PipelineState] = None
    ):
        self.catalog = catalog
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.sink = sink
        self.default_seed = default_seed

        self.gate = StepGate()
        self.prompts = PromptResolver(catalog)
        self.tuner = ParamTuner(catalog)
        self.selector = ModelSelector(catalog)
        self.ledger = CostLedger(catalog)

        self._state = state or PipelineState()
        self._token = CancellationToken()
        self._running: Optional[str] = None
        self._running_token: Optional[CancellationToken] = None
        self.last_request: Optional[GenerationRequest] = None
        self.last_storage_key: Optional[str] = None

    # =========================================================================
    # Read-only surface
    # =========================================================================

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def workflow_id(self) -> str:
        return self._state.workflow_id

    @property
    def busy(self) -> bool:
        """True while a transition that has not been aborted is outstanding."""
        return self._running is not None and not self._running_token.cancelled

    def is_stage_complete(self, stage: Union[Stage, int]) -> bool:
        return self.gate.is_stage_complete(stage, self._state)

    def can_advance_to(self, stage: Union[Stage, int]) -> bool:
        return self.gate.can_advance_to(stage, self._state)

    # =========================================================================
    # Internals
    # =========================================================================

    @contextmanager
    def _transition(self, name: str):
        if self.busy:
            raise TransitionInProgressError(self._running, workflow_id=self.workflow_id)
        token = self._token
        self._running = name
        self._running_token = token
        try:
            yield token
        finally:
            # An aborted transition may finish after a newer one has started
            if self._running_token is token:
                self._running = None
                self._running_token = None

    def _require(self, target: Stage):
        missing = self.gate.first_incomplete_prerequisite(target, self._state)
        if missing is not None:
            raise ValidationError(
                f"Cannot advance to '{target.label}': stage '{missing.label}' is not complete",
                stage=missing.label,
                workflow_id=self.workflow_id,
                details={"target": target.label, "missing": missing.label}
            )

    def _require_not_past(self, stage: Stage, action: str):
        if self._state.stage > stage:
            raise ValidationError(
                f"Cannot {action} once the workflow reached '{self._state.stage.label}'; reset first",
                stage=self._state.stage.label,
                workflow_id=self.workflow_id
            )

    def _commit(self, **changes):
        changes["updated_at"] = datetime.now(timezone.utc)
        self._state = self._state.model_copy(update=changes)

    def _add_cost(self, cost: Optional[Decimal]) -> Decimal:
        return self._state.total_cost + (cost or Decimal("0"))

    def _record_upload(self, image_ref: str):
        if not image_ref or not image_ref.strip():
            raise ValidationError(
                "An image reference is required",
                stage=Stage.UPLOAD.label,
                workflow_id=self.workflow_id
            )
        self._require_not_past(Stage.UPLOAD, "replace the uploaded image")
        self._commit(uploaded_image_ref=image_ref.strip())
        logger.info("image_submitted", workflow_id=self.workflow_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit_image(self, image_ref: str) -> PipelineState:
        """Record the uploaded source image. Replaces an earlier upload until removal has run."""
        with self._transition("upload"):
            self._record_upload(image_ref)
        return self._state

    @with_logging("background_removal")
    async def submit_for_background_removal(self, image_ref: Optional[str] = None) -> PipelineState:
        """
        Upload -> BackgroundRemoved.

        Args:
            image_ref: Source image; optional when submit_image() already ran

        Raises:
            ValidationError: no uploaded image, or removal already done
            ProviderError: the removal call failed for good; stage unchanged
            OperationCancelledError: abort() was called while waiting
        """
        with self._transition("background_removal") as token:
            if image_ref is not None:
                self._record_upload(image_ref)
            self._require(Stage.BACKGROUND_REMOVED)
            self._require_not_past(Stage.UPLOAD, "remove the background again")

            source = self._state.uploaded_image_ref
            profile = self.catalog.removal

            with track_stage_latency("background_removal"):
                result = await self.retry_policy.execute(
                    lambda: self.provider.remove_background(source, profile),
                    token=token,
                    operation_name=REMOVE_BACKGROUND
                )

            token.raise_if_cancelled()
            self._commit(
                removed_bg_image_ref=result.image_url,
                stage=Stage.BACKGROUND_REMOVED,
                total_cost=self._add_cost(result.cost),
            )
            logger.info("background_removal_completed", cost=str(result.cost))
        return self._state

    def choose_style(
        self,
        style: Union[Enum, str, None] = None,
        custom_prompt: Optional[str] = None
    ) -> PipelineState:
        """
        BackgroundRemoved -> StyleChosen. Local only, no provider call.

        May be called again to change the choice until synthesis has run.
        A custom prompt takes precedence over the style at resolve time.
        """
        with self._transition("style"):
            self._require(Stage.STYLE_CHOSEN)
            self._require_not_past(Stage.STYLE_CHOSEN, "change the style")

            if isinstance(style, Enum):
                style = style.value
            selected = style.strip().lower() if isinstance(style, str) and style.strip() else None
            prompt = custom_prompt if custom_prompt and custom_prompt.strip() else None

            if selected is None and prompt is None:
                raise ValidationError(
                    "Choose a background style or enter a custom prompt",
                    stage=Stage.STYLE_CHOSEN.label,
                    workflow_id=self.workflow_id
                )

            self._commit(
                selected_style=selected,
                custom_prompt=prompt,
                stage=Stage.STYLE_CHOSEN,
            )
            logger.info(
                "style_chosen",
                workflow_id=self.workflow_id,
                style=selected,
                custom_prompt=prompt is not None
            )
        return self._state

    def build_request(
        self,
        quality_tier: Union[QualityTier, str] = QualityTier.STANDARD,
        budget_tier: str = "medium",
        complexity: Union[ComplexitySignal, str, None] = None,
        seed: Optional[int] = None
    ) -> GenerationRequest:
        """
        Resolve prompt, pick and price the model, tune parameters.

        Raises:
            BudgetExceededError: the selected model is above the tier limit
            ValidationError: unknown quality or budget tier
        """
        snapshot = self._state
        prompt = self.prompts.resolve(snapshot.selected_style, snapshot.custom_prompt)

        budget = self.ledger.budget_for(budget_tier)
        model_id = self.selector.select(quality_tier, budget.limit)
        try:
            self.ledger.authorize(model_id, budget.tier)
        except BudgetExceededError as e:
            record_budget_rejection(budget.tier.value, model_id)
            logger.warning("budget_exceeded", workflow_id=self.workflow_id, **e.details)
            raise

        params = self.tuner.tune(self.tuner.profile_for_model(model_id), complexity)

        return GenerationRequest(
            model_id=model_id,
            prompt=prompt,
            steps=params.steps,
            guidance_scale=params.guidance_scale,
            seed=self.default_seed if seed is None else seed,
            output_format=params.output_format,
            output_type=params.output_type,
            output_quality=params.output_quality,
            number_results=params.number_results,
            check_nsfw=params.check_nsfw,
            include_cost=params.include_cost,
            provider_settings=params.provider_settings,
            seed_image=snapshot.uploaded_image_ref,
            mask_image=snapshot.removed_bg_image_ref,
        )

    @with_logging("synthesis")
    async def generate_background(
        self,
        quality_tier: Union[QualityTier, str] = QualityTier.STANDARD,
        budget_tier: str = "medium",
        complexity: Union[ComplexitySignal, str, None] = None,
        seed: Optional[int] = None
    ) -> PipelineState:
        """
        StyleChosen -> Synthesized.

        The budget is checked before the provider is contacted; a rejected
        budget leaves the workflow at StyleChosen with nothing spent.

        Raises:
            ValidationError: a prerequisite stage is incomplete or the workflow is finished
            BudgetExceededError: see build_request()
            ProviderError: the synthesis call failed for good; stage unchanged
            OperationCancelledError: abort() was called while waiting
            StorageError: the workflow record could not be persisted (stage already advanced)
        """
        with self._transition("synthesis") as token:
            self._require(Stage.SYNTHESIZED)
            self._require_not_past(Stage.STYLE_CHOSEN, "generate again")

            request = self.build_request(quality_tier, budget_tier, complexity, seed)
            self.last_request = request
            logger.info(
                "synthesis_authorized",
                model_id=request.model_id,
                budget_tier=str(budget_tier),
                steps=request.steps,
                guidance_scale=request.guidance_scale
            )

            async def attempt() -> SynthesisResult:
                result = await self.provider.synthesize(request)
                if result.nsfw:
                    raise ProviderPermanentError(
                        "Generated image was rejected by the content filter",
                        details={"task_uuid": request.task_uuid}
                    )
                return result

            with track_stage_latency("synthesis"):
                result = await self.retry_policy.execute(
                    attempt,
                    token=token,
                    operation_name=SYNTHESIZE
                )

            token.raise_if_cancelled()
            self._commit(
                final_image_ref=result.image_url,
                stage=Stage.SYNTHESIZED,
                model_id=request.model_id,
                total_cost=self._add_cost(result.cost),
            )
            record_workflow_completion(QualityTier(quality_tier).value)
            logger.info(
                "synthesis_completed",
                model_id=request.model_id,
                cost=str(result.cost),
                total_cost=str(self._state.total_cost)
            )

            if self.sink is not None:
                self.last_storage_key = await self.sink.persist(self.workflow_record())
        return self._state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def abort(self, reason: str = "workflow abandoned"):
        """
        Cancel the outstanding provider call or retry delay, if any.

        The aborted transition stops counting as in progress right away, so
        reset() or a new transition may follow without awaiting it. Its
        result is discarded; it never commits to the workflow state.
        """
        logger.info("workflow_abort_requested", workflow_id=self.workflow_id, reason=reason)
        self._token.cancel(reason)
        # Later transitions get a live token; the aborted one keeps the fired token
        self._token = CancellationToken()

    def reset(self) -> PipelineState:
        """Back to Upload with every artifact cleared, as a new workflow."""
        if self.busy:
            raise TransitionInProgressError(self._running, workflow_id=self.workflow_id)
        previous = self.workflow_id
        self._state = PipelineState()
        self._token = CancellationToken()
        self.last_request = None
        self.last_storage_key = None
        logger.info("workflow_reset", previous_workflow_id=previous, workflow_id=self.workflow_id)
        return self._state

    def workflow_record(self) -> Dict[str, Any]:
        """Serializable summary handed to the artifact sink."""
        record = self._state.model_dump(mode="json")
        record["stage"] = self._state.stage.label
        if self.last_request is not None:
            record["request"] = self.last_request.model_dump(
                mode="json",
                include={"task_uuid", "model_id", "steps", "guidance_scale", "seed", "prompt"}
            )
        return record
