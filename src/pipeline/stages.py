"""
Provider Adapters

The two remote operations the pipeline depends on, background removal and
background synthesis (inpainting around the product mask), behind one
interface. RunwareProvider talks to the Runware inference API; the
simulated provider returns deterministic results for development without
network access.

Adapters only translate and classify: every failure is raised as a
ProviderTransientError, ProviderPermanentError or UnknownProviderResponseError
so the retry policy can decide what to do with it.
"""

import uuid
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Protocol

import httpx

from src.core.logging import get_logger
from src.core.metrics import record_provider_call, record_provider_cost
from src.core.exceptions import (
    ProviderError,
    ProviderTransientError,
    ProviderPermanentError,
    UnknownProviderResponseError,
)
from src.modules.background.catalog import Catalog
from src.modules.background.models import (
    GenerationRequest,
    RemovalProfile,
    RemovalResult,
    SynthesisResult,
    thaw,
)

logger = get_logger(__name__)

REMOVE_BACKGROUND = "remove_background"
SYNTHESIZE = "synthesize"
NO_NEGATIVE_PROMPT_PREFIX = "bfl:"


class ProviderAdapter(Protocol):
    """Capability the orchestrator consumes."""

    async def remove_background(self, image_ref: str, profile: RemovalProfile) -> RemovalResult:
        ...

    async def synthesize(self, request: GenerationRequest) -> SynthesisResult:
        ...


def _parse_cost(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def build_removal_task(image_ref: str, profile: RemovalProfile) -> Dict[str, Any]:
    return {
        "taskType": "imageBackgroundRemoval",
        "taskUUID": str(uuid.uuid4()),
        "inputImage": image_ref,
        "model": profile.model_id,
        "outputFormat": profile.output_format,
        "outputType": profile.output_type,
        "outputQuality": profile.output_quality,
        "includeCost": True,
        "settings": dict(profile.settings),
    }


def build_synthesis_task(request: GenerationRequest) -> Dict[str, Any]:
    task = {
        "taskType": "imageInference",
        "taskUUID": request.task_uuid,
        "model": request.model_id,
        "positivePrompt": request.prompt.positive,
        "steps": request.steps,
        "CFGScale": request.guidance_scale,
        "outputFormat": request.output_format,
        "outputType": request.output_type,
        "outputQuality": request.output_quality,
        "numberResults": request.number_results,
        "seed": request.seed,
        "checkNSFW": request.check_nsfw,
        "includeCost": request.include_cost,
    }
    # BFL models reject negativePrompt
    if request.prompt.negative and not request.model_id.startswith(NO_NEGATIVE_PROMPT_PREFIX):
        task["negativePrompt"] = request.prompt.negative
    if request.seed_image:
        task["seedImage"] = request.seed_image
    if request.mask_image:
        task["maskImage"] = request.mask_image
    if request.provider_settings:
        task["providerSettings"] = thaw(request.provider_settings)
    return task


# =============================================================================
# Runware Inference API
# =============================================================================

class RunwareProvider:
    """
    httpx based adapter for the Runware task API.

    One task per POST; the response carries either ``data`` (task results)
    or ``errors``.
    """

    SERVICE = "runware"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        if not api_key:
            raise ValueError("RunwareProvider requires an API key")
        self.api_url = api_url
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RunwareProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def remove_background(self, image_ref: str, profile: RemovalProfile) -> RemovalResult:
        task = build_removal_task(image_ref, profile)
        logger.info("remove_background_requested", model=profile.model_id, task_uuid=task["taskUUID"])

        result = await self._run_task(REMOVE_BACKGROUND, task)
        removal = RemovalResult(
            image_url=result["imageURL"],
            cost=_parse_cost(result.get("cost")),
            task_uuid=task["taskUUID"],
        )
        record_provider_cost(profile.model_id, removal.cost)
        return removal

    async def synthesize(self, request: GenerationRequest) -> SynthesisResult:
        task = build_synthesis_task(request)
        logger.info(
            "synthesis_requested",
            model=request.model_id,
            task_uuid=request.task_uuid,
            steps=request.steps,
            guidance_scale=request.guidance_scale
        )

        result = await self._run_task(SYNTHESIZE, task)
        synthesis = SynthesisResult(
            image_url=result["imageURL"],
            cost=_parse_cost(result.get("cost")),
            nsfw=bool(result.get("NSFWContent", False)),
            seed=result.get("seed"),
            task_uuid=request.task_uuid,
        )
        record_provider_cost(request.model_id, synthesis.cost)
        return synthesis

    async def _run_task(self, operation: str, task: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self._post(operation, task)
        except ProviderTransientError:
            record_provider_call(operation, "transient")
            raise
        except UnknownProviderResponseError as e:
            record_provider_call(operation, "unknown")
            logger.error("provider_unknown_response", operation=operation, error=e.message)
            raise
        except ProviderError:
            record_provider_call(operation, "permanent")
            raise

        record_provider_call(operation, "success")
        return result

    async def _post(self, operation: str, task: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(self.api_url, json=[task], headers=self._headers)
        except httpx.TimeoutException:
            raise ProviderTransientError(
                f"Runware {operation} timed out",
                service=self.SERVICE
            )
        except httpx.TransportError as e:
            raise ProviderTransientError(
                f"Runware {operation} network error: {e}",
                service=self.SERVICE
            )

        status = response.status_code
        if status == 429 or status >= 500:
            raise ProviderTransientError(
                f"Runware {operation} unavailable (HTTP {status})",
                service=self.SERVICE,
                http_status=status
            )
        if status >= 400:
            raise ProviderPermanentError(
                f"Runware {operation} rejected the request (HTTP {status}): {response.text[:300]}",
                service=self.SERVICE,
                http_status=status
            )

        try:
            body = response.json()
        except ValueError:
            raise UnknownProviderResponseError(
                f"Runware {operation} returned a non-JSON body",
                service=self.SERVICE,
                http_status=status,
                body=response.text
            )

        if not isinstance(body, dict):
            raise UnknownProviderResponseError(
                f"Runware {operation} returned an unexpected body",
                service=self.SERVICE,
                http_status=status,
                body=body
            )

        errors = body.get("errors") or body.get("error")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            message = first.get("message", str(first)) if isinstance(first, dict) else str(first)
            raise ProviderPermanentError(
                f"Runware {operation} failed: {message}",
                service=self.SERVICE,
                http_status=status
            )

        data = body.get("data")
        if not isinstance(data, list) or not data:
            raise UnknownProviderResponseError(
                f"Runware {operation} response has no task data",
                service=self.SERVICE,
                http_status=status,
                body=body
            )

        result = next(
            (item for item in data if isinstance(item, dict) and item.get("taskUUID") == task["taskUUID"]),
            data[0]
        )
        if not isinstance(result, dict) or not result.get("imageURL"):
            raise UnknownProviderResponseError(
                f"Runware {operation} response has no image URL",
                service=self.SERVICE,
                http_status=status,
                body=body
            )
        return result


# =============================================================================
# Simulated Provider for Development/Testing
# =============================================================================

class SimulatedProvider:
    """
    Deterministic stand-in for the remote provider.

    Failures can be scripted per operation; each scripted exception is
    raised by one call, in order, before calls start succeeding.
    """

    def __init__(
        self,
        catalog: Catalog,
        latency: float = 0.0,
        base_url: str = "https://simulated.local"
    ):
        self.catalog = catalog
        self.latency = latency
        self.base_url = base_url
        self.calls: List[tuple] = []
        self._failures: Dict[str, List[Exception]] = {REMOVE_BACKGROUND: [], SYNTHESIZE: []}

    def script_failures(self, operation: str, *errors: Exception):
        self._failures[operation].extend(errors)

    async def _simulate(self, operation: str):
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._failures[operation]:
            error = self._failures[operation].pop(0)
            record_provider_call(
                operation,
                "transient" if isinstance(error, ProviderTransientError) else "permanent"
            )
            raise error
        record_provider_call(operation, "success")

    async def remove_background(self, image_ref: str, profile: RemovalProfile) -> RemovalResult:
        self.calls.append((REMOVE_BACKGROUND, image_ref))
        logger.info("remove_background_simulated", model=profile.model_id)

        await self._simulate(REMOVE_BACKGROUND)

        task_uuid = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{REMOVE_BACKGROUND}:{image_ref}"))
        return RemovalResult(
            image_url=f"{self.base_url}/masks/{task_uuid}.png",
            cost=self.catalog.model_cost(profile.model_id),
            task_uuid=task_uuid,
        )

    async def synthesize(self, request: GenerationRequest) -> SynthesisResult:
        self.calls.append((SYNTHESIZE, request))
        logger.info("synthesis_simulated", model=request.model_id, task_uuid=request.task_uuid)

        await self._simulate(SYNTHESIZE)

        return SynthesisResult(
            image_url=f"{self.base_url}/backgrounds/{request.task_uuid}.png",
            cost=self.catalog.model_cost(request.model_id),
            seed=request.seed,
            task_uuid=request.task_uuid,
        )
