"""
Background Generation Data Model

Pipeline state plus the immutable value objects passed between the
policy components and the provider adapters.
"""

import uuid
from enum import Enum, IntEnum
from decimal import Decimal
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Optional, Dict, Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def freeze(value: Any) -> Any:
    """Read-only copy of nested dicts and lists (mappingproxy / tuple)."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Plain dict/list copy of a frozen value, for serialization."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


class Stage(IntEnum):
    """The four ordered pipeline stages."""
    UPLOAD = 0
    BACKGROUND_REMOVED = 1
    STYLE_CHOSEN = 2
    SYNTHESIZED = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class QualityTier(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class BudgetTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PREMIUM = "premium"


class BackgroundCategory(str, Enum):
    STUDIO = "studio"
    OFFICE = "office"
    OUTDOOR = "outdoor"
    ABSTRACT = "abstract"


class PipelineState(BaseModel):
    """
    Snapshot of one user workflow.

    Immutable: the orchestrator replaces the whole snapshot on every
    transition (``model_copy(update=...)``), so any snapshot handed out
    stays valid for gate queries.
    """
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    workflow_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    stage: Stage = Stage.UPLOAD

    uploaded_image_ref: Optional[str] = None
    removed_bg_image_ref: Optional[str] = None
    selected_style: Optional[str] = None
    custom_prompt: Optional[str] = None
    final_image_ref: Optional[str] = None

    # Informational, filled by the orchestrator
    model_id: Optional[str] = None
    total_cost: Decimal = Decimal("0")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def progress(self) -> float:
        """Fraction of stages whose artifact exists (0.0 - 1.0)."""
        done = [
            bool(self.uploaded_image_ref),
            bool(self.removed_bg_image_ref),
            bool(self.selected_style or (self.custom_prompt or "").strip()),
            bool(self.final_image_ref),
        ]
        return sum(done) / len(done)


class ModelProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    unit_cost: Decimal = Field(..., ge=0, allow_inf_nan=False)
    quality_tier: QualityTier = QualityTier.STANDARD


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: BackgroundCategory
    positive: str = Field(..., min_length=1)
    negative: str = Field(..., min_length=1)


class PromptPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    positive: str
    negative: str


class ComplexitySignal(BaseModel):
    """Hint about how visually busy the source image is ("high" or anything else)."""
    model_config = ConfigDict(frozen=True)

    complexity: str = "normal"

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize(cls, value: Any) -> str:
        return str(value or "normal").strip().lower()


class ParamProfile(BaseModel):
    """Base generation parameters for one quality tier."""
    model_config = ConfigDict(frozen=True)

    steps: int = Field(..., ge=1)
    guidance_scale: float = Field(..., gt=0)
    output_format: str = "PNG"
    output_type: str = "URL"
    output_quality: int = Field(default=95, ge=1, le=100)
    number_results: int = 1
    check_nsfw: bool = False
    include_cost: bool = True
    provider_settings: Dict[str, Any] = Field(default_factory=dict)


class RemovalProfile(BaseModel):
    """Request settings for the background-removal call."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    output_format: str = "PNG"
    output_type: str = "URL"
    output_quality: int = Field(default=95, ge=1, le=100)
    settings: Dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """
    One synthesis call. Built fresh per call and never mutated afterwards.

    ``task_uuid`` is fixed at construction, so every retry of the same
    request carries the same id.
    """
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    task_uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    model_id: str
    prompt: PromptPair
    steps: int
    guidance_scale: float
    seed: int
    output_format: str = "PNG"
    output_type: str = "URL"
    output_quality: int = 95
    number_results: int = 1
    check_nsfw: bool = False
    include_cost: bool = True
    provider_settings: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    # Source artifacts for inpainting
    seed_image: Optional[str] = None
    mask_image: Optional[str] = None

    @field_validator("provider_settings", mode="after")
    @classmethod
    def freeze_provider_settings(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return freeze(value)

    @field_serializer("provider_settings")
    def dump_provider_settings(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        return thaw(value)


class CostBudget(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: BudgetTier
    limit: Decimal


class RetryState(BaseModel):
    """Progress of one retried provider call."""
    attempt: int = 0
    max_attempts: int = 3
    delay: float = 2.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class RemovalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_url: str
    cost: Optional[Decimal] = None
    task_uuid: Optional[str] = None


class SynthesisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_url: str
    cost: Optional[Decimal] = None
    nsfw: bool = False
    seed: Optional[int] = None
    task_uuid: Optional[str] = None
