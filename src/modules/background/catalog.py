"""
Static Catalogs

Model table, budget-tier limits, prompt templates and base parameter
profiles. Built once at startup (from the defaults below or a JSON file)
and handed to the policy components by reference.
"""

from decimal import Decimal
from pathlib import Path
from typing import Annotated, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.logging import get_logger
from src.modules.background.models import (
    BackgroundCategory,
    BudgetTier,
    ModelProfile,
    ParamProfile,
    PromptTemplate,
    QualityTier,
    RemovalProfile,
)

logger = get_logger(__name__)


class Catalog(BaseModel):
    """Immutable configuration shared by every workflow in the process."""
    model_config = ConfigDict(frozen=True)

    models: Dict[str, ModelProfile]
    primary_model_id: str
    premium_model_id: str
    budget_limits: Dict[BudgetTier, Annotated[Decimal, Field(ge=0, allow_inf_nan=False)]]
    prompts: Dict[BackgroundCategory, PromptTemplate]
    default_category: BackgroundCategory = BackgroundCategory.STUDIO
    param_profiles: Dict[QualityTier, ParamProfile]
    removal: RemovalProfile

    @model_validator(mode="after")
    def check_references(self) -> "Catalog":
        for model_id in (self.primary_model_id, self.premium_model_id, self.removal.model_id):
            if model_id not in self.models:
                raise ValueError(f"Model '{model_id}' is referenced but not in the model catalog")

        missing_tiers = set(BudgetTier) - set(self.budget_limits)
        if missing_tiers:
            raise ValueError(f"Budget limits missing for tiers: {sorted(t.value for t in missing_tiers)}")

        if self.default_category not in self.prompts:
            raise ValueError(f"Default prompt category '{self.default_category.value}' has no template")

        missing_profiles = set(QualityTier) - set(self.param_profiles)
        if missing_profiles:
            raise ValueError(f"Parameter profiles missing for: {sorted(t.value for t in missing_profiles)}")

        return self

    def model_cost(self, model_id: str) -> Decimal:
        try:
            return self.models[model_id].unit_cost
        except KeyError:
            raise KeyError(f"Unknown model id: {model_id}") from None

    def budget_limit(self, tier: Union[BudgetTier, str]) -> Decimal:
        return self.budget_limits[BudgetTier(tier)]

    @property
    def default_prompt(self) -> PromptTemplate:
        return self.prompts[self.default_category]


# =============================================================================
# Built-in Defaults
# =============================================================================

DEFAULT_CATALOG_DATA = {
    "models": {
        "runware:102@1": {"id": "runware:102@1", "unit_cost": "0.05", "quality_tier": "standard"},
        "bfl:1@2": {"id": "bfl:1@2", "unit_cost": "0.12", "quality_tier": "premium"},
        "runware:109@1": {"id": "runware:109@1", "unit_cost": "0.02", "quality_tier": "standard"},
        "civitai:403361@456538": {"id": "civitai:403361@456538", "unit_cost": "0.02", "quality_tier": "standard"},
    },
    "primary_model_id": "runware:102@1",
    "premium_model_id": "bfl:1@2",
    "budget_limits": {
        "low": "0.03",
        "medium": "0.08",
        "high": "0.15",
        "premium": "0.25",
    },
    "prompts": {
        "studio": {
            "category": "studio",
            "positive": (
                "professional product photography studio background, super-realistic, "
                "clean minimalist white backdrop with subtle gradient, soft diffused lighting "
                "from above at 45-degree angle, key light with fill light setup reducing harsh "
                "shadows, gentle soft shadows beneath the product, bright even illumination "
                "highlighting natural texture details"
            ),
            "negative": (
                "blurry, low quality, distorted, artifacts, noise, oversaturated, amateur, "
                "cluttered background, harsh shadows, overexposed, underexposed, "
                "distracting elements, poor lighting"
            ),
        },
        "office": {
            "category": "office",
            "positive": (
                "modern professional office environment background, super-realistic, clean "
                "organized workspace with natural lighting, contemporary furniture, subtle depth "
                "of field, professional business setting, bright even illumination, minimalist "
                "design elements"
            ),
            "negative": (
                "messy, cluttered, unprofessional, poor lighting, distracting elements, blurry, "
                "low quality, harsh shadows, overexposed, underexposed"
            ),
        },
        "outdoor": {
            "category": "outdoor",
            "positive": (
                "natural outdoor background, super-realistic, beautiful landscape with "
                "professional photography lighting, soft natural illumination, perfect depth of "
                "field, serene environment, high-quality nature setting with balanced exposure"
            ),
            "negative": (
                "overexposed, underexposed, blurry, low quality, distracting elements, harsh "
                "shadows, noise, artificial lighting, poor composition"
            ),
        },
        "abstract": {
            "category": "abstract",
            "positive": (
                "clean abstract background, super-realistic, modern minimalist design with "
                "smooth gradients, professional artistic composition, subtle color transitions, "
                "high-quality digital art, perfect lighting balance"
            ),
            "negative": (
                "busy, cluttered, distracting, low quality, harsh patterns, noise, artifacts, "
                "oversaturated, poor color balance"
            ),
        },
    },
    "default_category": "studio",
    "param_profiles": {
        "standard": {
            "steps": 40,
            "guidance_scale": 7.5,
            "output_format": "PNG",
            "output_type": "URL",
            "output_quality": 95,
            "number_results": 1,
            "check_nsfw": False,
            "include_cost": True,
        },
        "premium": {
            "steps": 50,
            "guidance_scale": 12.0,
            "output_format": "PNG",
            "output_type": "URL",
            "output_quality": 95,
            "number_results": 1,
            "check_nsfw": False,
            "include_cost": True,
            "provider_settings": {
                "bfl": {
                    "promptUpsampling": True,
                    "safetyTolerance": 2,
                },
            },
        },
    },
    "removal": {
        "model_id": "runware:109@1",
        "output_format": "PNG",
        "output_type": "URL",
        "output_quality": 95,
        "settings": {
            "returnOnlyMask": True,
            "postProcessMask": True,
            "alphaMatting": True,
            "alphaMattingForegroundThreshold": 240,
            "alphaMattingBackgroundThreshold": 15,
            "alphaMattingErodeSize": 8,
            "rgba": [255, 255, 255, 0],
        },
    },
}


def load_catalog(path: Optional[Union[str, Path]] = None) -> Catalog:
    """
    Build the process-wide catalog.

    Args:
        path: Optional JSON file with the same shape as DEFAULT_CATALOG_DATA.
              When omitted the built-in defaults are used.

    Raises:
        pydantic.ValidationError: the file does not describe a consistent catalog
    """
    if path is None:
        catalog = Catalog.model_validate(DEFAULT_CATALOG_DATA)
        source = "builtin"
    else:
        path = Path(path)
        catalog = Catalog.model_validate_json(path.read_text(encoding="utf-8"))
        source = str(path)

    logger.info(
        "catalog_loaded",
        source=source,
        models=len(catalog.models),
        prompt_categories=len(catalog.prompts),
    )
    return catalog
