"""
Parameter Tuning

Derives the generation parameters for one request from the base profile of
the chosen quality tier and the source image's complexity signal.
"""

from typing import Union

from src.modules.background.catalog import Catalog
from src.modules.background.models import ComplexitySignal, ParamProfile, QualityTier

# Hard ceilings, applied to every emitted profile
MAX_STEPS = 50
MAX_GUIDANCE_SCALE = 15.0

HIGH_COMPLEXITY_STEP_BONUS = 10
HIGH_COMPLEXITY_GUIDANCE_BONUS = 2.0


class ParamTuner:

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def base_profile(self, quality_tier: Union[QualityTier, str]) -> ParamProfile:
        return self.catalog.param_profiles[QualityTier(quality_tier)]

    def profile_for_model(self, model_id: str) -> ParamProfile:
        """Premium profile for the premium model, standard profile for anything else."""
        if model_id == self.catalog.premium_model_id:
            return self.base_profile(QualityTier.PREMIUM)
        return self.base_profile(QualityTier.STANDARD)

    @staticmethod
    def tune(
        base_profile: ParamProfile,
        complexity_signal: Union[ComplexitySignal, str, None] = None
    ) -> ParamProfile:
        """
        Return a fresh profile; ``base_profile`` is shared and never modified.

        High complexity adds steps and guidance. Either way the result is
        capped at MAX_STEPS / MAX_GUIDANCE_SCALE.
        """
        if not isinstance(complexity_signal, ComplexitySignal):
            complexity_signal = ComplexitySignal(complexity=complexity_signal)

        steps = base_profile.steps
        guidance_scale = base_profile.guidance_scale

        if complexity_signal.complexity == "high":
            steps += HIGH_COMPLEXITY_STEP_BONUS
            guidance_scale += HIGH_COMPLEXITY_GUIDANCE_BONUS

        return base_profile.model_copy(
            update={
                "steps": min(steps, MAX_STEPS),
                "guidance_scale": min(guidance_scale, MAX_GUIDANCE_SCALE),
            },
            deep=True,
        )
