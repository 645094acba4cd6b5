"""
Step Gate

Pure guard over a PipelineState snapshot. The orchestrator asks it before
every mutating transition; callers rendering the workflow ask it to decide
which stages are reachable.
"""

from typing import Callable, Dict, Optional, Union

from src.modules.background.models import PipelineState, Stage


def _upload_complete(state: PipelineState) -> bool:
    return bool(state.uploaded_image_ref)


def _background_removed_complete(state: PipelineState) -> bool:
    return bool(state.removed_bg_image_ref)


def _style_chosen_complete(state: PipelineState) -> bool:
    return state.selected_style is not None or bool((state.custom_prompt or "").strip())


def _synthesized_complete(state: PipelineState) -> bool:
    return bool(state.final_image_ref)


COMPLETION_PREDICATES: Dict[Stage, Callable[[PipelineState], bool]] = {
    Stage.UPLOAD: _upload_complete,
    Stage.BACKGROUND_REMOVED: _background_removed_complete,
    Stage.STYLE_CHOSEN: _style_chosen_complete,
    Stage.SYNTHESIZED: _synthesized_complete,
}


class StepGate:
    """Stateless; every method is a pure function of the snapshot passed in."""

    @staticmethod
    def is_stage_complete(stage: Union[Stage, int], state: PipelineState) -> bool:
        return COMPLETION_PREDICATES[Stage(stage)](state)

    @classmethod
    def first_incomplete_prerequisite(
        cls,
        stage: Union[Stage, int],
        state: PipelineState
    ) -> Optional[Stage]:
        """The earliest stage before ``stage`` that is not complete, or None."""
        for prerequisite in Stage:
            if prerequisite >= Stage(stage):
                break
            if not cls.is_stage_complete(prerequisite, state):
                return prerequisite
        return None

    @classmethod
    def can_advance_to(cls, stage: Union[Stage, int], state: PipelineState) -> bool:
        return cls.first_incomplete_prerequisite(stage, state) is None
