"""
Exception Taxonomy

Every failure the background-generation pipeline can surface derives from
BackgroundGenError and carries a code, the workflow it belongs to, the stage
it happened in, and structured details for logging.
"""

from decimal import Decimal
from typing import Optional, Dict, Any

from src.core.logging import workflow_id_var


class BackgroundGenError(Exception):
    """Base exception for the background generator."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        workflow_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.workflow_id = workflow_id or workflow_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "code": self.code,
            "workflow_id": self.workflow_id,
            "stage": self.stage,
            "details": self.details,
        }


class ValidationError(BackgroundGenError):
    """Raised when a transition's prerequisite is missing or its input is invalid."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class TransitionInProgressError(BackgroundGenError):
    """Raised when a transition is invoked while another one is still outstanding."""

    def __init__(self, running: str, **kwargs):
        super().__init__(
            f"Transition '{running}' is still in progress for this workflow",
            code=409,
            **kwargs
        )
        self.details["running"] = running


class BudgetExceededError(BackgroundGenError):
    """Raised when a model's unit cost is above the active budget tier's limit."""

    def __init__(
        self,
        model_id: str,
        unit_cost: Decimal,
        tier: str,
        limit: Decimal,
        **kwargs
    ):
        super().__init__(
            f"Model '{model_id}' costs {unit_cost} per image, "
            f"above the '{tier}' budget limit of {limit}",
            code=402,
            **kwargs
        )
        self.details.update({
            "model_id": model_id,
            "unit_cost": str(unit_cost),
            "tier": tier,
            "limit": str(limit),
        })


class ProviderError(BackgroundGenError):
    """Base for failures reported by (or while talking to) an image provider."""

    def __init__(
        self,
        message: str,
        service: str = "provider",
        http_status: Optional[int] = None,
        code: int = 502,
        **kwargs
    ):
        super().__init__(message, code=code, **kwargs)
        self.service = service
        self.http_status = http_status
        self.details["service"] = service
        self.details["http_status"] = http_status


class ProviderTransientError(ProviderError):
    """Network, timeout, rate-limit or server-side failure; worth retrying."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=503, **kwargs)


class ProviderPermanentError(ProviderError):
    """Malformed request, content rejection or any other non-retryable refusal."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=422, **kwargs)


class UnknownProviderResponseError(ProviderError):
    """The provider answered with a body outside the documented shape."""

    def __init__(self, message: str, body: Any = None, **kwargs):
        super().__init__(message, code=502, **kwargs)
        if body is not None:
            self.details["body"] = repr(body)[:500]


class OperationCancelledError(BackgroundGenError):
    """Raised when the workflow's cancellation token fires during a transition."""

    def __init__(self, message: str = "Operation cancelled", **kwargs):
        super().__init__(message, code=499, **kwargs)


class StorageError(BackgroundGenError):
    """Raised when the artifact sink cannot persist a workflow record."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)
