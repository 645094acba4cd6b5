import pytest
from typing import List, Optional

from src.core.cancellation import CancellationToken
from src.engines.generation.retry import RetryPolicy
from src.modules.background.catalog import load_catalog
from src.pipeline.orchestrator import PipelineOrchestrator
from src.pipeline.stages import SimulatedProvider


class RecordingSleep:
    """Retry delay that returns at once and remembers what it was asked to wait."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float, token: Optional[CancellationToken] = None):
        self.delays.append(seconds)
        if token is not None:
            token.raise_if_cancelled()


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy(sleeper) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay=2.0, sleep=sleeper)


@pytest.fixture
def provider(catalog) -> SimulatedProvider:
    return SimulatedProvider(catalog)


@pytest.fixture
def orchestrator(catalog, provider, retry_policy) -> PipelineOrchestrator:
    return PipelineOrchestrator(catalog=catalog, provider=provider, retry_policy=retry_policy)


@pytest.fixture
def advance():
    """Drive an orchestrator up to (and including) the given stage name."""

    async def _advance(orch: PipelineOrchestrator, until: str = "style", style: str = "office"):
        orch.submit_image("https://cdn.example.com/uploads/mug.png")
        if until == "upload":
            return orch.state
        await orch.submit_for_background_removal()
        if until == "background_removal":
            return orch.state
        orch.choose_style(style)
        if until == "style":
            return orch.state
        await orch.generate_background()
        return orch.state

    return _advance
