"""
Pipeline Wiring

Process-wide singletons (settings-driven catalog, provider, sink) and the
factory that builds one orchestrator per user workflow.
"""

from typing import Optional

from src.core.config import Settings, settings as default_settings
from src.core.logging import get_logger, setup_logging
from src.core.metrics import set_app_info
from src.core.storage import ArtifactSink, LocalArtifactSink
from src.engines.generation.retry import RetryPolicy
from src.modules.background.catalog import Catalog, load_catalog
from src.pipeline.orchestrator import PipelineOrchestrator
from src.pipeline.stages import ProviderAdapter, RunwareProvider, SimulatedProvider

logger = get_logger(__name__)


# =============================================================================
# Global Singletons - catalogs are immutable, providers hold a connection pool
# =============================================================================

_catalog: Optional[Catalog] = None
_provider: Optional[ProviderAdapter] = None
_logging_configured = False


def configure_runtime(config: Settings = default_settings):
    """Configure logging and app metrics once per process."""
    global _logging_configured
    if _logging_configured:
        return
    setup_logging(log_level=config.LOG_LEVEL, json_format=config.LOG_FORMAT_JSON)
    set_app_info(version=config.APP_VERSION, environment=config.ENVIRONMENT)
    _logging_configured = True


def get_catalog(config: Settings = default_settings) -> Catalog:
    global _catalog
    if _catalog is None:
        _catalog = load_catalog(config.CATALOG_PATH)
    return _catalog


def build_provider(catalog: Catalog, config: Settings = default_settings) -> ProviderAdapter:
    if config.USE_SIMULATED_PROVIDER:
        logger.info("provider_selected", provider="simulated")
        return SimulatedProvider(catalog, latency=config.SIMULATED_LATENCY_SECONDS)

    logger.info("provider_selected", provider="runware", api_url=config.RUNWARE_API_URL)
    return RunwareProvider(
        api_url=config.RUNWARE_API_URL,
        api_key=config.RUNWARE_API_KEY,
        timeout=config.PROVIDER_TIMEOUT_SECONDS,
    )


def get_provider(config: Settings = default_settings) -> ProviderAdapter:
    global _provider
    if _provider is None:
        _provider = build_provider(get_catalog(config), config)
    return _provider


def create_orchestrator(
    config: Settings = default_settings,
    catalog: Optional[Catalog] = None,
    provider: Optional[ProviderAdapter] = None,
    sink: Optional[ArtifactSink] = None
) -> PipelineOrchestrator:
    """One orchestrator per user workflow; collaborators are shared."""
    configure_runtime(config)

    catalog = catalog or get_catalog(config)
    provider = provider or get_provider(config)
    if sink is None and config.PERSIST_WORKFLOWS:
        sink = LocalArtifactSink(base_path=config.LOCAL_STORAGE_PATH)

    return PipelineOrchestrator(
        catalog=catalog,
        provider=provider,
        retry_policy=RetryPolicy.from_settings(config),
        sink=sink,
        default_seed=config.DEFAULT_SEED,
    )


async def shutdown():
    """Release the shared provider's connection pool."""
    global _provider
    if _provider is not None and hasattr(_provider, "aclose"):
        await _provider.aclose()
    _provider = None
