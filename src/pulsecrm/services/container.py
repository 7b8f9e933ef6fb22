"""Service wiring.

The container is built once per process (in the app lifespan, or directly by
tests) and stored on ``app.state.services``. All services share one
capability probe and one FX cache.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.config import Settings
from src.pulsecrm.core.capabilities import SchemaCapabilityProbe, SchemaCatalog
from src.pulsecrm.core.roles import Role, RoleResolver
from src.pulsecrm.core.storage import UploadStorage
from src.pulsecrm.deals.service import DealService
from src.pulsecrm.forecast.fx import FxService
from src.pulsecrm.forecast.service import ForecastService
from src.pulsecrm.services.accounts import AccountService
from src.pulsecrm.services.admin import AdminService
from src.pulsecrm.services.assistant import HuggingFaceClient, TextAssistant
from src.pulsecrm.services.bootstrap import BootstrapService
from src.pulsecrm.services.clients import ClientService
from src.pulsecrm.services.dashboard import DashboardService
from src.pulsecrm.services.export import ExportService
from src.pulsecrm.services.invoices import InvoiceService
from src.pulsecrm.services.pipelines import PipelineService
from src.pulsecrm.services.products import ProductService
from src.pulsecrm.services.stages import StageService
from src.pulsecrm.services.tasks import TaskService
from src.pulsecrm.services.tenant_settings import TenantSettingsService


@dataclass
class ServiceContainer:
    session_factory: async_sessionmaker[AsyncSession]
    probe: SchemaCapabilityProbe
    roles: RoleResolver
    fx: FxService
    storage: UploadStorage
    deals: DealService
    forecast: ForecastService
    pipelines: PipelineService
    stages: StageService
    clients: ClientService
    tasks: TaskService
    invoices: InvoiceService
    products: ProductService
    admin: AdminService
    tenant_settings: TenantSettingsService
    dashboard: DashboardService
    exports: ExportService
    bootstrap: BootstrapService
    accounts: AccountService
    assistant: TextAssistant


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    catalog: SchemaCatalog,
    fx: FxService | None = None,
    storage: UploadStorage | None = None,
    hf_client: HuggingFaceClient | None = None,
) -> ServiceContainer:
    probe = SchemaCapabilityProbe(catalog, ttl_seconds=settings.SCHEMA_CAPS_TTL_SECONDS)
    roles = RoleResolver(session_factory, drift_fallback=Role(settings.ROLE_DRIFT_FALLBACK.upper()))
    fx = fx or FxService(
        settings.FX_RATES_URL,
        ttl_seconds=settings.FX_RATES_TTL_SECONDS,
        timeout=settings.FX_TIMEOUT_SECONDS,
        max_attempts=settings.FX_FETCH_ATTEMPTS,
    )
    storage = storage or UploadStorage(settings.UPLOAD_DIR)
    hf_client = hf_client or HuggingFaceClient(
        settings.HF_API_KEY,
        settings.HF_BASE_URL,
        timeout=settings.HF_TIMEOUT_SECONDS,
    )

    return ServiceContainer(
        session_factory=session_factory,
        probe=probe,
        roles=roles,
        fx=fx,
        storage=storage,
        deals=DealService(session_factory, probe, roles, storage),
        forecast=ForecastService(session_factory, probe, roles, fx),
        pipelines=PipelineService(session_factory, probe),
        stages=StageService(session_factory),
        clients=ClientService(session_factory, probe),
        tasks=TaskService(session_factory),
        invoices=InvoiceService(session_factory, storage),
        products=ProductService(session_factory, probe, roles),
        admin=AdminService(session_factory, roles),
        tenant_settings=TenantSettingsService(session_factory, probe, roles),
        dashboard=DashboardService(session_factory, probe, roles, fx),
        exports=ExportService(session_factory),
        bootstrap=BootstrapService(session_factory, probe),
        accounts=AccountService(session_factory, probe, roles),
        assistant=TextAssistant(hf_client, settings),
    )
