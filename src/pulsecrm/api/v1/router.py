"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.pulsecrm.api.v1 import (
    admin,
    assistant,
    auth,
    bootstrap,
    clients,
    dashboard,
    deals,
    export,
    fx,
    health,
    invoices,
    pipelines,
    products,
    stages,
    tasks,
    tenant,
)

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(bootstrap.router)
router.include_router(pipelines.router)
router.include_router(stages.router)
router.include_router(deals.router)
router.include_router(clients.router)
router.include_router(tasks.router)
router.include_router(invoices.router)
router.include_router(products.router)
router.include_router(admin.router)
router.include_router(tenant.router)
router.include_router(dashboard.router)
router.include_router(fx.router)
router.include_router(export.router)
router.include_router(assistant.router)
