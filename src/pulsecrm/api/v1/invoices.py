"""REST API endpoints for invoice uploads."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.crm import InvoiceRead
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/invoices", tags=["invoices"])


@router.post("/upload", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
async def upload_invoice(
    file: UploadFile = File(...),
    client_id: str | None = Form(default=None),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceRead:
    """Store an invoice file and extract its amount and dates."""
    data = await file.read()
    return await services.invoices.upload(
        file.filename or "invoice", data, caller, client_id=client_id or None
    )


@router.get("", response_model=list[InvoiceRead])
async def list_invoices(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[InvoiceRead]:
    return await services.invoices.find_all(caller)


@router.get("/{invoice_id}", response_model=InvoiceRead)
async def get_invoice(
    invoice_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceRead:
    return await services.invoices.find_one(invoice_id, caller)
