"""REST API endpoints for deals and their proposal PDFs."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import FileResponse

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.errors import BadRequest
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.schemas import DealCreate, DealRead, DealUpdate, MoveStageRequest
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/deals", tags=["deals"])

MAX_PROPOSAL_BYTES = 15 * 1024 * 1024


@router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
async def create_deal(
    body: DealCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DealRead:
    return await services.deals.create(body, caller)


@router.get("", response_model=list[DealRead])
async def list_deals(
    pipeline_id: str | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[DealRead]:
    """List deals visible to the caller, newest first."""
    return await services.deals.find_all(caller, pipeline_id=pipeline_id)


@router.get("/{deal_id}", response_model=DealRead)
async def get_deal(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DealRead:
    return await services.deals.find_one(deal_id, caller)


@router.patch("/{deal_id}", response_model=DealRead)
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DealRead:
    return await services.deals.update(deal_id, body, caller)


@router.post("/{deal_id}/move-stage", response_model=DealRead)
async def move_deal_stage(
    deal_id: str,
    body: MoveStageRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DealRead:
    """Move a deal to another stage of its pipeline and record the transition."""
    return await services.deals.move_stage(deal_id, body.stage_id, caller)


@router.delete("/{deal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_deal(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    await services.deals.remove(deal_id, caller)


# ── Proposal ─────────────────────────────────────────────────────────────────


@router.post("/{deal_id}/proposal", response_model=DealRead)
async def upload_proposal(
    deal_id: str,
    file: UploadFile = File(...),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DealRead:
    """Attach a proposal PDF (max 15 MB), replacing any previous one."""
    data = await file.read()
    if not data:
        raise BadRequest("File is empty")
    if len(data) > MAX_PROPOSAL_BYTES:
        raise BadRequest("File too large (max 15MB)")
    return await services.deals.upload_proposal(
        deal_id, file.filename or "proposal.pdf", file.content_type, data, caller
    )


@router.get("/{deal_id}/proposal")
async def download_proposal(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> FileResponse:
    path = await services.deals.get_proposal_file_path(deal_id, caller)
    return FileResponse(path, media_type="application/pdf", filename=path.name)
