"""AI text tool endpoints.

Provider failures degrade to local fallbacks, so these endpoints answer even
without an HF_API_KEY.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.assistant import (
    DraftEmailRequest,
    DraftEmailResponse,
    ImproveProposalRequest,
    ImproveProposalResponse,
    SentimentRequest,
    SentimentResponse,
    SummaryRequest,
    SummaryResponse,
)
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/assistant", tags=["assistant"])


@router.get("/diagnostics")
async def diagnostics(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    return services.assistant.diagnostics()


@router.post("/sentiment", response_model=SentimentResponse)
async def sentiment(
    body: SentimentRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> SentimentResponse:
    return SentimentResponse(**await services.assistant.sentiment(body.text))


@router.post("/summary", response_model=SummaryResponse)
async def summary(
    body: SummaryRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> SummaryResponse:
    return SummaryResponse(**await services.assistant.summary(body.text))


@router.post("/draft-email", response_model=DraftEmailResponse)
async def draft_email(
    body: DraftEmailRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> DraftEmailResponse:
    return DraftEmailResponse(**await services.assistant.draft_email(body.lead_name, body.lead_context))


@router.post("/improve-proposal", response_model=ImproveProposalResponse)
async def improve_proposal(
    body: ImproveProposalRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ImproveProposalResponse:
    return ImproveProposalResponse(**await services.assistant.improve_proposal(body.proposal_text))
