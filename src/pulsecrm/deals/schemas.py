"""Pydantic schemas for pipelines, stages, and deals."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StageStatus(str, Enum):
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"


# ── Deals ────────────────────────────────────────────────────────────────────


class DealCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    value: float = Field(default=0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    expected_close_date: datetime | None = None
    pipeline_id: str
    stage_id: str | None = None
    client_id: str | None = None
    product_ids: list[str] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class DealUpdate(BaseModel):
    """Partial update. Line items are not editable through this payload."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=300)
    value: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    expected_close_date: datetime | None = None
    client_id: str | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str | None) -> str | None:
        return v.strip().upper() if v is not None else None


class MoveStageRequest(BaseModel):
    stage_id: str


class StageSummary(BaseModel):
    id: str
    name: str
    status: StageStatus
    probability: float
    position: int


class DealItemRead(BaseModel):
    id: str
    product_id: str
    product_name: str | None = None
    quantity: int
    unit_price: float


class DealRead(BaseModel):
    id: str
    pipeline_id: str
    stage_id: str
    title: str
    value: float
    currency: str
    expected_close_date: datetime | None = None
    client_id: str | None = None
    owner_id: str | None = None
    has_proposal: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    stage: StageSummary | None = None
    items: list[DealItemRead] = Field(default_factory=list)


# ── Pipelines & Stages ───────────────────────────────────────────────────────


class PipelineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    is_default: bool = False


class PipelineUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    is_default: bool | None = None


class StageCreate(BaseModel):
    pipeline_id: str
    name: str = Field(min_length=1, max_length=200)
    position: int | None = Field(default=None, ge=0)
    probability: float = Field(default=0.0, ge=0.0, le=1.0)
    status: StageStatus = StageStatus.OPEN


class StageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    position: int | None = Field(default=None, ge=0)
    probability: float | None = Field(default=None, ge=0.0, le=1.0)
    status: StageStatus | None = None


class StageOrderItem(BaseModel):
    id: str
    position: int = Field(ge=0)


class StageReorderRequest(BaseModel):
    items: list[StageOrderItem] = Field(min_length=1)


class StageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    pipeline_id: str
    name: str
    position: int
    probability: float
    status: StageStatus


class PipelineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    is_default: bool
    created_at: datetime | None = None
    stages: list[StageRead] | None = None
