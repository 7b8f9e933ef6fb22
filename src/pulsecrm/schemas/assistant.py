"""Pydantic schemas for the AI text tools."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class _TrimmedText(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class SentimentRequest(_TrimmedText):
    text: str = Field(min_length=1, max_length=5000)


class SentimentResponse(BaseModel):
    sentiment: str
    confidence: float


class SummaryRequest(_TrimmedText):
    text: str = Field(min_length=1, max_length=25_000)


class SummaryResponse(BaseModel):
    summary: str


class DraftEmailRequest(_TrimmedText):
    lead_name: str = Field(min_length=1, max_length=200)
    lead_context: str = Field(min_length=1, max_length=10_000)


class DraftEmailResponse(BaseModel):
    subject: str
    body: str


class ImproveProposalRequest(_TrimmedText):
    proposal_text: str = Field(min_length=1, max_length=50_000)


class ImproveProposalResponse(BaseModel):
    improved_proposal: str
