"""Pipeline and deal persistence models.

Five SQLAlchemy models:
- Pipeline: An ordered sequence of stages a deal moves through
- Stage: One step of a pipeline with a win probability and OPEN/WON/LOST status
- Deal: A sales opportunity sitting in exactly one stage
- DealStageHistory: Append-only audit trail of stage moves
- DealItem: Product line item on a deal

``Deal.client_id``, ``Deal.owner_id``, ``Deal.proposal_file_path`` and the
DealItem table are optional schema. The ORM mapping declares them so that
migrations and tests see the full shape, but deal queries are built from
``src.pulsecrm.deals.query`` which only references the columns the
connected database actually has.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.pulsecrm.core.database import Base, new_id, utcnow


class Pipeline(Base):
    """A named sales pipeline. At most one per tenant has ``is_default`` set."""

    __tablename__ = "pipelines"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )


class Stage(Base):
    """A pipeline step.

    ``position`` totally orders the stages of a pipeline (gaps allowed).
    ``probability`` is a 0-1 weight used by the forecast; ``status`` marks
    terminal WON/LOST stages, which override the stored probability.
    """

    __tablename__ = "stages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    pipeline_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("pipelines.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(8), nullable=False, default="OPEN")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Deal(Base):
    """A sales opportunity owned by a tenant, placed in one pipeline stage."""

    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    pipeline_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("pipelines.id"), nullable=False, index=True
    )
    stage_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("stages.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    value: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    expected_close_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    # Optional schema
    client_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    owner_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    proposal_file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)


class DealStageHistory(Base):
    """Immutable record of one stage move. Deleted only with its deal."""

    __tablename__ = "deal_stage_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    deal_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("deals.id"), nullable=False, index=True
    )
    from_stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_stage_id: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class DealItem(Base):
    """Product line item on a deal; price is captured at attach time."""

    __tablename__ = "deal_items"
    __table_args__ = (
        UniqueConstraint("deal_id", "product_id", name="uq_deal_items_deal_product"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    deal_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
