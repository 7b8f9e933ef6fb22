"""Tenant-level models: workspaces, their users, and customer subscriptions.

Every business row carries ``tenant_id``. Columns that arrived after the
first release (user role, tenant branding and CRM settings, subscription
contact fields) may be missing on a lagging database, so they carry no
Python-side defaults and are only ever selected explicitly. Server defaults
mirror the DDL the schema upgrader issues.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.pulsecrm.core.database import Base, new_id, utcnow


class Tenant(Base):
    """An isolated customer workspace; the unit of data partitioning."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    # Branding
    logo_data_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    accent_color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    accent_color_2: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # CRM settings; mode and display currency are NOT NULL with server defaults
    crm_mode: Mapped[str] = mapped_column(String(8), nullable=False, server_default="B2B")
    crm_display_currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default="USD")
    industry: Mapped[str | None] = mapped_column(String(120), nullable=True)
    contract_setup: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON document

    # No RETURNING of server defaults on insert; a lagging database lacks them
    __mapper_args__ = {"eager_defaults": False}


class User(Base):
    """User within a tenant. Email is globally unique (one workspace per login)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Subscription(Base):
    """A customer workspace sold and managed by the owning (provider) tenant.

    ``customer_tenant_id`` is the tenant provisioned for the customer at
    creation time.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, index=True
    )
    customer_tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id"), nullable=False, unique=True
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    plan: Mapped[str] = mapped_column(String(32), nullable=False, default="TRIAL")
    seats: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contact_first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    contact_last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    crm_mode: Mapped[str | None] = mapped_column(String(8), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
