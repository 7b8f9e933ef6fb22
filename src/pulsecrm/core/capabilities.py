"""Runtime schema capability probe.

Deployments can run application code ahead of completed migrations. Before
touching an optional column or table, data-access code asks the probe which
optional schema elements exist and degrades accordingly.

The probe holds one process-local snapshot for SCHEMA_CAPS_TTL_SECONDS.
Refreshes are serialized behind an asyncio.Lock, so callers racing on an
expired snapshot share a single catalog query. Catalog failures propagate:
they mean the database itself is unhealthy.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.pulsecrm.core.monitoring import schema_caps_loads_total

logger = structlog.get_logger(__name__)

# ── Capability Model ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SchemaCaps:
    """Which optional schema elements the connected database has."""

    has_client_id: bool = False
    has_owner_id: bool = False
    has_product_tables: bool = False
    has_proposal_file_path: bool = False
    has_tenant_branding: bool = False
    has_tenant_crm_settings: bool = False

    @classmethod
    def full(cls) -> SchemaCaps:
        """Caps of a fully migrated database."""
        return cls(
            has_client_id=True,
            has_owner_id=True,
            has_product_tables=True,
            has_proposal_file_path=True,
            has_tenant_branding=True,
            has_tenant_crm_settings=True,
        )


@dataclass(frozen=True)
class CapabilitySnapshot:
    checked_at: float
    caps: SchemaCaps


class SchemaCatalog(Protocol):
    async def load(self) -> SchemaCaps: ...


# ── Postgres Catalog ─────────────────────────────────────────────────────────

BRANDING_COLUMNS = ("logo_data_url", "accent_color", "accent_color_2")
CRM_SETTINGS_COLUMNS = ("crm_mode", "crm_display_currency", "industry", "contract_setup")

OPTIONAL_COLUMNS: dict[str, tuple[str, ...]] = {
    "deals": ("client_id", "owner_id", "proposal_file_path"),
    "tenants": BRANDING_COLUMNS + CRM_SETTINGS_COLUMNS,
}
OPTIONAL_TABLES: tuple[str, ...] = ("products", "deal_items")


class PostgresSchemaCatalog:
    """Reads optional columns/tables from ``information_schema``."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def load(self) -> SchemaCaps:
        columns: set[tuple[str, str]] = set()
        tables: set[str] = set()
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT table_name, column_name FROM information_schema.columns "
                    "WHERE table_schema = current_schema() "
                    "AND table_name = ANY(:tables) AND column_name = ANY(:columns)"
                ),
                {
                    "tables": list(OPTIONAL_COLUMNS),
                    "columns": sorted({c for cols in OPTIONAL_COLUMNS.values() for c in cols}),
                },
            )
            columns = {(row.table_name, row.column_name) for row in result}

            result = await conn.execute(
                text(
                    "SELECT table_name FROM information_schema.tables "
                    "WHERE table_schema = current_schema() AND table_name = ANY(:tables)"
                ),
                {"tables": list(OPTIONAL_TABLES)},
            )
            tables = {row.table_name for row in result}

        return caps_from_catalog(columns, tables)


def caps_from_catalog(columns: set[tuple[str, str]], tables: set[str]) -> SchemaCaps:
    """Derive capability flags from discovered ``(table, column)`` pairs and tables."""
    return SchemaCaps(
        has_client_id=("deals", "client_id") in columns,
        has_owner_id=("deals", "owner_id") in columns,
        has_proposal_file_path=("deals", "proposal_file_path") in columns,
        has_product_tables=all(t in tables for t in OPTIONAL_TABLES),
        has_tenant_branding=all(("tenants", c) in columns for c in BRANDING_COLUMNS),
        has_tenant_crm_settings=all(("tenants", c) in columns for c in CRM_SETTINGS_COLUMNS),
    )


# ── Probe ────────────────────────────────────────────────────────────────────


class SchemaCapabilityProbe:
    """TTL-cached front for a SchemaCatalog."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: CapabilitySnapshot | None = None
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> CapabilitySnapshot | None:
        return self._snapshot

    def _fresh(self, snapshot: CapabilitySnapshot | None) -> bool:
        return snapshot is not None and self._clock() - snapshot.checked_at < self._ttl

    async def get_schema_caps(self) -> SchemaCaps:
        snapshot = self._snapshot
        if self._fresh(snapshot):
            return snapshot.caps

        async with self._lock:
            # Another waiter may have refreshed while we queued
            snapshot = self._snapshot
            if self._fresh(snapshot):
                return snapshot.caps

            caps = await self._catalog.load()
            schema_caps_loads_total.inc()
            self._snapshot = CapabilitySnapshot(checked_at=self._clock(), caps=caps)
            logger.debug("schema_caps.refreshed", **caps.__dict__)
            return caps

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next call re-reads the catalog."""
        self._snapshot = None
