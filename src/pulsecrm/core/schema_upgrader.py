"""Best-effort, idempotent schema upgrades applied at startup.

Alembic is the primary migration path. This upgrader is the fallback for
deployments whose migrations have not been (or cannot be) applied: it adds
the optional columns and tables the capability probe looks for, so a
running instance self-heals.

Rules:
- Every step checks the catalog before issuing DDL
- Every DDL statement runs in its own transaction
- A failing statement is logged and skipped; a failing step does not stop
  the steps after it (another instance may be racing the same upgrade,
  or the role may lack DDL privileges)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.monitoring import schema_upgrade_steps_total

logger = structlog.get_logger(__name__)


@dataclass
class UpgradeReport:
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class SchemaUpgrader:
    """Applies add-if-missing DDL for optional schema elements.

    Args:
        engine: Async engine connected to the application database (Postgres).
        probe: Capability probe to invalidate once the upgrade finishes.
    """

    def __init__(self, engine: AsyncEngine, probe: SchemaCapabilityProbe | None = None) -> None:
        self._engine = engine
        self._probe = probe
        self._report = UpgradeReport()

    @property
    def steps(self) -> list[tuple[str, Callable[[], Awaitable[None]]]]:
        return [
            ("user_role", self.ensure_user_role),
            ("deal_client_id", self.ensure_deal_client_id),
            ("deal_owner_id", self.ensure_deal_owner_id),
            ("deal_proposal_fields", self.ensure_deal_proposal_fields),
            ("products_schema", self.ensure_products_schema),
            ("client_profile_fields", self.ensure_client_profile_fields),
            ("subscriptions_schema", self.ensure_subscriptions_schema),
            ("tenant_branding_fields", self.ensure_tenant_branding_fields),
            ("tenant_crm_settings_fields", self.ensure_tenant_crm_settings_fields),
        ]

    async def run(self) -> UpgradeReport:
        """Run every step in order and return what was applied or failed."""
        self._report = UpgradeReport()
        for name, step in self.steps:
            failures_before = len(self._report.failed)
            try:
                await step()
            except (SQLAlchemyError, OSError) as exc:
                self._report.failed.append(name)
                logger.warning("schema_upgrader.step_failed", step=name, error=str(exc))
            # Statements swallowed by _ddl also count against the step
            outcome = "failed" if len(self._report.failed) > failures_before else "ok"
            schema_upgrade_steps_total.labels(step=name, outcome=outcome).inc()

        if self._probe is not None:
            self._probe.invalidate()
        logger.info(
            "schema_upgrader.finished",
            applied=len(self._report.applied),
            failed=self._report.failed,
        )
        return self._report

    # ── Steps ───────────────────────────────────────────────────────────────

    async def ensure_user_role(self) -> None:
        if await self._column_exists("users", "role"):
            return
        added = await self._ddl(
            "users.role",
            "ALTER TABLE users ADD COLUMN IF NOT EXISTS role VARCHAR(16) NOT NULL DEFAULT 'MEMBER'",
        )
        if added:
            # Keep one OWNER per tenant: the earliest user of each workspace
            await self._ddl(
                "users.role_owner_backfill",
                "UPDATE users SET role = 'OWNER' WHERE id IN ("
                "SELECT DISTINCT ON (tenant_id) id FROM users ORDER BY tenant_id, created_at ASC)",
            )
        if not await self._constraint_exists("ck_users_role"):
            await self._ddl(
                "users.ck_users_role",
                "ALTER TABLE users ADD CONSTRAINT ck_users_role "
                "CHECK (role IN ('OWNER', 'ADMIN', 'MEMBER'))",
            )

    async def ensure_deal_client_id(self) -> None:
        await self._add_column("deals", "client_id", "VARCHAR(64)")
        await self._ddl(
            "deals.ix_deals_client_id",
            "CREATE INDEX IF NOT EXISTS ix_deals_client_id ON deals (client_id)",
        )
        await self._add_foreign_key(
            "fk_deals_client_id_clients",
            "deals",
            "client_id",
            "clients",
            on_delete="SET NULL",
        )

    async def ensure_deal_owner_id(self) -> None:
        await self._add_column("deals", "owner_id", "VARCHAR(64)")
        owner_pick = (
            "(SELECT u.id FROM users u WHERE u.tenant_id = d.tenant_id "
            "AND u.role = 'OWNER' ORDER BY u.created_at ASC LIMIT 1), "
            if await self._column_exists("users", "role")
            else ""
        )
        await self._ddl(
            "deals.owner_id_backfill",
            "UPDATE deals d SET owner_id = COALESCE("
            f"{owner_pick}"
            "(SELECT u.id FROM users u WHERE u.tenant_id = d.tenant_id "
            "ORDER BY u.created_at ASC LIMIT 1)) "
            "WHERE d.owner_id IS NULL",
        )
        await self._ddl(
            "deals.ix_deals_owner_id",
            "CREATE INDEX IF NOT EXISTS ix_deals_owner_id ON deals (owner_id)",
        )
        await self._add_foreign_key(
            "fk_deals_owner_id_users",
            "deals",
            "owner_id",
            "users",
            on_delete="SET NULL",
        )

    async def ensure_deal_proposal_fields(self) -> None:
        await self._add_column("deals", "proposal_file_path", "VARCHAR(500)")

    async def ensure_products_schema(self) -> None:
        if not await self._table_exists("products"):
            await self._ddl(
                "products",
                "CREATE TABLE IF NOT EXISTS products ("
                "id VARCHAR(64) PRIMARY KEY, "
                "tenant_id VARCHAR(64) NOT NULL, "
                "name VARCHAR(200) NOT NULL, "
                "description TEXT, "
                "price NUMERIC(14, 2) NOT NULL DEFAULT 0, "
                "currency VARCHAR(3) NOT NULL DEFAULT 'USD', "
                "is_active BOOLEAN NOT NULL DEFAULT TRUE, "
                "created_at TIMESTAMPTZ NOT NULL DEFAULT now(), "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT now())",
            )
        if not await self._table_exists("deal_items"):
            await self._ddl(
                "deal_items",
                "CREATE TABLE IF NOT EXISTS deal_items ("
                "id VARCHAR(64) PRIMARY KEY, "
                "tenant_id VARCHAR(64) NOT NULL, "
                "deal_id VARCHAR(64) NOT NULL, "
                "product_id VARCHAR(64) NOT NULL, "
                "quantity INTEGER NOT NULL DEFAULT 1, "
                "unit_price NUMERIC(14, 2) NOT NULL, "
                "created_at TIMESTAMPTZ NOT NULL DEFAULT now())",
            )

        for name, ddl in (
            ("ix_products_tenant_id", "CREATE INDEX IF NOT EXISTS ix_products_tenant_id ON products (tenant_id)"),
            ("ix_deal_items_tenant_id", "CREATE INDEX IF NOT EXISTS ix_deal_items_tenant_id ON deal_items (tenant_id)"),
            ("ix_deal_items_deal_id", "CREATE INDEX IF NOT EXISTS ix_deal_items_deal_id ON deal_items (deal_id)"),
            ("ix_deal_items_product_id", "CREATE INDEX IF NOT EXISTS ix_deal_items_product_id ON deal_items (product_id)"),
            (
                "uq_deal_items_deal_product",
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_deal_items_deal_product ON deal_items (deal_id, product_id)",
            ),
        ):
            await self._ddl(name, ddl)

        await self._add_foreign_key("fk_products_tenant_id_tenants", "products", "tenant_id", "tenants", on_delete="CASCADE")
        await self._add_foreign_key("fk_deal_items_tenant_id_tenants", "deal_items", "tenant_id", "tenants", on_delete="CASCADE")
        await self._add_foreign_key("fk_deal_items_deal_id_deals", "deal_items", "deal_id", "deals", on_delete="CASCADE")
        await self._add_foreign_key("fk_deal_items_product_id_products", "deal_items", "product_id", "products", on_delete="RESTRICT")

    async def ensure_client_profile_fields(self) -> None:
        await self._add_column("clients", "first_name", "VARCHAR(120)")
        await self._add_column("clients", "function", "VARCHAR(120)")
        await self._add_column("clients", "company_sector", "VARCHAR(120)")

    async def ensure_subscriptions_schema(self) -> None:
        if not await self._table_exists("subscriptions"):
            await self._ddl(
                "subscriptions",
                "CREATE TABLE IF NOT EXISTS subscriptions ("
                "id VARCHAR(64) PRIMARY KEY, "
                "tenant_id VARCHAR(64) NOT NULL, "
                "customer_tenant_id VARCHAR(64) NOT NULL, "
                "customer_name VARCHAR(200) NOT NULL, "
                "status VARCHAR(16) NOT NULL DEFAULT 'ACTIVE', "
                "created_at TIMESTAMPTZ NOT NULL DEFAULT now(), "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT now())",
            )

        # Columns added after the first subscriptions release
        for column, ddl_type in (
            ("plan", "VARCHAR(32) NOT NULL DEFAULT 'TRIAL'"),
            ("seats", "INTEGER NOT NULL DEFAULT 1"),
            ("trial_ends_at", "TIMESTAMPTZ"),
            ("contact_first_name", "VARCHAR(120)"),
            ("contact_last_name", "VARCHAR(120)"),
            ("contact_email", "VARCHAR(255)"),
            ("contact_phone", "VARCHAR(64)"),
            ("crm_mode", "VARCHAR(8)"),
            ("industry", "VARCHAR(120)"),
        ):
            await self._add_column("subscriptions", column, ddl_type)

        await self._ddl(
            "uq_subscriptions_customer_tenant_id",
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_subscriptions_customer_tenant_id "
            "ON subscriptions (customer_tenant_id)",
        )
        await self._ddl(
            "ix_subscriptions_tenant_id",
            "CREATE INDEX IF NOT EXISTS ix_subscriptions_tenant_id ON subscriptions (tenant_id)",
        )
        await self._add_foreign_key(
            "fk_subscriptions_tenant_id_tenants", "subscriptions", "tenant_id", "tenants", on_delete="CASCADE"
        )
        await self._add_foreign_key(
            "fk_subscriptions_customer_tenant_id_tenants",
            "subscriptions",
            "customer_tenant_id",
            "tenants",
            on_delete="CASCADE",
        )

    async def ensure_tenant_branding_fields(self) -> None:
        await self._add_column("tenants", "logo_data_url", "TEXT")
        await self._add_column("tenants", "accent_color", "VARCHAR(16)")
        await self._add_column("tenants", "accent_color_2", "VARCHAR(16)")

    async def ensure_tenant_crm_settings_fields(self) -> None:
        await self._add_column("tenants", "crm_mode", "VARCHAR(8) NOT NULL DEFAULT 'B2B'")
        await self._add_column("tenants", "crm_display_currency", "VARCHAR(3) NOT NULL DEFAULT 'USD'")
        await self._add_column("tenants", "industry", "VARCHAR(120)")
        await self._add_column("tenants", "contract_setup", "TEXT")

    # ── DDL helpers ─────────────────────────────────────────────────────────

    async def _add_column(self, table: str, column: str, ddl_type: str) -> bool:
        if await self._column_exists(table, column):
            return False
        return await self._ddl(
            f"{table}.{column}",
            f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {ddl_type}",
        )

    async def _add_foreign_key(
        self,
        name: str,
        table: str,
        column: str,
        ref_table: str,
        on_delete: str,
    ) -> bool:
        if await self._constraint_exists(name):
            return False
        return await self._ddl(
            name,
            f"ALTER TABLE {table} ADD CONSTRAINT {name} FOREIGN KEY ({column}) "
            f"REFERENCES {ref_table} (id) ON DELETE {on_delete}",
        )

    async def _ddl(self, label: str, sql: str) -> bool:
        """Execute one statement; log and swallow database errors."""
        try:
            await self._execute(sql)
        except SQLAlchemyError as exc:
            self._report.failed.append(label)
            logger.warning("schema_upgrader.ddl_failed", target=label, error=str(exc))
            return False
        self._report.applied.append(label)
        logger.info("schema_upgrader.ddl_applied", target=label)
        return True

    async def _execute(self, sql: str) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(text(sql))

    # ── Catalog queries ─────────────────────────────────────────────────────

    async def _scalar(self, sql: str, params: dict[str, str]) -> bool:
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), params)
            return result.first() is not None

    async def _table_exists(self, table: str) -> bool:
        return await self._scalar(
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = :table",
            {"table": table},
        )

    async def _column_exists(self, table: str, column: str) -> bool:
        return await self._scalar(
            "SELECT 1 FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = :table AND column_name = :column",
            {"table": table, "column": column},
        )

    async def _constraint_exists(self, name: str) -> bool:
        return await self._scalar(
            "SELECT 1 FROM pg_constraint WHERE conname = :name",
            {"name": name},
        )
