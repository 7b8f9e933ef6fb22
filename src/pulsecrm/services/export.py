"""CSV exports of tenant records."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.crm import Client, Invoice

CLIENT_FIELDS = (
    "id",
    "name",
    "email",
    "phone",
    "company",
    "first_name",
    "function",
    "company_sector",
    "created_at",
)
INVOICE_FIELDS = (
    "id",
    "client_id",
    "original_filename",
    "status",
    "amount",
    "currency",
    "issued_date",
    "due_date",
    "created_at",
)


def to_csv(fields: Sequence[str], rows: Iterable[Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(fields)
    for row in rows:
        writer.writerow(["" if getattr(row, f) is None else getattr(row, f) for f in fields])
    return buffer.getvalue()


class ExportService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def clients_csv(self, caller: Caller) -> str:
        columns = [getattr(Client, f) for f in CLIENT_FIELDS]
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(*columns)
                    .where(Client.tenant_id == caller.tenant_id)
                    .order_by(Client.created_at.asc())
                )
            ).all()
        return to_csv(CLIENT_FIELDS, rows)

    async def invoices_csv(self, caller: Caller) -> str:
        columns = [getattr(Invoice, f) for f in INVOICE_FIELDS]
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(*columns)
                    .where(Invoice.tenant_id == caller.tenant_id)
                    .order_by(Invoice.created_at.asc())
                )
            ).all()
        return to_csv(INVOICE_FIELDS, rows)
