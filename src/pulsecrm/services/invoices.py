"""Invoice uploads and field extraction.

Extraction is a deterministic placeholder until a document parser is wired
in: the amount is read from a ``123.45`` pattern in the filename, the issue
date is the upload time, and payment is due 30 days later.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.database import utcnow
from src.pulsecrm.core.errors import BadRequest, NotFound
from src.pulsecrm.core.storage import UploadStorage
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.crm import Client, Invoice
from src.pulsecrm.schemas.crm import InvoiceRead

logger = structlog.get_logger(__name__)

AMOUNT_PATTERN = re.compile(r"(\d+\.\d{2})")
PAYMENT_TERMS_DAYS = 30


def extract_invoice_fields(filename: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    match = AMOUNT_PATTERN.search(filename or "")
    return {
        "amount": float(match.group(1)) if match else None,
        "currency": "USD",
        "issued_date": now,
        "due_date": now + timedelta(days=PAYMENT_TERMS_DAYS),
        "source": "filename",
    }


class InvoiceService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: UploadStorage,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage

    async def upload(
        self,
        filename: str,
        data: bytes,
        caller: Caller,
        client_id: str | None = None,
    ) -> InvoiceRead:
        if not data:
            raise BadRequest("File is empty")

        async with self._session_factory() as session:
            async with session.begin():
                if client_id:
                    found = await session.scalar(
                        select(Client.id).where(Client.id == client_id, Client.tenant_id == caller.tenant_id)
                    )
                    if found is None:
                        raise NotFound("Client not found")

                path = self._storage.save(caller.tenant_id, filename, data)
                fields = extract_invoice_fields(filename)
                invoice = Invoice(
                    tenant_id=caller.tenant_id,
                    client_id=client_id,
                    file_path=str(path),
                    original_filename=filename,
                    status="READY",
                    amount=fields["amount"],
                    currency=fields["currency"],
                    issued_date=fields["issued_date"],
                    due_date=fields["due_date"],
                    extracted_raw=json.dumps(fields, default=str),
                )
                session.add(invoice)

        logger.info(
            "invoices.uploaded",
            tenant_id=caller.tenant_id,
            invoice_id=invoice.id,
            amount=invoice.amount,
        )
        return InvoiceRead.model_validate(invoice)

    async def find_all(self, caller: Caller) -> list[InvoiceRead]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Invoice)
                .where(Invoice.tenant_id == caller.tenant_id)
                .order_by(Invoice.created_at.desc())
            )
            return [InvoiceRead.model_validate(i) for i in result.scalars().all()]

    async def find_one(self, invoice_id: str, caller: Caller) -> InvoiceRead:
        async with self._session_factory() as session:
            invoice = await session.scalar(
                select(Invoice).where(Invoice.id == invoice_id, Invoice.tenant_id == caller.tenant_id)
            )
        if invoice is None:
            raise NotFound("Invoice not found")
        return InvoiceRead.model_validate(invoice)
