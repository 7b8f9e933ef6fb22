"""Capability-aware column selection and row visibility for deal queries.

Every deal read goes through ``deal_columns`` so the SELECT list only names
columns the connected database has, and through ``visibility_clause`` so a
MEMBER only sees their own deals once ``deals.owner_id`` exists. Writes are
filtered through ``writable_payload`` before reaching an INSERT/UPDATE.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import ColumnElement, true

from src.pulsecrm.core.capabilities import SchemaCaps
from src.pulsecrm.core.roles import Role
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal

logger = structlog.get_logger(__name__)

BASE_COLUMNS = (
    Deal.id,
    Deal.tenant_id,
    Deal.pipeline_id,
    Deal.stage_id,
    Deal.title,
    Deal.value,
    Deal.currency,
    Deal.expected_close_date,
    Deal.created_at,
    Deal.updated_at,
)

# (capability flag, column) pairs for optional schema
OPTIONAL_COLUMNS = (
    ("has_client_id", Deal.client_id),
    ("has_owner_id", Deal.owner_id),
    ("has_proposal_file_path", Deal.proposal_file_path),
)


def deal_columns(caps: SchemaCaps) -> list[Any]:
    """Columns to SELECT for a deal, given the current capabilities."""
    columns = list(BASE_COLUMNS)
    for flag, column in OPTIONAL_COLUMNS:
        if getattr(caps, flag):
            columns.append(column)
    return columns


def writable_payload(values: dict[str, Any], caps: SchemaCaps) -> dict[str, Any]:
    """Drop optional-column keys the database cannot store.

    Callers validate user-supplied optional fields before this point (and
    raise SchemaUpgradePending); this only strips keys set internally,
    such as ``owner_id``.
    """
    payload = dict(values)
    for flag, column in OPTIONAL_COLUMNS:
        if not getattr(caps, flag):
            payload.pop(column.key, None)
    return payload


def visibility_clause(caps: SchemaCaps, role: Role, caller: Caller) -> ColumnElement[bool]:
    """Row filter applied on top of the tenant predicate.

    MEMBERs are restricted to deals they own. Without ``deals.owner_id`` the
    restriction cannot be expressed, and members see every tenant deal until
    the schema catches up; that gap is logged on every occurrence.
    """
    if role != Role.MEMBER:
        return true()
    if caps.has_owner_id:
        return Deal.owner_id == caller.user_id
    logger.warning(
        "deals.owner_scope_unavailable",
        tenant_id=caller.tenant_id,
        user_id=caller.user_id,
        hint="deals.owner_id missing; member sees all tenant deals",
    )
    return true()


def tenant_scope(caller: Caller) -> ColumnElement[bool]:
    return Deal.tenant_id == caller.tenant_id
