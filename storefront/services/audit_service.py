"""Append-only admin audit trail. Rows are written, never updated or deleted."""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.admin import AdminAuditLog

logger = logging.getLogger(__name__)


def _dump(snapshot: dict | None) -> str | None:
    if snapshot is None:
        return None
    return json.dumps(snapshot, sort_keys=True, default=str)


async def log_admin_action(
    db: AsyncSession,
    admin_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    *,
    before: dict | None = None,
    after: dict | None = None,
) -> AdminAuditLog:
    """Stage an audit row in the caller's transaction. The caller commits."""
    entry = AdminAuditLog(
        admin_id=admin_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before=_dump(before),
        after=_dump(after),
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    logger.info("Admin action: admin=%s action=%s %s=%s", admin_id, action, entity_type, entity_id)
    return entry


async def list_audit_logs(
    db: AsyncSession,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    query = select(AdminAuditLog)
    count_query = select(func.count(AdminAuditLog.id))
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)
        count_query = count_query.where(AdminAuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AdminAuditLog.entity_id == entity_id)
        count_query = count_query.where(AdminAuditLog.entity_id == entity_id)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "entries": [audit_to_dict(e) for e in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def audit_to_dict(entry: AdminAuditLog) -> dict:
    return {
        "id": entry.id,
        "admin_id": entry.admin_id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "before": json.loads(entry.before) if entry.before else None,
        "after": json.loads(entry.after) if entry.after else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
