"""Append-only audit ledger for governance events."""
from __future__ import annotations

import base64
import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, desc, or_
from sqlalchemy.orm import Query, Session

from actiongate.db.models.action_history import ActionHistory
from actiongate.enums import ActorType, EntityType, HistoryAction

logger = logging.getLogger(__name__)

EXPORT_ROW_LIMIT = 10_000
EXPORT_COLUMNS = [
    "id",
    "actorType",
    "actorName",
    "action",
    "entityType",
    "entityId",
    "description",
    "createdAt",
]


@dataclass
class HistoryFilters:
    actor_type: Optional[str] = None
    actor_id: Optional[UUID] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass
class HistoryPage:
    items: List[ActionHistory]
    next_cursor: Optional[str]


def append(
    db: Session,
    *,
    tenant_id: UUID,
    actor_type: ActorType,
    action: HistoryAction,
    entity_type: EntityType,
    entity_id: UUID,
    description: str,
    actor_id: UUID | None = None,
    actor_name: str | None = None,
    diff: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActionHistory:
    """Stage a ledger entry in the caller's unit of work.

    Nothing is committed here: the entry lands together with the transition it
    documents, and a failed flush aborts that transition.
    """
    entry = ActionHistory(
        tenant_id=tenant_id,
        actor_type=ActorType(actor_type).value,
        actor_id=actor_id,
        actor_name=actor_name,
        action=HistoryAction(action).value,
        entity_type=EntityType(entity_type).value,
        entity_id=entity_id,
        description=description,
        diff=diff,
        metadata_json=metadata or {},
    )
    db.add(entry)
    db.flush()
    logger.debug("Ledger %s on %s/%s", entry.action, entry.entity_type, entry.entity_id)
    return entry


def list_history(
    db: Session,
    tenant_id: UUID,
    filters: HistoryFilters | None = None,
    *,
    limit: int = 50,
    cursor: str | None = None,
) -> HistoryPage:
    """Return ledger entries newest first with keyset pagination."""
    query = _filtered_query(db, tenant_id, filters or HistoryFilters())
    if cursor:
        cursor_created, cursor_id = decode_cursor(cursor)
        query = query.filter(
            or_(
                ActionHistory.created_at < cursor_created,
                and_(ActionHistory.created_at == cursor_created, ActionHistory.id < cursor_id),
            )
        )
    entries = (
        query.order_by(desc(ActionHistory.created_at), desc(ActionHistory.id))
        .limit(limit + 1)
        .all()
    )
    has_more = len(entries) > limit
    items = entries[:limit]
    next_cursor = encode_cursor(items[-1]) if has_more and items else None
    return HistoryPage(items=items, next_cursor=next_cursor)


def history_for_entity(db: Session, tenant_id: UUID, entity_type: str, entity_id: UUID) -> List[ActionHistory]:
    return (
        db.query(ActionHistory)
        .filter(
            ActionHistory.tenant_id == tenant_id,
            ActionHistory.entity_type == entity_type,
            ActionHistory.entity_id == entity_id,
        )
        .order_by(desc(ActionHistory.created_at), desc(ActionHistory.id))
        .limit(50)
        .all()
    )


def export_csv(db: Session, tenant_id: UUID, filters: HistoryFilters | None = None) -> str:
    """Render the filtered ledger as CSV (header row, CRLF line endings)."""
    entries = (
        _filtered_query(db, tenant_id, filters or HistoryFilters())
        .order_by(desc(ActionHistory.created_at), desc(ActionHistory.id))
        .limit(EXPORT_ROW_LIMIT)
        .all()
    )
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow(EXPORT_COLUMNS)
    for entry in entries:
        writer.writerow(
            [
                str(entry.id),
                entry.actor_type,
                entry.actor_name or "",
                entry.action,
                entry.entity_type,
                str(entry.entity_id),
                entry.description or "",
                entry.created_at.isoformat() if entry.created_at else "",
            ]
        )
    return buffer.getvalue()


def _filtered_query(db: Session, tenant_id: UUID, filters: HistoryFilters) -> Query:
    query = db.query(ActionHistory).filter(ActionHistory.tenant_id == tenant_id)
    if filters.actor_type:
        query = query.filter(ActionHistory.actor_type == filters.actor_type)
    if filters.actor_id:
        query = query.filter(ActionHistory.actor_id == filters.actor_id)
    if filters.action:
        query = query.filter(ActionHistory.action == filters.action)
    if filters.entity_type:
        query = query.filter(ActionHistory.entity_type == filters.entity_type)
    if filters.entity_id:
        query = query.filter(ActionHistory.entity_id == filters.entity_id)
    if filters.date_from:
        query = query.filter(ActionHistory.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(ActionHistory.created_at <= filters.date_to)
    if filters.search and filters.search.strip():
        term = _escape_like(filters.search.strip())
        query = query.filter(ActionHistory.description.ilike(f"%{term}%", escape="\\"))
    return query


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def encode_cursor(entry: ActionHistory) -> str:
    raw = f"{entry.created_at.isoformat()}|{entry.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("utf-8")


def decode_cursor(cursor: str) -> Tuple[datetime, UUID]:
    try:
        decoded = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        created_str, entry_id_str = decoded.split("|", 1)
        return datetime.fromisoformat(created_str), UUID(entry_id_str)
    except Exception as exc:
        raise ValueError("invalid cursor") from exc
