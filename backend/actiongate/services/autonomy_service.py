"""Autonomy policy store and resolver.

Resolution is a two-level lookup: the exact (tenant, action type) row, then
the tenant wildcard row, then the platform default. Rows are read on every
call, so a policy update is visible to the next proposal or approval.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

from sqlalchemy import asc
from sqlalchemy.orm import Session

from actiongate.db.models.autonomy_config import AutonomyConfig
from actiongate.db.types import utcnow
from actiongate.db.upsert import upsert
from actiongate.enums import (
    WILDCARD_ACTION_TYPE,
    ActorType,
    AutonomyLevel,
    EntityType,
    HistoryAction,
    Role,
)
from actiongate.errors import InvalidPolicy
from actiongate.observability.tracing import trace
from actiongate.services import action_history_service
from actiongate.services.tenant_service import require_tenant

logger = logging.getLogger(__name__)

PolicySource = Literal["specific", "wildcard", "default"]


@dataclass(frozen=True)
class ResolvedPolicy:
    level: AutonomyLevel
    constraints: Dict[str, Any] = field(default_factory=dict)
    required_role: Optional[Role] = None
    source: PolicySource = "default"

    @property
    def max_per_day(self) -> Optional[int]:
        value = self.constraints.get("maxPerDay")
        return int(value) if value is not None else None


DEFAULT_POLICY = ResolvedPolicy(level=AutonomyLevel.ASSISTED)


def resolve(db: Session, tenant_id: UUID, action_type: str) -> ResolvedPolicy:
    """Return the effective policy for a tenant and action type."""
    require_tenant(db, tenant_id)

    specific = _find_config(db, tenant_id, action_type, refresh=True)
    if specific:
        return _to_resolved(specific, "specific")

    if action_type != WILDCARD_ACTION_TYPE:
        wildcard = _find_config(db, tenant_id, WILDCARD_ACTION_TYPE, refresh=True)
        if wildcard:
            return _to_resolved(wildcard, "wildcard")

    return DEFAULT_POLICY


def get_policy(db: Session, tenant_id: UUID, action_type: str | None = None):
    """Return one stored row (or None) for an action type, or every row of the tenant."""
    require_tenant(db, tenant_id)
    if action_type is not None:
        return _find_config(db, tenant_id, action_type)
    return list_policies(db, tenant_id)


def list_policies(db: Session, tenant_id: UUID) -> List[AutonomyConfig]:
    return (
        db.query(AutonomyConfig)
        .filter(AutonomyConfig.tenant_id == tenant_id)
        .order_by(asc(AutonomyConfig.action_type))
        .all()
    )


def set_policy(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    level: AutonomyLevel | str,
    constraints: Dict[str, Any] | None = None,
    required_role: Role | str | None = None,
    *,
    actor_id: UUID | None = None,
    actor_name: str | None = None,
) -> AutonomyConfig:
    """Create or replace the policy row for (tenant, action type) and audit the change."""
    require_tenant(db, tenant_id)
    action_type = validate_action_type(action_type)
    level_value = _validate_level(level)
    role_value = _validate_role(required_role)
    constraints_value = _validate_constraints(constraints)

    with trace(
        "autonomy.set_policy",
        metadata={"action_type": action_type, "level": level_value.value},
        tenant_id=str(tenant_id),
    ):
        try:
            existing = _find_config(db, tenant_id, action_type)
            before = _snapshot(existing) if existing else None
            stamp = utcnow()
            upsert(
                db,
                AutonomyConfig,
                values={
                    "id": uuid4(),
                    "tenant_id": tenant_id,
                    "action_type": action_type,
                    "autonomy_level": level_value.value,
                    "constraints": constraints_value,
                    "required_role": role_value.value if role_value else None,
                    "created_at": stamp,
                    "updated_at": stamp,
                },
                conflict_columns=["tenant_id", "action_type"],
                update_columns=["autonomy_level", "constraints", "required_role", "updated_at"],
            )
            config = _find_config(db, tenant_id, action_type, refresh=True)

            action_history_service.append(
                db,
                tenant_id=tenant_id,
                actor_type=ActorType.STAFF if actor_id else ActorType.SYSTEM,
                actor_id=actor_id,
                actor_name=actor_name,
                action=HistoryAction.POLICY_UPDATED,
                entity_type=EntityType.SETTING,
                entity_id=config.id,
                description=f"Autonomy for {action_type} set to {level_value.value}",
                diff={"before": before, "after": _snapshot(config)},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(config)
    logger.info("Autonomy policy %s set to %s for tenant %s", action_type, level_value.value, tenant_id)
    return config


def _find_config(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    *,
    refresh: bool = False,
) -> AutonomyConfig | None:
    query = db.query(AutonomyConfig).filter(
        AutonomyConfig.tenant_id == tenant_id,
        AutonomyConfig.action_type == action_type,
    )
    if refresh:
        query = query.populate_existing()
    return query.one_or_none()


def _to_resolved(config: AutonomyConfig, source: PolicySource) -> ResolvedPolicy:
    role = Role(config.required_role) if config.required_role else None
    return ResolvedPolicy(
        level=AutonomyLevel(config.autonomy_level),
        constraints=dict(config.constraints or {}),
        required_role=role,
        source=source,
    )


def _snapshot(config: AutonomyConfig) -> Dict[str, Any]:
    return {
        "autonomyLevel": config.autonomy_level,
        "constraints": dict(config.constraints or {}),
        "requiredRole": config.required_role,
    }


def validate_action_type(action_type: str) -> str:
    cleaned = (action_type or "").strip()
    if not cleaned:
        raise InvalidPolicy("action_type must not be empty")
    if len(cleaned) > 64:
        raise InvalidPolicy("action_type must be at most 64 characters")
    return cleaned


def _validate_level(level: AutonomyLevel | str) -> AutonomyLevel:
    try:
        return AutonomyLevel(level)
    except ValueError as exc:
        raise InvalidPolicy(f"Unknown autonomy level {level!r}") from exc


def _validate_role(role: Role | str | None) -> Role | None:
    if role is None or role == "":
        return None
    try:
        return Role(role)
    except ValueError as exc:
        raise InvalidPolicy(f"Unknown role {role!r}") from exc


def _validate_constraints(constraints: Dict[str, Any] | None) -> Dict[str, Any]:
    if constraints is None:
        return {}
    if not isinstance(constraints, dict):
        raise InvalidPolicy("constraints must be an object")
    value = constraints.get("maxPerDay")
    if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
        raise InvalidPolicy("maxPerDay must be a non-negative integer")
    return dict(constraints)
