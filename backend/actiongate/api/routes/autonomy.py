"""Autonomy policy endpoints."""
from __future__ import annotations

from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from actiongate.api.schemas.autonomy import (
    AutonomyConfigPayload,
    AutonomyListResponse,
    AutonomyUpdateRequest,
    AutonomyUpdateResponse,
    ResolvedPolicyResponse,
)
from actiongate.db.deps import get_db
from actiongate.db.models.autonomy_config import AutonomyConfig
from actiongate.observability.metrics import log_metric
from actiongate.observability.tracing import trace
from actiongate.services import autonomy_service

router = APIRouter()


@router.get(
    "/autonomy",
    response_model=Union[ResolvedPolicyResponse, AutonomyListResponse],
    tags=["autonomy"],
)
def read_autonomy(
    request: Request,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    action_type: Optional[str] = Query(None, description="Resolve the effective policy for one action type"),
    db: Session = Depends(get_db),
):
    """List a tenant's stored policies, or resolve the effective one for ``action_type``."""
    request_id = getattr(request.state, "request_id", None)
    with trace(
        "http.autonomy.read",
        metadata={"action_type": action_type},
        tenant_id=str(tenant_id),
        request_id=request_id,
    ):
        if action_type:
            policy = autonomy_service.resolve(db, tenant_id, action_type)
            return ResolvedPolicyResponse(
                tenant_id=tenant_id,
                action_type=action_type,
                autonomy_level=policy.level.value,
                constraints=policy.constraints,
                required_role=policy.required_role.value if policy.required_role else None,
                source=policy.source,
                request_id=request_id or "",
            )
        configs = autonomy_service.get_policy(db, tenant_id)

    return AutonomyListResponse(
        tenant_id=tenant_id,
        configs=[_serialize_config(config) for config in configs],
        request_id=request_id or "",
    )


@router.put("/autonomy/{action_type}", response_model=AutonomyUpdateResponse, tags=["autonomy"])
def update_autonomy(
    action_type: str,
    payload: AutonomyUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AutonomyUpdateResponse:
    request_id = getattr(request.state, "request_id", None)
    config = autonomy_service.set_policy(
        db,
        payload.tenant_id,
        action_type,
        payload.autonomy_level,
        payload.constraints,
        payload.required_role,
        actor_id=payload.actor_id,
        actor_name=payload.actor_name,
    )
    log_metric(
        "autonomy.updated",
        1,
        metadata={"action_type": config.action_type, "level": config.autonomy_level},
    )
    return AutonomyUpdateResponse(
        tenant_id=payload.tenant_id,
        config=_serialize_config(config),
        request_id=request_id or "",
    )


def _serialize_config(config: AutonomyConfig) -> AutonomyConfigPayload:
    return AutonomyConfigPayload(
        action_type=config.action_type,
        autonomy_level=config.autonomy_level,
        constraints=config.constraints if isinstance(config.constraints, dict) else {},
        required_role=config.required_role,
        updated_at=config.updated_at,
    )
