"""Helpers for tenants, staff and the default role lookup."""
from __future__ import annotations

from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from actiongate.db.models.staff import Staff
from actiongate.db.models.tenant import Tenant
from actiongate.enums import Role
from actiongate.errors import TenantNotFound


class RoleLookup(Protocol):
    """Resolves the role of an acting staff member (None when unknown)."""

    def role_of(self, actor_id: UUID) -> Role | None:
        ...


class StaffRoleLookup:
    """Role lookup backed by the staff table, scoped to one tenant.

    Staff of another tenant have no role here.
    """

    def __init__(self, db: Session, tenant_id: UUID) -> None:
        self._db = db
        self._tenant_id = tenant_id

    def role_of(self, actor_id: UUID) -> Role | None:
        staff = self._db.get(Staff, actor_id)
        if not staff or staff.tenant_id != self._tenant_id:
            return None
        try:
            return Role(staff.role)
        except ValueError:
            return None


def require_tenant(db: Session, tenant_id: UUID) -> Tenant:
    """Fetch a tenant or raise TenantNotFound."""
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise TenantNotFound(tenant_id)
    return tenant


def create_tenant(db: Session, name: str, *, timezone: str = "UTC", tenant_id: UUID | None = None) -> Tenant:
    """Register a tenant; the timezone must be a valid IANA name."""
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {timezone!r}") from exc

    tenant = Tenant(name=name, timezone=timezone)
    if tenant_id is not None:
        tenant.id = tenant_id
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def add_staff(db: Session, tenant_id: UUID, name: str, role: Role | str) -> Staff:
    require_tenant(db, tenant_id)
    staff = Staff(tenant_id=tenant_id, name=name, role=Role(role).value)
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff
