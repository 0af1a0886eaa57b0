"""Error taxonomy raised by the governance services.

Services raise these; the HTTP layer translates them into status codes.
"""
from __future__ import annotations

from uuid import UUID


class GovernanceError(Exception):
    """Base class for every error the engine surfaces to callers."""

    status_code = 400
    detail = "Governance error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.detail)
        self.message = message or self.detail


class TenantNotFound(GovernanceError):
    status_code = 404
    detail = "Tenant not found"

    def __init__(self, tenant_id: UUID) -> None:
        super().__init__(f"Tenant {tenant_id} not found")
        self.tenant_id = tenant_id


class CardNotFound(GovernanceError):
    status_code = 404
    detail = "Action card not found"

    def __init__(self, card_id: UUID) -> None:
        super().__init__(f"Action card {card_id} not found")
        self.card_id = card_id


class AlreadyResolved(GovernanceError):
    """The card left the required source state before this transition ran."""

    status_code = 409
    detail = "This item was already handled"

    def __init__(self, card_id: UUID, status: str | None = None) -> None:
        suffix = f" (status {status})" if status else ""
        super().__init__(f"{self.detail}{suffix}")
        self.card_id = card_id
        self.status = status


StaleState = AlreadyResolved


class Forbidden(GovernanceError):
    status_code = 403
    detail = "Role requirement not met"


class InvalidPolicy(GovernanceError):
    status_code = 422
    detail = "Invalid autonomy policy"


class ExpiryNotReached(GovernanceError):
    status_code = 409
    detail = "Action card has not reached its expiry window"


class CardNotResolved(GovernanceError):
    status_code = 409
    detail = "Feedback is only accepted once the action card is resolved"


class DispatchError(GovernanceError):
    """Raised by dispatchers when the downstream action could not be carried out."""

    status_code = 502
    detail = "Dispatch failed"


class CapacityExceeded(GovernanceError):
    """Internal signal from the rate tracker; folded into the AUTO downgrade path."""

    status_code = 429
    detail = "Daily limit reached"
