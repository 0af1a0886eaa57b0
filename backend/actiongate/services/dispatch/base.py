"""Dispatcher interface the engine calls to carry out an action."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID


@dataclass(frozen=True)
class DispatchRequest:
    card_id: UUID
    tenant_id: UUID
    action_type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchResult:
    external_ref: Optional[str]
    detail: str = ""


class Dispatcher:
    """Base interface for dispatch providers.

    Implementations return a DispatchResult on success and raise
    ``actiongate.errors.DispatchError`` on failure. The engine calls
    ``dispatch`` at most once per resolved card, but requests carry the card
    id so a provider over an unreliable transport can drop duplicates.
    """

    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        raise NotImplementedError
