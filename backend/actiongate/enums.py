"""Closed vocabularies used by the governance engine.

Action types stay open strings; everything the engine itself branches on is
listed here. Columns store the ``.value`` strings.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

WILDCARD_ACTION_TYPE = "*"


class AutonomyLevel(str, Enum):
    OFF = "OFF"
    ASSISTED = "ASSISTED"
    AUTO = "AUTO"


class CardStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DISMISSED = "DISMISSED"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"


class DispatchState(str, Enum):
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


class ActorType(str, Enum):
    STAFF = "STAFF"
    AI = "AI"
    SYSTEM = "SYSTEM"


class EntityType(str, Enum):
    ACTION_CARD = "ACTION_CARD"
    PROPOSAL = "PROPOSAL"
    SETTING = "SETTING"


class HistoryAction(str, Enum):
    PROPOSAL_SUPPRESSED = "PROPOSAL_SUPPRESSED"
    CARD_CREATED = "CARD_CREATED"
    CARD_AUTO_EXECUTED = "CARD_AUTO_EXECUTED"
    AUTO_EXECUTION_FAILED = "AUTO_EXECUTION_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CARD_APPROVED = "CARD_APPROVED"
    CARD_EXECUTED = "CARD_EXECUTED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    DISPATCH_RETRIED = "DISPATCH_RETRIED"
    DISPATCH_RESET = "DISPATCH_RESET"
    CARD_DISMISSED = "CARD_DISMISSED"
    CARD_EXPIRED = "CARD_EXPIRED"
    POLICY_UPDATED = "POLICY_UPDATED"


class Rating(str, Enum):
    HELPFUL = "HELPFUL"
    NOT_HELPFUL = "NOT_HELPFUL"


class Role(str, Enum):
    AGENT = "AGENT"
    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def satisfies(self, required: Optional["Role"]) -> bool:
        """True when this role meets a minimum-role requirement."""
        if required is None:
            return True
        return self.rank >= required.rank


_ROLE_RANK = {
    Role.AGENT: 1,
    Role.SERVICE_PROVIDER: 2,
    Role.ADMIN: 3,
    Role.SUPER_ADMIN: 4,
}
