"""ORM models exposed for metadata discovery."""
from actiongate.db.models.action_card import ActionCard
from actiongate.db.models.action_history import ActionHistory
from actiongate.db.models.agent_feedback import AgentFeedback
from actiongate.db.models.autonomy_config import AutonomyConfig
from actiongate.db.models.rate_counter import RateCounter
from actiongate.db.models.staff import Staff
from actiongate.db.models.tenant import Tenant

__all__ = [
    "ActionCard",
    "ActionHistory",
    "AgentFeedback",
    "AutonomyConfig",
    "RateCounter",
    "Staff",
    "Tenant",
]
