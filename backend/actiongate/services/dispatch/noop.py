"""No-op dispatch provider (logs only)."""
from __future__ import annotations

import logging

from actiongate.services.dispatch.base import Dispatcher, DispatchRequest, DispatchResult


logger = logging.getLogger(__name__)


class NoopDispatcher(Dispatcher):
    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        logger.info(
            "Dispatch accepted (noop) type=%s tenant=%s card=%s",
            request.action_type,
            request.tenant_id,
            request.card_id,
        )
        return DispatchResult(external_ref=f"noop:{request.card_id}", detail="dispatch provider is noop")
