"""Dispatcher that routes requests to per-action-type handlers."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, List, Optional

from actiongate.errors import DispatchError
from actiongate.services.dispatch.base import Dispatcher, DispatchRequest, DispatchResult


logger = logging.getLogger(__name__)


class RoutingDispatcher(Dispatcher):
    """Looks up a handler by action type, falling back to ``default`` when set.

    New action kinds plug in here without touching the governance engine.
    """

    def __init__(self, default: Optional[Dispatcher] = None) -> None:
        self._handlers: Dict[str, Dispatcher] = {}
        self._default = default
        self._lock = Lock()

    def register(self, action_type: str, handler: Dispatcher) -> None:
        with self._lock:
            self._handlers[action_type] = handler
        logger.info("Registered dispatcher for %s: %s", action_type, type(handler).__name__)

    def registered_types(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        with self._lock:
            handler = self._handlers.get(request.action_type, self._default)
        if handler is None:
            raise DispatchError(f"No dispatcher registered for action type {request.action_type}")
        return handler.dispatch(request)
