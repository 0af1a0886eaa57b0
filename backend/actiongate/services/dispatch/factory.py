"""Dispatch provider factory."""
from __future__ import annotations

from functools import lru_cache

from actiongate.core.config import settings
from actiongate.services.dispatch.noop import NoopDispatcher
from actiongate.services.dispatch.routing import RoutingDispatcher


@lru_cache
def get_dispatcher() -> RoutingDispatcher:
    """Process-wide router; hosts register per-type handlers on it at startup."""
    provider = settings.dispatch_provider.lower()
    if provider == "noop":
        return RoutingDispatcher(default=NoopDispatcher())
    # Unknown providers get no fallback: unregistered action types fail and degrade to review.
    return RoutingDispatcher()
