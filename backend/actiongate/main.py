"""Main FastAPI application for the ActionGate governance service."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from actiongate.api.routes.action_cards import router as action_cards_router
from actiongate.api.routes.action_history import router as action_history_router
from actiongate.api.routes.agent_feedback import router as agent_feedback_router
from actiongate.api.routes.autonomy import router as autonomy_router
from actiongate.core.config import settings
from actiongate.core.logging import configure_logging
from actiongate.core.middleware import RequestIDMiddleware
from actiongate.errors import GovernanceError
from actiongate.observability.client import init_opik
from actiongate.observability.tracing import trace

configure_logging(log_level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(action_cards_router)
app.include_router(autonomy_router)
app.include_router(action_history_router)
app.include_router(agent_feedback_router)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    """Translate service-layer errors into their HTTP status codes."""
    logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.get("/health", tags=["health"], summary="Readiness check")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can check the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
