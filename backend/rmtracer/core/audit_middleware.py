"""
Station access logging middleware.
Logs every mutating request to the scan and sync endpoints with the signed-in actor.
"""
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Endpoints that move files or touch the offline queue
AUDITED_PATH_PREFIXES = (
    "/api/v1/scan",
    "/api/v1/sync",
)

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class AuditMiddleware(BaseHTTPMiddleware):
    """Middleware that logs file movements and queue operations."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        path = request.url.path
        if not any(path.startswith(prefix) for prefix in AUDITED_PATH_PREFIXES):
            return response
        if request.method not in MUTATING_METHODS:
            return response

        actor_id = "anonymous"
        station = getattr(request.app.state, "station", None)
        if station is not None and station.session.actor_id:
            actor_id = station.session.actor_id

        logger.info(
            "%s %s -> %s (actor=%s, pending=%s)",
            request.method,
            path,
            response.status_code,
            actor_id,
            len(station.queue) if station is not None else "?",
        )
        return response
