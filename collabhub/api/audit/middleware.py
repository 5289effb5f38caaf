"""
Audit Middleware

Records every request against an audited route prefix as an audit event,
after the response has been produced. High-frequency, low-risk paths are
skipped.
"""

import json
import logging
import re
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import AuditEvent, AuditOutcome

logger = logging.getLogger(__name__)


METHOD_ACTIONS = {
    "GET": "READ",
    "POST": "CREATE",
    "PUT": "UPDATE",
    "PATCH": "UPDATE",
    "DELETE": "DELETE",
}

AUDITED_ROUTES = [
    (re.compile(r"^/api/v\d+/users"), "User"),
    (re.compile(r"^/api/v\d+/teams"), "Team"),
    (re.compile(r"^/api/v\d+/projects"), "Project"),
    (re.compile(r"^/api/v\d+/documents"), "Document"),
    (re.compile(r"^/api/v\d+/github"), "GitHub"),
    (re.compile(r"^/api/v\d+/ai"), "AI"),
    (re.compile(r"^/api/v\d+/admin"), "Admin"),
    (re.compile(r"^/api/v\d+/compliance"), "Compliance"),
]

EXCLUDED_ROUTES = [
    re.compile(r"^/api/health$"),
    re.compile(r"^/api/v\d+/auth/refresh$"),
    re.compile(r"^/api/(docs|redoc|openapi)"),
]

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


def resolve_resource(path: str) -> Optional[str]:
    """Resource kind audited for a path, or None when the path is not audited."""
    if any(pattern.match(path) for pattern in EXCLUDED_ROUTES):
        return None
    for pattern, resource in AUDITED_ROUTES:
        if pattern.match(path):
            return resource
    return None


def extract_resource_id(path: str) -> Optional[str]:
    match = UUID_PATTERN.search(path)
    return match.group(0) if match else None


def outcome_for(status_code: int) -> AuditOutcome:
    if status_code >= 500:
        return AuditOutcome.FAILURE
    if status_code >= 400:
        return AuditOutcome.WARNING
    return AuditOutcome.SUCCESS


def _default_recorder() -> AuditRecorder:
    from collabhub.api.audit.pipeline import get_audit_pipeline

    return get_audit_pipeline().recorder


class AuditMiddleware(BaseHTTPMiddleware):
    """Hand one audit event per audited request to the recorder."""

    def __init__(
        self,
        app: ASGIApp,
        recorder_getter: Callable[[], AuditRecorder] = _default_recorder,
    ) -> None:
        super().__init__(app)
        self.recorder_getter = recorder_getter

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        resource = resolve_resource(path)
        if resource is None:
            return await call_next(request)

        body_keys = None
        if request.method in ("POST", "PUT", "PATCH"):
            body_keys = await self._body_keys(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)

        # Request bodies are never logged, only their top-level keys
        details = {
            "method": request.method,
            "path": path,
            "statusCode": response.status_code,
        }
        if request.query_params:
            details["query"] = dict(request.query_params)
        if body_keys:
            details["bodyKeys"] = body_keys

        action = METHOD_ACTIONS.get(request.method, request.method)
        event = AuditEvent(
            action=f"{resource.upper()}_{action}",
            resource=resource,
            user_id=getattr(request.state, "user_id", None),
            resource_id=extract_resource_id(path),
            details=details,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            status=outcome_for(response.status_code),
            duration_ms=duration_ms,
        )

        try:
            self.recorder_getter().record(event)
        except Exception as e:
            logger.error(f"Failed to queue request audit for {path}: {e}")

        return response

    @staticmethod
    async def _body_keys(request: Request) -> Optional[list]:
        if "application/json" not in request.headers.get("content-type", ""):
            return None
        try:
            payload = json.loads(await request.body() or b"null")
        except ValueError:
            return None
        if isinstance(payload, dict):
            return sorted(payload.keys())
        return None
