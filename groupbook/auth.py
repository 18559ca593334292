"""
Shared-secret authentication for the /api routes.
"""

import hmac
import json
import logging
from typing import Optional

from fastapi import HTTPException, Request, status

from groupbook.metrics import record_operation

logger = logging.getLogger(__name__)

OPERATIONS = {"GET": "list", "POST": "create", "DELETE": "delete"}


def _strip_scheme(authorization: str) -> str:
    """Accept both "<token>" and "Bearer <token>"."""
    raw = authorization.strip()
    parts = raw.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return raw


def _token_from_body(body: bytes) -> Optional[str]:
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("token"), str):
        return payload["token"]
    return None


async def extract_token(request: Request) -> Optional[str]:
    """
    Find the caller's credential.

    Precedence: Authorization header, then ?token=, then a "token" field in a
    JSON object body. Empty values fall through to the next source.
    """
    authorization = request.headers.get("authorization")
    if authorization and _strip_scheme(authorization):
        return _strip_scheme(authorization)

    query_token = request.query_params.get("token")
    if query_token:
        return query_token

    return _token_from_body(await request.body())


def verify_token(candidate: Optional[str], secret: str) -> bool:
    """
    Compare the supplied credential with the shared secret.

    Uses constant-time comparison to prevent timing attacks.
    """
    if not candidate or not secret:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def resource_for(path: str) -> str:
    """/api/messages/3 -> messages"""
    parts = [p for p in path.split("/") if p]
    return parts[1] if len(parts) > 1 and parts[0] == "api" else "unknown"


async def require_token(request: Request) -> None:
    """
    FastAPI dependency guarding every /api route.

    Runs before body validation, so unauthenticated requests never reach the
    handler or the database.
    """
    settings = request.app.state.settings
    token = await extract_token(request)

    if not verify_token(token, settings.SECRET_TOKEN):
        logger.warning(f"Rejected {request.method} {request.url.path}: "
                       f"{'missing' if not token else 'invalid'} token")
        record_operation(
            resource=resource_for(request.url.path),
            operation=OPERATIONS.get(request.method, request.method.lower()),
            result="unauthorized"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
