"""Caller identity for complaint endpoints.

CampusDesk sits behind an authenticating gateway that verifies the
user's session and forwards the result as headers:

* ``X-Gateway-Key``          -- shared secret proving the request came
  through the gateway (constant-time compared with ``GATEWAY_API_KEY``).
* ``X-User-Id``              -- verified uid (required).
* ``X-User-Email``, ``X-User-Name``, ``X-User-Email-Verified``.
* ``X-User-Claims``          -- comma-separated custom claims, e.g.
  ``admin`` or ``department``.

:func:`get_role_context` turns those into a :class:`RoleContext` through
the application's :class:`~src.services.access_scope.RoleResolver`.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from config.settings import settings
from src.models.context import Identity, RoleContext
from src.services.errors import AccessDenied, StoreError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_gateway_key_header = APIKeyHeader(name="X-Gateway-Key", auto_error=False)

_TRUTHY = frozenset({"1", "true", "yes"})


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_gateway_key(
    request: Request,
    api_key: str | None = Security(_gateway_key_header),
) -> None:
    """Reject requests that did not come through the auth gateway."""
    configured_key = settings.gateway_api_key

    if not configured_key:
        if not settings.is_production:
            logger.warning(
                "auth.gateway_key_not_configured",
                note="Gateway key not set; trusting identity headers in development mode",
            )
            return
        logger.error("auth.gateway_key_not_configured_production")
        raise HTTPException(status_code=503, detail="Authentication is not configured.")

    if not api_key:
        logger.warning("auth.missing_gateway_key", path=request.url.path, client_ip=_client_ip(request))
        raise HTTPException(
            status_code=401,
            detail="Missing X-Gateway-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning("auth.invalid_gateway_key", path=request.url.path, client_ip=_client_ip(request))
        raise HTTPException(status_code=403, detail="Invalid gateway key.")


def identity_from_headers(request: Request) -> Identity:
    uid = request.headers.get("X-User-Id", "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail="Not signed in.")

    claims = {
        claim.strip().lower(): True
        for claim in request.headers.get("X-User-Claims", "").split(",")
        if claim.strip()
    }
    return Identity(
        uid=uid,
        email=request.headers.get("X-User-Email", "").strip(),
        display_name=request.headers.get("X-User-Name", "").strip(),
        email_verified=request.headers.get("X-User-Email-Verified", "").strip().lower() in _TRUTHY,
        claims=claims,
    )


async def get_role_context(
    request: Request,
    _: None = Depends(require_gateway_key),
) -> RoleContext:
    """FastAPI dependency resolving the caller's :class:`RoleContext`.

    Usage::

        @router.get("")
        async def list_complaints(ctx: RoleContext = Depends(get_role_context)): ...
    """
    identity = identity_from_headers(request)
    resolver = request.app.state.role_resolver
    try:
        ctx = await resolver.resolve(identity)
    except AccessDenied as exc:
        logger.info("auth.role_denied", uid=identity.uid, reason=str(exc))
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except StoreError as exc:
        logger.warning("auth.role_lookup_failed", uid=identity.uid, exc_info=True)
        raise HTTPException(status_code=503, detail="Could not load your account. Try again shortly.") from exc

    structlog.contextvars.bind_contextvars(uid=ctx.uid, role=ctx.role.value)
    return ctx
