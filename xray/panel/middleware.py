"""Panel access guard for Analytics X-Ray.

The panel API edits the capture allowlist without authentication, so every
/panel request is checked before it reaches a handler:

  1. Client address must be loopback (any 127.0.0.0/8 address, ::1).
     Disable with XRAY_PANEL_LOCALHOST_ONLY=false (automated tests only).
  2. If the request carries an Origin header, it must be the extension's own
     page (chrome-extension://, moz-extension://) or a loopback page.
     Browsers attach Origin to cross-site fetches, so a website open in a
     tab cannot rewrite the allowlist through 127.0.0.1 even though its
     requests arrive from a loopback client address.

Requests without an Origin header (CLI tools, the background worker) are
judged on the client address alone. Non-panel routes pass through unchanged.
"""

from __future__ import annotations

import ipaddress
import os
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from xray.allowlist.domain import extract_domain, is_extension_page
from xray.utils.logger import get_logger

logger = get_logger(__name__)

PANEL_PREFIX = "/panel"

# ─── Denial reasons ───────────────────────────────────────────────────────────

DENY_CLIENT = "forbidden_client"
DENY_ORIGIN = "forbidden_origin"

_DENIAL_MESSAGES: dict[str, str] = {
    DENY_CLIENT: "Panel access is restricted to localhost",
    DENY_ORIGIN: "Panel access is restricted to the extension and local pages",
}


def _client_check_enabled() -> bool:
    return os.environ.get("XRAY_PANEL_LOCALHOST_ONLY", "true").lower() != "false"


def is_loopback_host(host: Optional[str]) -> bool:
    """True for ``localhost`` and loopback IP literals (IPv4 or IPv6)."""
    if not host:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host.strip("[]")).is_loopback
    except ValueError:
        return False


def is_allowed_origin(origin: str) -> bool:
    """Extension pages and pages served from a loopback host may call the panel."""
    if is_extension_page(origin):
        return True
    return is_loopback_host(extract_domain(origin))


def panel_access_denial(client_host: Optional[str], origin: Optional[str]) -> Optional[str]:
    """Return the denial reason for a panel request, or None if it may proceed."""
    if _client_check_enabled() and not is_loopback_host(client_host):
        return DENY_CLIENT
    if origin is not None and not is_allowed_origin(origin):
        return DENY_ORIGIN
    return None


class PanelAccessMiddleware(BaseHTTPMiddleware):
    """Apply panel_access_denial() to every /panel request.

    Registered last in create_app() so it runs first, before CORS handling,
    body reads or route handlers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if not request.url.path.startswith(PANEL_PREFIX):
            return await call_next(request)

        client_host = request.client.host if request.client else None
        origin = request.headers.get("origin")
        reason = panel_access_denial(client_host, origin)
        if reason is None:
            return await call_next(request)

        logger.warning(
            "Panel request rejected",
            reason=reason,
            client_host=client_host,
            origin=origin,
            method=request.method,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=403,
            content={"error": {"message": _DENIAL_MESSAGES[reason], "code": reason}},
        )
