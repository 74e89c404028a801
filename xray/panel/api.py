"""Panel API endpoints for Analytics X-Ray.

All endpoints are unauthenticated (loopback origin is the security boundary,
see panel/middleware.py). State lives on app.state:
    app.state.store    — DomainStore (allowlist owner)
    app.state.tracker  — TabDomainTracker (per-tab capture gate)

Routes (prefixed with /panel/api in main.py):
    GET    /allowlist                 — current rules
    POST   /allowlist                 — validate + add/update a rule
    PATCH  /allowlist                 — flip allowSubdomains on an exact domain
    DELETE /allowlist?domain=...      — remove a rule (www./case insensitive)
    DELETE /allowlist/all             — clear every rule
    POST   /allowlist/check           — is a domain allowed?
    POST   /allowlist/auto-allow      — admit a domain with the smallest change
    PUT    /tabs/{tab_id}             — tab navigated to a URL
    GET    /tabs/{tab_id}             — tab domain + allowance
    POST   /tabs/{tab_id}/re-evaluate — re-check one tab
    DELETE /tabs/{tab_id}             — tab closed
    GET    /status                    — readiness, storage health, rule count
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from xray.allowlist.domain import validate_domain_input
from xray.allowlist.models import DomainRule
from xray.allowlist.store import DomainStore
from xray.tracking import TabDomainInfo, TabDomainTracker
from xray.utils.logger import get_logger

logger = get_logger(__name__)


def _require_ready(request: Request) -> None:
    """Raise HTTP 503 if the panel service is not ready."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "Analytics X-Ray is starting up"},
        )


router = APIRouter(tags=["panel"], dependencies=[Depends(_require_ready)])


# ─── Request Models ───────────────────────────────────────────────────────────


class DomainRuleRequest(BaseModel):
    """Request body for POST/PATCH /allowlist."""

    domain: str
    allow_subdomains: bool = Field(default=False, alias="allowSubdomains")


class DomainRequest(BaseModel):
    """Request body for /allowlist/check and /allowlist/auto-allow."""

    domain: str


class TabUrlRequest(BaseModel):
    """Request body for PUT /tabs/{tab_id}."""

    url: str


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _store(request: Request) -> DomainStore:
    return request.app.state.store


def _tracker(request: Request) -> TabDomainTracker:
    return request.app.state.tracker


def _validated_domain(raw: str) -> str:
    """Normalized host for user or tab input; HTTP 422 with the panel message otherwise."""
    validation = validate_domain_input(raw)
    if not validation.is_valid or validation.normalized_domain is None:
        raise HTTPException(
            status_code=422,
            detail={"message": validation.error, "code": "invalid_domain"},
        )
    return validation.normalized_domain


def _allowlist_body(rules: tuple[DomainRule, ...]) -> dict:
    return {
        "allowedDomains": [rule.to_dict() for rule in rules],
        "total": len(rules),
    }


# ─── Allowlist ────────────────────────────────────────────────────────────────


@router.get("/allowlist")
async def get_allowlist(request: Request) -> dict:
    return _allowlist_body(_store(request).allowed_domains)


@router.post("/allowlist")
async def add_domain(request: Request, body: DomainRuleRequest) -> dict:
    """Add a user-entered domain or URL.

    Input is validated first; invalid input → HTTP 422 with the message the
    panel shows next to the input field.
    """
    domain = _validated_domain(body.domain)
    rules = _store(request).add_allowed_domain(domain, body.allow_subdomains)
    logger.info(
        "Domain added to allowlist",
        domain=domain,
        allow_subdomains=body.allow_subdomains,
    )
    return _allowlist_body(rules)


@router.patch("/allowlist")
async def update_subdomain_setting(request: Request, body: DomainRuleRequest) -> dict:
    rules = _store(request).update_domain_subdomain_setting(body.domain, body.allow_subdomains)
    return _allowlist_body(rules)


@router.delete("/allowlist/all")
async def clear_allowlist(request: Request) -> dict:
    rules = _store(request).clear_all_allowed_domains()
    logger.info("Allowlist cleared")
    return _allowlist_body(rules)


@router.delete("/allowlist")
async def remove_domain(request: Request, domain: str = Query(...)) -> dict:
    rules = _store(request).remove_allowed_domain(domain)
    logger.info("Domain removed from allowlist", domain=domain, remaining=len(rules))
    return _allowlist_body(rules)


@router.post("/allowlist/check")
async def check_domain(request: Request, body: DomainRequest) -> dict:
    """Accepts a bare domain or a full URL; only the host is checked."""
    domain = _validated_domain(body.domain)
    return {"domain": domain, "isAllowed": _store(request).is_allowed(domain)}


@router.post("/allowlist/auto-allow")
async def auto_allow(request: Request, body: DomainRequest) -> dict:
    """Start capturing on a domain the user opened the panel for.

    The body may be the tab URL or its host. Only the validated host reaches
    the allowlist; empty, special-page or malformed input is rejected with 422.
    """
    return _store(request).auto_allow(_validated_domain(body.domain)).to_dict()


# ─── Tabs ─────────────────────────────────────────────────────────────────────


def _tab_or_404(tracker: TabDomainTracker, tab_id: int) -> TabDomainInfo:
    info = tracker.get(tab_id)
    if info is None:
        raise HTTPException(
            status_code=404,
            detail={"message": f"Tab {tab_id} is not tracked", "code": "unknown_tab"},
        )
    return info


@router.put("/tabs/{tab_id}")
async def update_tab(request: Request, tab_id: int, body: TabUrlRequest) -> dict:
    info = _tracker(request).update_tab(tab_id, body.url)
    return {"tabId": tab_id, **info.to_dict()}


@router.get("/tabs/{tab_id}")
async def get_tab(request: Request, tab_id: int) -> dict:
    info = _tab_or_404(_tracker(request), tab_id)
    return {"tabId": tab_id, **info.to_dict()}


@router.post("/tabs/{tab_id}/re-evaluate")
async def re_evaluate_tab(request: Request, tab_id: int) -> dict:
    """Re-check one tab, e.g. after the panel changed the allowlist."""
    info = _tracker(request).re_evaluate_tab(tab_id)
    if info is None:
        raise HTTPException(
            status_code=404,
            detail={"message": f"Tab {tab_id} is not tracked", "code": "unknown_tab"},
        )
    return {"tabId": tab_id, **info.to_dict()}


@router.delete("/tabs/{tab_id}")
async def remove_tab(request: Request, tab_id: int) -> dict:
    return {"tabId": tab_id, "removed": _tracker(request).remove_tab(tab_id)}


# ─── Status ───────────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(request: Request) -> dict:
    store = _store(request)
    backend = store.backend
    storage_ok = await backend.health_check() if backend is not None else False
    return {
        "ready": True,
        "storage": {
            "backend": type(backend).__name__ if backend is not None else None,
            "healthy": storage_ok,
            "unsaved_changes": store.has_unsaved_changes,
        },
        "allowlist_count": len(store.allowed_domains),
        "tracked_tabs": len(_tracker(request)),
    }
