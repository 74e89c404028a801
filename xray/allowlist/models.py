"""Allowlist data contracts: DomainRule, AutoAllowResult, DomainValidationResult.

DomainRule is the only record that is ever persisted. The result types are
transient return values used for logging and panel feedback.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

# ─── DomainRule ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DomainRule:
    """A single allowlist entry.

    Fields:
        domain:           Normalized domain label (no scheme, no path, no www., lowercase).
        allow_subdomains: If True the rule also covers every subdomain of ``domain``.

    INVARIANT: a rule collection never holds two entries whose domains
    normalize to the same value. Enforced by the engine, not by this class.
    """

    domain: str
    allow_subdomains: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Render in the persisted/panel wire shape (camelCase keys)."""
        return {"domain": self.domain, "allowSubdomains": self.allow_subdomains}


# ─── Auto-allow ───────────────────────────────────────────────────────────────


class AutoAllowAction(str, enum.Enum):
    """Terminal action taken by one auto_allow_domain() call."""

    ADDED = "added"
    UPDATED = "updated"
    ALREADY_ALLOWED = "already_allowed"
    NO_ACTION = "no_action"


@dataclass(frozen=True)
class AutoAllowResult:
    """What auto_allow_domain() did. Never stored."""

    action: AutoAllowAction
    domain: str
    allow_subdomains: bool
    was_allowed: bool
    is_allowed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "domain": self.domain,
            "allowSubdomains": self.allow_subdomains,
            "wasAllowed": self.was_allowed,
            "isAllowed": self.is_allowed,
        }


# ─── Input validation ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DomainValidationResult:
    """Outcome of validate_domain_input().

    ``error`` is set only when ``is_valid`` is False;
    ``normalized_domain`` only when it is True.
    """

    is_valid: bool
    error: Optional[str] = None
    normalized_domain: Optional[str] = None
