"""Analytics X-Ray allowlist — which origins may have their events captured.

Public API:
    DomainRule, AutoAllowAction, AutoAllowResult, DomainValidationResult — data contracts
    normalize_domain, base_domain, normalized_equals, is_domain_allowed   — matching
    add_allowed_domain, remove_allowed_domain,
    update_domain_subdomain_setting, auto_allow_domain                    — pure mutations
    extract_domain, is_special_page, validate_domain_input                — URL/input helpers

The stateful controller lives in xray.allowlist.store (DomainStore) and is
imported from there directly.
"""
from xray.allowlist.domain import extract_domain, is_special_page, validate_domain_input
from xray.allowlist.engine import (
    add_allowed_domain,
    auto_allow_domain,
    base_domain,
    is_domain_allowed,
    normalize_domain,
    normalized_equals,
    remove_allowed_domain,
    update_domain_subdomain_setting,
)
from xray.allowlist.models import (
    AutoAllowAction,
    AutoAllowResult,
    DomainRule,
    DomainValidationResult,
)

__all__ = [
    "AutoAllowAction",
    "AutoAllowResult",
    "DomainRule",
    "DomainValidationResult",
    "add_allowed_domain",
    "auto_allow_domain",
    "base_domain",
    "extract_domain",
    "is_domain_allowed",
    "is_special_page",
    "normalize_domain",
    "normalized_equals",
    "remove_allowed_domain",
    "update_domain_subdomain_setting",
    "validate_domain_input",
]
