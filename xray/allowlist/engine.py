"""Domain allowlist engine — pure decision and mutation functions.

Every function here is total: it returns a value for any string input and
never raises. Mutating operations return a NEW list and leave the input
sequence untouched; the store controller owns the live collection and swaps
it in one step.

All identity comparisons between domains go through normalized_equals().

Public API:
    normalize_domain, base_domain, normalized_equals
    is_domain_allowed
    add_allowed_domain, remove_allowed_domain, update_domain_subdomain_setting
    auto_allow_domain
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from xray.allowlist.models import AutoAllowAction, AutoAllowResult, DomainRule
from xray.constants import BASE_DOMAIN_LABELS, WWW_PREFIX

# ─── Normalization ────────────────────────────────────────────────────────────


def normalize_domain(value: str) -> str:
    """Canonicalize a domain: trim, lowercase, strip one leading ``www.``.

    Best effort only: malformed strings pass through trimmed and lowercased.
    The www. label is stripped once, not recursively.
    """
    normalized = value.strip().lower()
    if normalized.startswith(WWW_PREFIX):
        normalized = normalized[len(WWW_PREFIX):].strip()
    return normalized


def base_domain(value: str) -> str:
    """Reduce a domain to its last two labels.

    ``a.b.example.com`` -> ``example.com``; two labels or fewer are returned
    unchanged. Not public-suffix aware: ``shop.example.co.uk`` -> ``co.uk``.
    """
    normalized = normalize_domain(value)
    labels = normalized.split(".")
    if len(labels) <= BASE_DOMAIN_LABELS:
        return normalized
    return ".".join(labels[-BASE_DOMAIN_LABELS:])


def normalized_equals(a: str, b: str) -> bool:
    """True when two domains are the same allowlist identity."""
    return normalize_domain(a) == normalize_domain(b)


def _label_count(domain: str) -> int:
    return len(domain.split("."))


# ─── Membership ───────────────────────────────────────────────────────────────


def _rule_matches(candidate: str, rule: DomainRule) -> bool:
    """Match an already-normalized candidate against one rule."""
    allowed = normalize_domain(rule.domain)
    if candidate == allowed:
        return True
    if not rule.allow_subdomains or not allowed:
        return False
    return base_domain(candidate) == allowed or candidate.endswith("." + allowed)


def is_domain_allowed(candidate: str, rules: Iterable[DomainRule]) -> bool:
    """Return True if any rule admits ``candidate``.

    A rule admits the candidate when their normalized forms are equal, or
    when the rule allows subdomains and the candidate sits underneath it.
    An empty rule collection admits nothing.
    """
    normalized = normalize_domain(candidate)
    return any(_rule_matches(normalized, rule) for rule in rules)


# ─── Mutations ────────────────────────────────────────────────────────────────


def add_allowed_domain(
    rules: Sequence[DomainRule],
    domain: str,
    allow_subdomains: bool,
) -> list[DomainRule]:
    """Add ``domain`` to the allowlist, or update the entry it already has.

    With ``allow_subdomains`` the rule is anchored at the base domain
    (``app.example.com`` is stored as ``example.com``).

    An existing entry with the same normalized domain is replaced in place,
    overwriting its flag and any case/www. variation. Later entries that
    normalize to the same domain are dropped, so the result never holds
    normalized duplicates. Length grows by at most one.
    """
    normalized = normalize_domain(domain)
    if allow_subdomains and _label_count(normalized) > BASE_DOMAIN_LABELS:
        normalized = base_domain(normalized)

    incoming = DomainRule(domain=normalized, allow_subdomains=allow_subdomains)
    updated: list[DomainRule] = []
    placed = False
    for rule in rules:
        if not normalized_equals(rule.domain, normalized):
            updated.append(rule)
        elif not placed:
            updated.append(incoming)
            placed = True

    if not placed:
        updated.append(incoming)
    return updated


def remove_allowed_domain(rules: Sequence[DomainRule], domain: str) -> list[DomainRule]:
    """Remove every entry matching ``domain`` exactly or after normalization.

    ``www.example.com`` removes a stored ``example.com`` and vice versa.
    Entries that merely share a substring are kept.
    """
    return [
        rule
        for rule in rules
        if rule.domain != domain and not normalized_equals(rule.domain, domain)
    ]


def update_domain_subdomain_setting(
    rules: Sequence[DomainRule],
    domain: str,
    allow_subdomains: bool,
) -> list[DomainRule]:
    """Flip ``allow_subdomains`` on the entry whose domain is exactly ``domain``.

    No normalization: the lookup is a raw string match. Domain and position
    are preserved. Unknown domain -> unchanged copy.
    """
    updated = list(rules)
    for index, rule in enumerate(updated):
        if rule.domain == domain:
            updated[index] = DomainRule(domain=rule.domain, allow_subdomains=allow_subdomains)
            break
    return updated


# ─── Auto-allow ───────────────────────────────────────────────────────────────


def _find_related_entry(
    rules: Sequence[DomainRule],
    normalized: str,
    base: str,
    is_subdomain: bool,
) -> Optional[DomainRule]:
    """First rule that already speaks for ``normalized`` or its base domain."""
    for rule in rules:
        existing = normalize_domain(rule.domain)
        if rule.allow_subdomains:
            if base_domain(existing) == base:
                return rule
        elif existing == normalized or (is_subdomain and existing == base):
            return rule
    return None


def auto_allow_domain(
    rules: Sequence[DomainRule],
    domain: str,
) -> tuple[list[DomainRule], AutoAllowResult]:
    """Apply the smallest mutation that makes ``domain`` allowed.

    Decision order (exactly one action per call):
      1. already_allowed — is_domain_allowed() is True; nothing changes.
      2. added           — no related entry: add the base domain with
                           subdomains (candidate is a subdomain) or the exact
                           domain without.
      3. updated         — the base domain is listed without subdomains and
                           the candidate is a subdomain: enable subdomains
                           in place.
      4. no_action       — a related entry exists but none of the above
                           applies; nothing changes and membership is
                           reported as it actually is.

    Returns:
        (new_rules, result). ``new_rules`` is a fresh list even when unchanged.
    """
    current = list(rules)
    normalized = normalize_domain(domain)

    if is_domain_allowed(domain, current):
        return current, AutoAllowResult(
            action=AutoAllowAction.ALREADY_ALLOWED,
            domain=normalized,
            allow_subdomains=False,
            was_allowed=True,
            is_allowed=True,
        )

    base = base_domain(normalized)
    is_subdomain = normalized != base
    existing = _find_related_entry(current, normalized, base, is_subdomain)

    if existing is None:
        target = base if is_subdomain else normalized
        updated = add_allowed_domain(current, target, is_subdomain)
        return updated, AutoAllowResult(
            action=AutoAllowAction.ADDED,
            domain=target,
            allow_subdomains=is_subdomain,
            was_allowed=False,
            is_allowed=is_domain_allowed(domain, updated),
        )

    if is_subdomain and normalized_equals(existing.domain, base) and not existing.allow_subdomains:
        updated = add_allowed_domain(current, base, True)
        return updated, AutoAllowResult(
            action=AutoAllowAction.UPDATED,
            domain=base,
            allow_subdomains=True,
            was_allowed=False,
            is_allowed=is_domain_allowed(domain, updated),
        )

    # Reached only when a subdomain-allowing rule shares the base domain but
    # is anchored deeper than the candidate (e.g. foo.example.com vs bar.example.com).
    allowed_now = is_domain_allowed(domain, current)
    return current, AutoAllowResult(
        action=AutoAllowAction.NO_ACTION,
        domain=normalized,
        allow_subdomains=existing.allow_subdomains,
        was_allowed=allowed_now,
        is_allowed=allowed_now,
    )
