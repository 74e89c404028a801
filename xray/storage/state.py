"""Persisted allowlist document — encode/decode.

Wire shape (one JSON string under STORAGE_KEY):

    {
      "state": {
        "allowedDomains": [{"domain": "example.com", "allowSubdomains": false}, ...]
      },
      "version": 1
    }

decode_state() is strict about the envelope and lenient about entries:
a broken envelope raises StateDecodeError (callers keep their last good
state), while a single malformed entry is skipped with a WARNING.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from xray.allowlist.engine import normalize_domain
from xray.allowlist.models import DomainRule
from xray.constants import STATE_VERSION
from xray.utils.logger import get_logger

logger = get_logger(__name__)


class StateDecodeError(ValueError):
    """Raised when a stored allowlist document cannot be interpreted."""


def encode_state(rules: Iterable[DomainRule]) -> str:
    """Serialize rules into the persisted document (order preserved)."""
    document = {
        "state": {"allowedDomains": [rule.to_dict() for rule in rules]},
        "version": STATE_VERSION,
    }
    return json.dumps(document, separators=(",", ":"))


def decode_state(raw: str) -> list[DomainRule]:
    """Parse a persisted document back into an ordered, duplicate-free rule list.

    Domains are re-normalized on the way in; the first entry for a given
    normalized domain wins.

    Raises:
        StateDecodeError: malformed JSON, non-object envelope, missing
                          ``state`` object, or ``allowedDomains`` not a list.
    """
    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StateDecodeError(f"stored allowlist is not valid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise StateDecodeError("stored allowlist root is not an object")

    version = document.get("version")
    if version is not None and version != STATE_VERSION:
        logger.warning(
            "Stored allowlist version differs, reading as current version",
            stored_version=version,
            expected_version=STATE_VERSION,
        )

    state = document.get("state")
    if not isinstance(state, dict):
        raise StateDecodeError("stored allowlist has no 'state' object")

    entries = state.get("allowedDomains", [])
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise StateDecodeError("'allowedDomains' is not a list")

    return _parse_entries(entries)


def _parse_entries(raw_list: list[Any]) -> list[DomainRule]:
    rules: list[DomainRule] = []
    seen: set[str] = set()

    for i, item in enumerate(raw_list):
        if not isinstance(item, dict):
            logger.warning(
                "Allowlist entry is not a mapping, skipping",
                index=i,
                actual_type=type(item).__name__,
            )
            continue

        domain = item.get("domain")
        if not isinstance(domain, str):
            logger.warning("Allowlist entry missing domain, skipping", index=i, entry=item)
            continue

        normalized = normalize_domain(domain)
        if normalized in seen:
            logger.warning("Duplicate allowlist entry, skipping", index=i, domain=normalized)
            continue

        allow_subdomains = item.get("allowSubdomains", False)
        if not isinstance(allow_subdomains, bool):
            logger.warning(
                "allowSubdomains is not a boolean, treating as false",
                domain=normalized,
                value=allow_subdomains,
            )
            allow_subdomains = False

        seen.add(normalized)
        rules.append(DomainRule(domain=normalized, allow_subdomains=allow_subdomains))

    return rules
