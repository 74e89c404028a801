"""Domain helpers: URL to domain extraction and allowlist input validation.

IMPORT RULES:
  - `import re2` ONLY; `import re` is PROHIBITED in this file.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import re2  # google-re2. NEVER: import re

from xray.allowlist.engine import normalize_domain
from xray.allowlist.models import DomainValidationResult
from xray.constants import (
    EXTENSION_SCHEMES,
    MAX_DOMAIN_LENGTH,
    MAX_LABEL_LENGTH,
    SPECIAL_SCHEMES,
)

# ─── Patterns ─────────────────────────────────────────────────────────────────

# Bare domain accepted when the input cannot be parsed as a URL host.
_DOMAIN_PATTERN = re2.compile(r"^([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")

# Characters allowed in an extracted host (ASCII/punycode names and IPv4).
_HOST_PATTERN = re2.compile(r"^[a-z0-9_.-]+$")

# ─── Error messages (shown verbatim in the panel) ────────────────────────────

ERROR_EMPTY = "Domain cannot be empty"
ERROR_FORMAT = "Invalid domain format. Please enter a valid domain (e.g., example.com) or URL"
ERROR_SPECIAL_PAGE = "Special browser pages cannot be added to the allowlist"
ERROR_TOO_LONG = f"Domain name is too long (maximum {MAX_DOMAIN_LENGTH} characters)"
ERROR_LABEL_TOO_LONG = f"Domain part is too long (maximum {MAX_LABEL_LENGTH} characters per part)"
ERROR_NO_TLD = "Domain must have at least a top-level domain (e.g., example.com)"


# ─── URL helpers ──────────────────────────────────────────────────────────────


def _scheme(url: str) -> Optional[str]:
    try:
        return urlparse(url.strip()).scheme.lower() or None
    except ValueError:
        return None


def is_special_page(url: str) -> bool:
    """True for browser-internal pages (chrome://, about:, extension pages)."""
    return _scheme(url) in SPECIAL_SCHEMES


def is_extension_page(url: str) -> bool:
    """True for pages served by a browser extension (chrome-extension://, moz-extension://)."""
    return _scheme(url) in EXTENSION_SCHEMES


def extract_domain(url: str) -> Optional[str]:
    """Return the lowercase host of ``url`` without its port.

    Returns None for unparseable URLs, URLs without a scheme or host, and
    special browser pages.
    """
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or parsed.scheme.lower() in SPECIAL_SCHEMES:
        return None
    return hostname or None


# ─── Input validation ─────────────────────────────────────────────────────────


def _looks_like_url(value: str) -> bool:
    return "://" in value or value.startswith("//")


def _invalid(error: str) -> DomainValidationResult:
    return DomainValidationResult(is_valid=False, error=error)


def validate_domain_input(value: str) -> DomainValidationResult:
    """Validate a domain or URL typed into the allowlist panel.

    Accepts ``example.com``, ``www.example.com``, ``https://example.com/path``
    and ``//example.com``. On success ``normalized_domain`` holds the
    normalized host ready to store.
    """
    trimmed = value.strip()
    if not trimmed:
        return _invalid(ERROR_EMPTY)

    if is_special_page(trimmed):
        return _invalid(ERROR_SPECIAL_PAGE)

    if _looks_like_url(trimmed):
        url = f"https:{trimmed}" if trimmed.startswith("//") else trimmed
    else:
        url = f"https://{trimmed}"
    domain = extract_domain(url)

    if domain is None:
        without_www = normalize_domain(trimmed)
        if not _DOMAIN_PATTERN.search(without_www):
            return _invalid(ERROR_FORMAT)
        domain = without_www
    elif not _HOST_PATTERN.search(domain) or "" in domain.split("."):
        return _invalid(ERROR_FORMAT)

    domain = normalize_domain(domain)

    if len(domain) > MAX_DOMAIN_LENGTH:
        return _invalid(ERROR_TOO_LONG)

    labels = domain.split(".")
    if any(len(label) > MAX_LABEL_LENGTH for label in labels):
        return _invalid(ERROR_LABEL_TOO_LONG)
    if len(labels) < 2:
        return _invalid(ERROR_NO_TLD)

    return DomainValidationResult(is_valid=True, normalized_domain=domain)
