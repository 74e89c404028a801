"""Shared constants for the Analytics X-Ray panel service.

Storage keys, domain limits and network defaults used across modules are
defined here. No magic values in other modules; import from here.
"""

# ─── Persisted State ──────────────────────────────────────────────────────────

# Logical key under which the allowlist state is stored in the storage area.
# Shared by every process reading the same storage file.
STORAGE_KEY: str = "analytics-xray-domain"

# Envelope version written alongside the persisted allowlist.
STATE_VERSION: int = 1

# Default location of the local storage area (SQLite backend).
DEFAULT_STORAGE_PATH: str = "~/.xray/storage.db"

# ─── Domain Rules ─────────────────────────────────────────────────────────────

# Leading label stripped during normalization (single strip only).
WWW_PREFIX: str = "www."

# Number of trailing labels kept by the base-domain heuristic.
# Two-label reduction only: "a.example.co.uk" -> "co.uk" (no public suffix list).
BASE_DOMAIN_LABELS: int = 2

# RFC 1035 limits applied when validating user input.
MAX_DOMAIN_LENGTH: int = 253
MAX_LABEL_LENGTH: int = 63

# URL schemes that never carry a capturable origin.
SPECIAL_SCHEMES: frozenset[str] = frozenset({
    "chrome",
    "chrome-extension",
    "moz-extension",
    "about",
})

# Schemes of pages that belong to the browser extension itself.
EXTENSION_SCHEMES: frozenset[str] = frozenset({"chrome-extension", "moz-extension"})

# ─── Panel Service ────────────────────────────────────────────────────────────

DEFAULT_PANEL_HOST: str = "127.0.0.1"
DEFAULT_PANEL_PORT: int = 7717
