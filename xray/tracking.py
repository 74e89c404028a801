"""Per-tab domain tracking for the capture pipeline.

Keeps an in-memory map of tab_id -> (domain, is_allowed) so the capture path
can decide whether to record an event without re-parsing URLs. Tabs on
domains the panel was never opened for are not tracked as allowed, so events
are only recorded where the user asked for them.

The tracker subscribes to the DomainStore: every allowlist change
re-evaluates all known tabs against the new rules.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from xray.allowlist.domain import extract_domain, is_special_page
from xray.allowlist.engine import is_domain_allowed
from xray.allowlist.models import DomainRule
from xray.allowlist.store import DomainStore
from xray.utils.logger import get_logger, tab_context

logger = get_logger(__name__)

DomainChangedCallback = Callable[[int, Optional[str]], None]


@dataclass(frozen=True)
class TabDomainInfo:
    """Domain shown in a tab and whether capture is allowed there.

    ``domain`` is the empty string for special pages and invalid URLs.
    """

    domain: str
    is_allowed: bool

    def to_dict(self) -> dict:
        return {"domain": self.domain, "isAllowed": self.is_allowed}


_NO_DOMAIN = TabDomainInfo(domain="", is_allowed=False)


class TabDomainTracker:
    """Tracks which domain each tab is on and whether it may be captured.

    ``on_domain_changed(tab_id, domain)`` fires when a tab moves to a new
    domain; ``domain`` is None when the tab moved to a special/invalid page.
    """

    def __init__(
        self,
        store: DomainStore,
        on_domain_changed: Optional[DomainChangedCallback] = None,
    ) -> None:
        self._store = store
        self._on_domain_changed = on_domain_changed
        self._tabs: dict[int, TabDomainInfo] = {}
        self._urls: dict[int, str] = {}
        self._lock = threading.Lock()
        self._unsubscribe = store.subscribe(self._on_allowlist_changed)

    # ── Queries ───────────────────────────────────────────────────────────────

    def get(self, tab_id: int) -> Optional[TabDomainInfo]:
        with self._lock:
            return self._tabs.get(tab_id)

    def get_domain(self, tab_id: int) -> Optional[str]:
        """Domain of ``tab_id`` or None if unknown or on a special page."""
        info = self.get(tab_id)
        if info is None or not info.domain:
            return None
        return info.domain

    def should_capture(self, tab_id: int) -> bool:
        """Capture gate for events coming from ``tab_id``."""
        info = self.get(tab_id)
        return info is not None and info.is_allowed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tabs)

    # ── Updates ───────────────────────────────────────────────────────────────

    def update_tab(self, tab_id: int, url: str) -> TabDomainInfo:
        """Record that ``tab_id`` now shows ``url`` and evaluate it."""
        with tab_context(tab_id):
            return self._evaluate(tab_id, url, self._store.allowed_domains)

    def remove_tab(self, tab_id: int) -> bool:
        """Forget a closed tab. Returns True if it was tracked."""
        with self._lock:
            self._urls.pop(tab_id, None)
            return self._tabs.pop(tab_id, None) is not None

    def re_evaluate_tab(self, tab_id: int) -> Optional[TabDomainInfo]:
        """Re-check one tab from its last known URL. None if not tracked."""
        with self._lock:
            url = self._urls.get(tab_id)
        if url is None:
            return None
        with tab_context(tab_id):
            return self._evaluate(tab_id, url, self._store.allowed_domains, tracked_only=True)

    def re_evaluate_all(self) -> int:
        """Re-check every tracked tab against the current allowlist."""
        return self._re_evaluate(self._store.allowed_domains)

    def close(self) -> None:
        """Stop following allowlist changes."""
        self._unsubscribe()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _on_allowlist_changed(self, rules: tuple[DomainRule, ...]) -> None:
        logger.info("Domain allowlist changed, re-evaluating tabs", rule_count=len(rules))
        self._re_evaluate(rules)

    def _re_evaluate(self, rules: tuple[DomainRule, ...]) -> int:
        with self._lock:
            urls = dict(self._urls)
        for tab_id, url in urls.items():
            with tab_context(tab_id):
                self._evaluate(tab_id, url, rules, tracked_only=True)
        return len(urls)

    def _evaluate(
        self,
        tab_id: int,
        url: str,
        rules: tuple[DomainRule, ...],
        tracked_only: bool = False,
    ) -> Optional[TabDomainInfo]:
        """Compute and record the tab's info.

        With ``tracked_only`` a tab removed since the caller read its URL stays
        removed and None is returned.
        """
        domain = extract_domain(url)

        if not domain or is_special_page(url):
            info = _NO_DOMAIN
        else:
            info = TabDomainInfo(domain=domain, is_allowed=is_domain_allowed(domain, rules))

        with self._lock:
            if tracked_only and tab_id not in self._urls:
                return None
            previous = self._tabs.get(tab_id)
            self._tabs[tab_id] = info
            self._urls[tab_id] = url

        logger.debug("Updated tab domain", domain=info.domain, allowed=info.is_allowed)

        previous_domain = previous.domain if previous is not None else None
        if info.domain and previous_domain != info.domain:
            self._emit_domain_changed(tab_id, info.domain)
        elif not info.domain and previous_domain:
            self._emit_domain_changed(tab_id, None)
        return info

    def _emit_domain_changed(self, tab_id: int, domain: Optional[str]) -> None:
        if self._on_domain_changed is None:
            return
        try:
            self._on_domain_changed(tab_id, domain)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Domain change listener failed (non-fatal)", error=str(exc))
