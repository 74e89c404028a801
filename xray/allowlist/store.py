"""DomainStore — the state container that owns the allowlist.

The engine functions in engine.py are pure; this controller is the only
place the live rule collection changes. Every mutation:

  1. runs the engine operation on the current snapshot under a lock,
  2. swaps in the resulting tuple,
  3. schedules a fire-and-forget write to the storage backend,
  4. notifies subscribers (only if the content actually changed).

Cross-process sync: another process writing the same storage file is picked
up by start_watcher() (watchfiles) and applied through apply_storage_change(),
which replaces the in-memory state wholesale or keeps the last good state if
the new document cannot be parsed.

Usage (in lifespan):
    store = DomainStore(backend)
    await store.hydrate()
    app.state.store = store
    asyncio.create_task(store.start_watcher())
"""

from __future__ import annotations

import asyncio
import os
import threading
from typing import Callable, Optional

import watchfiles

from xray.allowlist import engine
from xray.allowlist.models import AutoAllowResult, DomainRule
from xray.constants import STORAGE_KEY
from xray.storage.protocol import StorageBackend
from xray.storage.state import StateDecodeError, decode_state, encode_state
from xray.utils.logger import get_logger

logger = get_logger(__name__)

Rules = tuple[DomainRule, ...]
Subscriber = Callable[[Rules], None]

# Companion files SQLite touches when the main file changes (WAL / rollback journal).
_STORAGE_FILE_SUFFIXES = ("", "-wal", "-journal")


class DomainStore:
    """Thread-safe, async-compatible allowlist state container.

    Thread-safety:
        Mutations, snapshot reads and the subscriber list take a
        threading.Lock, so FastAPI sync handlers (threadpool) and async
        handlers (event loop) can share one store. Subscribers run outside
        the lock on a copy of the list.

    Persistence:
        Writes are scheduled on the running event loop and never awaited by
        the mutating call. Failures are logged; the in-memory state stays
        authoritative. With no running loop the write is deferred to flush().
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._backend = backend
        self._storage_key = storage_key
        self._rules: Rules = ()
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._pending_writes: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._last_persisted: Optional[str] = None
        self._dirty = False

    # ── Public read API ───────────────────────────────────────────────────────

    @property
    def allowed_domains(self) -> Rules:
        """Snapshot of the current rules (immutable tuple, insertion order)."""
        with self._lock:
            return self._rules

    @property
    def storage_key(self) -> str:
        return self._storage_key

    @property
    def backend(self) -> Optional[StorageBackend]:
        return self._backend

    def is_allowed(self, domain: str) -> bool:
        """Capture gate: is ``domain`` currently admitted by the allowlist?"""
        return engine.is_domain_allowed(domain, self.allowed_domains)

    # ── Mutations ─────────────────────────────────────────────────────────────

    def add_allowed_domain(self, domain: str, allow_subdomains: bool) -> Rules:
        return self._mutate(engine.add_allowed_domain, domain, allow_subdomains)

    def remove_allowed_domain(self, domain: str) -> Rules:
        return self._mutate(engine.remove_allowed_domain, domain)

    def clear_all_allowed_domains(self) -> Rules:
        return self._mutate(lambda rules: [])

    def update_domain_subdomain_setting(self, domain: str, allow_subdomains: bool) -> Rules:
        return self._mutate(engine.update_domain_subdomain_setting, domain, allow_subdomains)

    def auto_allow(self, domain: str) -> AutoAllowResult:
        """Admit ``domain`` with the smallest change to the allowlist.

        Decision and swap happen under one lock acquisition, so two racing
        calls for sibling subdomains cannot both add the base domain.
        """
        with self._lock:
            previous = self._rules
            updated, result = engine.auto_allow_domain(previous, domain)
            self._rules = tuple(updated)
            current = self._rules

        logger.info(
            "Auto-allow decision",
            domain=domain,
            action=result.action.value,
            rule_domain=result.domain,
            allow_subdomains=result.allow_subdomains,
            is_allowed=result.is_allowed,
        )
        if current != previous:
            self._after_change(current)
        return result

    def _mutate(self, operation: Callable[..., list[DomainRule]], *args: object) -> Rules:
        with self._lock:
            previous = self._rules
            self._rules = tuple(operation(previous, *args))
            current = self._rules

        if current != previous:
            logger.debug(
                "Allowlist changed",
                operation=getattr(operation, "__name__", "mutation"),
                count=len(current),
            )
            self._after_change(current)
        return current

    def _after_change(self, rules: Rules) -> None:
        self._schedule_persist()
        self._notify(rules)

    # ── Subscribers ───────────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(rules)`` for every content change.

        Returns an unsubscribe function.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, rules: Rules) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(rules)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Allowlist subscriber failed (non-fatal)",
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    # ── Persistence ───────────────────────────────────────────────────────────

    async def hydrate(self) -> int:
        """Load the allowlist from the storage backend.

        Missing or corrupt stored state yields an empty allowlist (WARNING for
        corrupt); startup is never blocked by bad data.

        Returns the number of loaded rules.
        """
        if self._backend is None:
            return 0

        raw = await self._backend.get_item(self._storage_key)
        rules: Rules = ()
        if raw is None:
            logger.info("No stored allowlist, starting empty", key=self._storage_key)
        else:
            try:
                rules = tuple(decode_state(raw))
            except StateDecodeError as exc:
                logger.warning(
                    "Stored allowlist is corrupt, starting empty",
                    key=self._storage_key,
                    error=str(exc),
                )
            else:
                self._last_persisted = raw

        self._replace(rules)
        logger.info("Allowlist hydrated", count=len(rules))
        return len(rules)

    def _schedule_persist(self) -> None:
        if self._backend is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._dirty = True
            logger.debug("No running event loop; allowlist write deferred to flush()")
            return

        task = loop.create_task(self._persist())
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self) -> None:
        """Write the current snapshot. Never raises."""
        if self._backend is None:
            return
        payload = encode_state(self.allowed_domains)
        try:
            await self._backend.set_item(self._storage_key, payload)
        except Exception as exc:  # noqa: BLE001
            self._dirty = True
            logger.error(
                "Allowlist persist failed, in-memory state kept",
                key=self._storage_key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return
        self._dirty = False
        self._last_persisted = payload

    async def flush(self) -> None:
        """Wait for scheduled writes, then retry the write if one failed or was deferred.

        A hydrated document that was never changed is left as stored.
        """
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)
        if self._dirty:
            await self._persist()

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    # ── External changes ──────────────────────────────────────────────────────

    def apply_storage_change(self, key: str, new_value: Optional[str]) -> bool:
        """Apply a change notification ``{key, newValue}`` from the storage area.

        - Other keys are ignored.
        - ``new_value`` None (key removed) clears the allowlist.
        - Unparseable documents are logged and ignored; the last good state stays.

        Returns True if the notification was applied.
        """
        if key != self._storage_key:
            return False

        if new_value is None:
            rules: Rules = ()
        else:
            try:
                rules = tuple(decode_state(new_value))
            except StateDecodeError as exc:
                logger.error(
                    "Failed to parse allowlist change, keeping current state",
                    key=key,
                    error=str(exc),
                )
                return False

        self._last_persisted = new_value
        self._replace(rules)
        logger.info("Allowlist rehydrated from storage change", count=len(rules))
        return True

    def _replace(self, rules: Rules) -> None:
        with self._lock:
            previous = self._rules
            self._rules = rules
        if rules != previous:
            self._notify(rules)

    async def start_watcher(self) -> None:
        """Async watchfiles watcher that applies writes made by other processes.

        DESIGN:
        - Watches the storage file's directory, filtered to the file and its
          SQLite WAL/journal companions.
        - On each change batch, re-reads the key and calls apply_storage_change().
        - Skips batches while our own writes are in flight, and documents
          identical to the last one we wrote or applied.
        - Designed to run as an asyncio.Task (cancelled on shutdown).
        """
        path = self._backend.path if self._backend is not None else None
        if not path:
            logger.warning("Storage is not file-backed, change watcher disabled")
            return

        directory = os.path.dirname(path) or "."
        watched = {os.path.basename(path) + suffix for suffix in _STORAGE_FILE_SUFFIXES}

        def _storage_filter(change: watchfiles.Change, changed_path: str) -> bool:
            return os.path.basename(changed_path) in watched

        try:
            logger.info("Storage change watcher started", path=path)
            async for _ in watchfiles.awatch(directory, watch_filter=_storage_filter):
                try:
                    await self._handle_file_change()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Storage change handler error (non-fatal)",
                        error=str(exc),
                        path=path,
                    )
        except asyncio.CancelledError:
            logger.debug("Storage change watcher cancelled", path=path)
            raise

    async def _handle_file_change(self) -> None:
        if self._backend is None or self._pending_writes:
            return
        raw = await self._backend.get_item(self._storage_key)
        # get_item() also returns None on read errors; never wipe state on that.
        if raw is None or raw == self._last_persisted:
            return
        self.apply_storage_change(self._storage_key, raw)
