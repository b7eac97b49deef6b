"""
In-memory store for pending handshakes (tenant -> nonce, expiry).
Authoritative between /auth and /auth/callback; a background sweep reaps abandoned entries.

Locking is per tenant: operations for one tenant are linearizable, operations for different
tenants never contend. The sweep takes the same per-tenant locks as request-path calls.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from storefront_auth.config import HANDSHAKE_TTL_SECONDS, SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingHandshake:
    tenant_id: str
    nonce: str
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class NonceStore:
    """Process-local TTL map with an explicit lifecycle: construct, start(), sweep(), shutdown()."""

    def __init__(
        self,
        ttl_seconds: int = HANDSHAKE_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._pending: dict[str, PendingHandshake] = {}
        # tenant -> {nonce: expires_at}; nonces already used, kept until their expiry
        self._consumed: dict[str, dict[str, float]] = {}
        self._tenant_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._sweeper: threading.Thread | None = None
        self._stop = threading.Event()

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        # Registry lock is only held for the dict lookup, never while a tenant lock is held
        with self._registry_lock:
            lock = self._tenant_locks.get(tenant_id)
            if lock is None:
                lock = self._tenant_locks[tenant_id] = threading.Lock()
            return lock

    def put(self, tenant_id: str, nonce: str, ttl: int | None = None) -> PendingHandshake:
        """Record nonce for tenant, replacing any pending handshake (the previous one is orphaned)."""
        now = self._clock()
        record = PendingHandshake(
            tenant_id=tenant_id,
            nonce=nonce,
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.ttl_seconds),
        )
        with self._lock_for(tenant_id):
            previous = self._pending.get(tenant_id)
            if previous is not None and not previous.expired(now):
                # Orphaned: its carrier must not be accepted later through the fallback path
                self._consumed.setdefault(tenant_id, {})[previous.nonce] = previous.expires_at
            self._pending[tenant_id] = record
        return record

    def take(self, tenant_id: str) -> str | None:
        """Remove and return the pending nonce; None if never set, already taken, or expired."""
        with self._lock_for(tenant_id):
            record = self._pending.pop(tenant_id, None)
        if record is None or record.expired(self._clock()):
            return None
        return record.nonce

    def peek(self, tenant_id: str) -> PendingHandshake | None:
        """Non-consuming read, for diagnostics and tests."""
        with self._lock_for(tenant_id):
            record = self._pending.get(tenant_id)
        if record is None or record.expired(self._clock()):
            return None
        return record

    def mark_consumed(self, tenant_id: str, nonce: str, expires_at: float) -> bool:
        """
        Remember that nonce was used for tenant until expires_at.
        Returns False if it was already marked (replay within this process).
        """
        now = self._clock()
        with self._lock_for(tenant_id):
            seen = self._consumed.setdefault(tenant_id, {})
            previous = seen.get(nonce)
            if previous is not None and previous > now:
                return False
            seen[nonce] = expires_at
            return True

    def sweep(self) -> int:
        """Remove expired pending handshakes and consumed markers. Returns number removed."""
        now = self._clock()
        removed = 0
        with self._registry_lock:
            tenants = list(self._tenant_locks.items())
        for tenant_id, lock in tenants:
            with lock:
                record = self._pending.get(tenant_id)
                if record is not None and record.expired(now):
                    del self._pending[tenant_id]
                    removed += 1
                seen = self._consumed.get(tenant_id)
                if seen:
                    stale = [n for n, exp in seen.items() if exp <= now]
                    for n in stale:
                        del seen[n]
                    removed += len(stale)
                    if not seen:
                        del self._consumed[tenant_id]
        if removed:
            logger.debug("Nonce sweep removed %d expired entries", removed)
        return removed

    def clear(self) -> None:
        """Drop all state (equivalent to a process restart)."""
        with self._registry_lock:
            tenants = list(self._tenant_locks.items())
        for tenant_id, lock in tenants:
            with lock:
                self._pending.pop(tenant_id, None)
                self._consumed.pop(tenant_id, None)

    def __len__(self) -> int:
        return len(self._pending)

    # --- background sweep ---

    def _sweep_loop(self) -> None:
        logger.info("Nonce sweep started (interval %.1fs, ttl %ds)", self.sweep_interval, self.ttl_seconds)
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Nonce sweep failed")
        logger.info("Nonce sweep stopped")

    def start(self) -> None:
        """Start the periodic expiry sweep in a daemon thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="nonce-sweep", daemon=True)
        self._sweeper.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the sweep thread and wait for it to exit."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=timeout)
            if self._sweeper.is_alive():
                logger.warning("Nonce sweep thread did not stop within %.1fs", timeout)
        self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()
