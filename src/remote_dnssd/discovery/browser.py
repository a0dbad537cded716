"""
Browse / resolve state machine

IDLE -> BROWSING -> (RESOLVING*) -> COMPLETE

browse の NEW イベントごとに resolve を起動し、結果を ResultStore に書き込む。
完了フラグが立ち、かつ解決中の resolve が 0 件になった時点で COMPLETE。
"""

import logging
import threading
from enum import Enum
from typing import Any, Optional, Set

from ..utils.url import format_url, server_address
from .provider import DiscoveryProvider, ProviderError
from .store import ResultStore
from .types import (
    BrowseEvent,
    BrowserEvent,
    IPVer,
    RecordKey,
    RecordValue,
    ResolveEvent,
    ResolverEvent,
)

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_soapy._tcp"
URL_SCHEME = "tcp"


class SweepState(Enum):
    IDLE = "idle"
    BROWSING = "browsing"
    COMPLETE = "complete"


class _ResolveAttempt:
    """One resolution in flight; identity is what tracks it."""

    __slots__ = ("key", "handle")

    def __init__(self, key: RecordKey):
        self.key = key
        self.handle: Any = None


class BrowseResolveMachine:
    """Turns browse/resolve events into ResultStore updates.

    All event handlers run on the loop thread. Callers on other threads only
    use ``start``, ``wait_complete``, the read-only properties and ``store``.
    """

    def __init__(self, provider: DiscoveryProvider,
                 lock: Optional[threading.RLock] = None,
                 service_type: str = SERVICE_TYPE):
        self._provider = provider
        self._lock = lock or threading.RLock()
        self._complete_cond = threading.Condition(self._lock)
        self.service_type = service_type
        self.store = ResultStore(self._lock)
        self._browser: Any = None
        self._in_flight: Set[_ResolveAttempt] = set()
        self._browse_complete = False

    @property
    def started(self) -> bool:
        return self._browser is not None

    @property
    def browse_complete(self) -> bool:
        with self._lock:
            return self._browse_complete

    @property
    def resolvers_in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def complete(self) -> bool:
        with self._lock:
            return self._browse_complete and not self._in_flight

    @property
    def state(self) -> SweepState:
        with self._lock:
            if self._browser is None:
                return SweepState.IDLE
            if self.complete:
                return SweepState.COMPLETE
            return SweepState.BROWSING

    def start(self, ip_ver: IPVer) -> bool:
        """Create the browser once. Returns False if creation failed."""
        with self._lock:
            if self._browser is not None:
                return True
            try:
                self._browser = self._provider.browse(self.service_type, ip_ver, self.on_browse_event)
            except ProviderError as e:
                logger.error(f"service browser creation failed: {e}")
                return False
            return True

    def wait_complete(self, timeout: Optional[float] = None) -> bool:
        """Block until the sweep is complete (or ``timeout`` elapses)."""
        with self._complete_cond:
            return self._complete_cond.wait_for(lambda: self.complete, timeout)

    def on_browse_event(self, event: BrowseEvent) -> None:
        if event.event == BrowserEvent.FAILURE:
            logger.error(f"Service browser error: {event.error}")
            self.abandon()
        elif event.event == BrowserEvent.NEW:
            self._spawn_resolver(event.key)
        elif event.event == BrowserEvent.REMOVE:
            self.store.remove(event.key)
        elif event.event in (BrowserEvent.ALL_FOR_NOW, BrowserEvent.CACHE_EXHAUSTED):
            with self._lock:
                self._browse_complete = True
                self._complete_cond.notify_all()

    def _spawn_resolver(self, key: RecordKey) -> None:
        # resolve は発見時と同じプロトコルで行う（v4 で見つけたのに v6 アドレスが返るのを防ぐ）
        attempt = _ResolveAttempt(key)
        with self._lock:
            self._in_flight.add(attempt)
            try:
                attempt.handle = self._provider.resolve(
                    key, key.protocol, lambda event: self._on_resolve_event(attempt, event)
                )
            except ProviderError as e:
                self._in_flight.discard(attempt)
                logger.error(f"service resolver creation failed: {e}")

    def _on_resolve_event(self, attempt: _ResolveAttempt, event: ResolveEvent) -> None:
        with self._lock:
            if attempt not in self._in_flight:
                logger.debug(f"Ignoring late resolver event for {attempt.key.name}")
                return
            try:
                if event.event == ResolverEvent.FOUND and event.address:
                    self._add_result(attempt.key, event)
                else:
                    logger.debug(f"Resolve failed for {attempt.key.name}: {event.error}")
            finally:
                self._in_flight.discard(attempt)
                self._release(attempt.handle)
                self._complete_cond.notify_all()

    def _add_result(self, key: RecordKey, event: ResolveEvent) -> None:
        uuid = event.txt.get("uuid", "")
        if not uuid:
            logger.debug(f"Discarding {key.name}: no uuid in TXT record")
            return
        ip_ver = key.protocol
        addr = server_address(event.address, event.interface, ip_ver == IPVer.INET6)
        url = format_url(URL_SCHEME, addr, event.port)
        self.store.add(key, RecordValue(uuid, ip_ver, url))

    def abandon(self) -> None:
        """Force COMPLETE: cancel outstanding resolutions and release waiters."""
        with self._lock:
            stuck = list(self._in_flight)
            self._in_flight.clear()
            self._browse_complete = True
            self._complete_cond.notify_all()
        for attempt in stuck:
            self._release(attempt.handle)

    def _release(self, handle: Any) -> None:
        if handle is None:
            return
        try:
            self._provider.cancel(handle)
        except ProviderError as e:
            logger.debug(f"Failed to release handle: {e}")

    def close(self) -> None:
        """Release the browser and any resolver still in flight."""
        self.abandon()
        with self._lock:
            browser, self._browser = self._browser, None
        self._release(browser)
