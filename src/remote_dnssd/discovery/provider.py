"""
Discovery provider capability interface

mDNS/DNS-SD エンジンとのやり取りをこのインターフェースに閉じ込める。
コールバックは必ず iterate() の中から、ループを回しているスレッド上で呼ばれる。
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .types import (
    BrowseEvent,
    ClientState,
    ClientStateEvent,
    GroupStateEvent,
    IPVer,
    ProviderInfo,
    RecordKey,
    ResolveEvent,
    ServiceRecord,
)

BrowseCallback = Callable[[BrowseEvent], None]
ResolveCallback = Callable[[ResolveEvent], None]
GroupCallback = Callable[[GroupStateEvent], None]
ClientCallback = Callable[[ClientStateEvent], None]


class ProviderError(Exception):
    """Synchronous failure reported by a discovery provider."""


class DiscoveryProvider(ABC):
    """Publish / browse / resolve primitives with a poll-driven loop.

    Handles returned by ``publish``, ``browse`` and ``resolve`` are opaque to
    callers; they are only passed back to ``cancel``.
    """

    _client_callback: Optional[ClientCallback] = None

    def set_client_callback(self, callback: Optional[ClientCallback]) -> None:
        """Receive client state changes (delivered from ``iterate``)."""
        self._client_callback = callback

    @abstractmethod
    def client_state(self) -> ClientState:
        """Current state of the connection to the engine."""

    @abstractmethod
    def info(self) -> ProviderInfo:
        """Engine version, host name and domain."""

    @abstractmethod
    def publish(self, record: ServiceRecord, ip_ver: IPVer,
                callback: Optional[GroupCallback] = None) -> Any:
        """Register and commit ``record``. Raises ProviderError on failure."""

    @abstractmethod
    def browse(self, service_type: str, ip_ver: IPVer, callback: BrowseCallback) -> Any:
        """Start browsing for ``service_type``. Raises ProviderError on failure."""

    @abstractmethod
    def resolve(self, key: RecordKey, ip_ver: IPVer, callback: ResolveCallback) -> Any:
        """Start resolving ``key``; exactly one terminal event follows."""

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Release a publish, browse or resolve handle."""

    @abstractmethod
    def iterate(self, timeout: Optional[float] = None) -> bool:
        """Run one loop step, dispatching at most one pending callback.

        Returns False once ``request_stop`` has been called.
        """

    @abstractmethod
    def request_stop(self) -> None:
        """Make the current and all later ``iterate`` calls return False."""

    @abstractmethod
    def close(self) -> None:
        """Release the engine connection."""
