"""
python-zeroconf backed discovery provider

zeroconf は自前のスレッドと asyncio ループでパケットを処理する。
ここではリスナーや resolve の結果をキューに積み、iterate() を呼んだスレッドで
コールバックを実行することで、ポーリング駆動のプロバイダとして振る舞う。
"""

import asyncio
import logging
import queue
import socket
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import ifaddr
from zeroconf import (
    Error as ZeroconfError,
    IPVersion,
    ServiceBrowser,
    ServiceInfo,
    ServiceListener,
    Zeroconf,
    __version__ as zeroconf_version,
)
from zeroconf.asyncio import AsyncServiceInfo

from .provider import BrowseCallback, DiscoveryProvider, GroupCallback, ProviderError, ResolveCallback
from .types import (
    IF_UNSPEC,
    BrowseEvent,
    BrowserEvent,
    ClientState,
    ClientStateEvent,
    GroupState,
    GroupStateEvent,
    IPVer,
    ProviderInfo,
    RecordKey,
    ResolveEvent,
    ResolverEvent,
    ServiceRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "local"

_STOP = object()


def qualify_type(service_type: str, domain: str = DEFAULT_DOMAIN) -> str:
    """'_soapy._tcp' -> '_soapy._tcp.local.'"""
    s = service_type.rstrip(".")
    if s.endswith(f".{domain}"):
        return f"{s}."
    return f"{s}.{domain}."


def split_service_name(type_: str, name: str) -> Tuple[str, str, str]:
    """Split a zeroconf name into (instance, service type, domain).

    'SoapyRemote @ box._soapy._tcp.local.' -> ('SoapyRemote @ box', '_soapy._tcp', 'local')
    """
    qualified = type_ if type_.endswith(".") else f"{type_}."
    instance = name[: -len(qualified) - 1] if name.endswith(qualified) else name.rstrip(".")
    labels = qualified.rstrip(".").split(".")
    return instance, ".".join(labels[:2]), ".".join(labels[2:]) or DEFAULT_DOMAIN


def protocols_for(ip_ver: IPVer) -> Tuple[IPVer, ...]:
    if ip_ver == IPVer.INET:
        return (IPVer.INET,)
    if ip_ver == IPVer.INET6:
        return (IPVer.INET6,)
    return (IPVer.INET, IPVer.INET6)


def decode_properties(properties: Optional[Dict[Any, Any]]) -> Dict[str, str]:
    """TXT のキー/値を str に変換（値のないキーは捨てる）"""
    fields: Dict[str, str] = {}
    if not properties:
        return fields
    for key, value in properties.items():
        if key is None or value is None:
            continue
        key_str = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else str(key)
        val_str = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)
        fields[key_str] = val_str
    return fields


def local_addresses(ip_ver: IPVer) -> List[str]:
    """Addresses of the local interfaces for the given scope, loopback excluded."""
    v4: List[str] = []
    v6: List[str] = []
    for adapter in ifaddr.get_adapters():
        for ip in adapter.ips:
            if ip.is_IPv4 and ip.ip not in v4 and not ip.ip.startswith("127."):
                v4.append(ip.ip)
            elif ip.is_IPv6 and ip.ip[0] not in v6 and ip.ip[0] != "::1":
                v6.append(ip.ip[0])
    if ip_ver == IPVer.INET:
        return v4
    if ip_ver == IPVer.INET6:
        return v6
    return v4 + v6


def split_scope(address: str) -> Tuple[str, int]:
    """'fe80::10%2' -> ('fe80::10', 2)

    名前付きスコープ（%eth0 など）はアドレスに残し、インターフェース番号は不明とする。
    """
    host, sep, scope = address.partition("%")
    if sep and scope.isdigit():
        return host, int(scope)
    return address, IF_UNSPEC


def resolved_event(key: RecordKey, ip_ver: IPVer, info: ServiceInfo, found: bool) -> ResolveEvent:
    """Build the terminal ResolveEvent from a finished ServiceInfo request."""
    if not found:
        return ResolveEvent(ResolverEvent.FAILURE, key, error="resolve timed out")
    if ip_ver == IPVer.INET:
        version = IPVersion.V4Only
    elif ip_ver == IPVer.INET6:
        version = IPVersion.V6Only
    else:
        version = IPVersion.All
    # スコープ付きのまま取り出す（%N がインターフェース番号）
    addresses = info.parsed_scoped_addresses(version)
    if not addresses:
        return ResolveEvent(ResolverEvent.FAILURE, key, error=f"no IPv{int(ip_ver)} address")
    address, interface = split_scope(addresses[0])
    return ResolveEvent(
        ResolverEvent.FOUND,
        key,
        address=address,
        port=info.port or 0,
        txt=decode_properties(info.properties),
        interface=interface,
    )


class _Handle:
    def __init__(self):
        self.cancelled = False


class _GroupHandle(_Handle):
    def __init__(self, info: ServiceInfo):
        super().__init__()
        self.info = info


class _BrowseHandle(_Handle):
    def __init__(self, ip_ver: IPVer, callback: BrowseCallback):
        super().__init__()
        self.ip_ver = ip_ver
        self.callback = callback
        self.browser: Optional[ServiceBrowser] = None
        self.timer: Optional[threading.Timer] = None


class _ResolveHandle(_Handle):
    def __init__(self, key: RecordKey, callback: ResolveCallback):
        super().__init__()
        self.key = key
        self.callback = callback
        self.future = None


class _BrowseListener(ServiceListener):
    """zeroconf のリスナー通知を BrowseEvent に変換してキューへ積む"""

    def __init__(self, provider: "ZeroconfProvider", handle: _BrowseHandle):
        self._provider = provider
        self._handle = handle

    def _post_all(self, event: BrowserEvent, type_: str, name: str) -> None:
        instance, service_type, domain = split_service_name(type_, name)
        for protocol in protocols_for(self._handle.ip_ver):
            key = RecordKey(IF_UNSPEC, protocol, instance, service_type, domain)
            self._provider._post_browse(self._handle, BrowseEvent(event, key))

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._post_all(BrowserEvent.NEW, type_, name)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        # 再アナウンスは再解決して上書きする
        self._post_all(BrowserEvent.NEW, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._post_all(BrowserEvent.REMOVE, type_, name)


class ZeroconfProvider(DiscoveryProvider):
    """DiscoveryProvider implemented on top of python-zeroconf.

    Args:
        resolve_timeout_ms: per-record resolve timeout
        all_for_now_delay: seconds after a browse starts before ALL_FOR_NOW is reported
        zeroconf: an existing Zeroconf instance to use instead of creating one
    """

    def __init__(self, resolve_timeout_ms: int = 3000, all_for_now_delay: float = 1.5,
                 zeroconf: Optional[Zeroconf] = None):
        self.resolve_timeout_ms = resolve_timeout_ms
        self.all_for_now_delay = all_for_now_delay
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._stopped = threading.Event()
        self._handles: List[_Handle] = []
        self._handles_lock = threading.Lock()
        self._state = ClientState.CONNECTING
        self._owns_zeroconf = zeroconf is None
        if zeroconf is None:
            zeroconf = self._create_zeroconf()
        self._zc = zeroconf
        self._state = ClientState.RUNNING
        self._post(self._notify_client, ClientStateEvent(ClientState.RUNNING))

    def _create_zeroconf(self) -> Zeroconf:
        try:
            return Zeroconf(ip_version=IPVersion.All)
        except OSError as e:
            logger.warning(f"IPv6 multicast unavailable ({e}), falling back to IPv4 only")
        try:
            return Zeroconf(ip_version=IPVersion.V4Only)
        except (OSError, ZeroconfError) as e:
            self._state = ClientState.FAILURE
            raise ProviderError(f"Zeroconf() failed: {e}") from e

    # ------------------------------------------------------------------
    # loop

    def _post(self, fn: Callable[[Any], None], arg: Any) -> None:
        self._events.put((fn, arg))

    def iterate(self, timeout: Optional[float] = None) -> bool:
        if self._stopped.is_set():
            return False
        try:
            item = self._events.get(timeout=timeout)
        except queue.Empty:
            return not self._stopped.is_set()
        if item is _STOP:
            return False
        fn, arg = item
        fn(arg)
        return not self._stopped.is_set()

    def request_stop(self) -> None:
        self._stopped.set()
        self._events.put(_STOP)

    def _notify_client(self, event: ClientStateEvent) -> None:
        if self._client_callback is not None:
            self._client_callback(event)

    # ------------------------------------------------------------------
    # client

    def client_state(self) -> ClientState:
        if self._state == ClientState.RUNNING and self._zc.done:
            return ClientState.FAILURE
        return self._state

    def info(self) -> ProviderInfo:
        host_name = socket.gethostname().split(".")[0]
        return ProviderInfo(
            version=f"python-zeroconf {zeroconf_version}",
            host_name=host_name,
            domain_name=DEFAULT_DOMAIN,
            host_name_fqdn=f"{host_name}.{DEFAULT_DOMAIN}",
        )

    def _track(self, handle: _Handle) -> None:
        with self._handles_lock:
            self._handles.append(handle)

    def _untrack(self, handle: _Handle) -> None:
        with self._handles_lock:
            if handle in self._handles:
                self._handles.remove(handle)

    # ------------------------------------------------------------------
    # publish

    def publish(self, record: ServiceRecord, ip_ver: IPVer,
                callback: Optional[GroupCallback] = None) -> _GroupHandle:
        addresses = local_addresses(ip_ver)
        if not addresses:
            raise ProviderError(f"no local addresses to publish for IPv{int(ip_ver)}")
        type_ = qualify_type(record.type)
        host_name = self.info().host_name
        try:
            info = ServiceInfo(
                type_,
                f"{record.name}.{type_}",
                port=record.port,
                properties=record.txt,
                server=f"{host_name}.{DEFAULT_DOMAIN}.",
                parsed_addresses=addresses,
            )
            # 名前の衝突は zeroconf にリネームさせる
            self._zc.register_service(info, allow_name_change=True)
        except (ZeroconfError, OSError, ValueError) as e:
            raise ProviderError(f"register_service() failed: {e}") from e
        handle = _GroupHandle(info)
        self._track(handle)
        if callback:
            self._post(callback, GroupStateEvent(GroupState.ESTABLISHED))
        return handle

    # ------------------------------------------------------------------
    # browse

    def browse(self, service_type: str, ip_ver: IPVer, callback: BrowseCallback) -> _BrowseHandle:
        handle = _BrowseHandle(ip_ver, callback)
        try:
            handle.browser = ServiceBrowser(self._zc, qualify_type(service_type), _BrowseListener(self, handle))
        except (ZeroconfError, OSError, RuntimeError) as e:
            raise ProviderError(f"ServiceBrowser() failed: {e}") from e
        handle.timer = threading.Timer(
            self.all_for_now_delay, self._post_browse, (handle, BrowseEvent(BrowserEvent.ALL_FOR_NOW))
        )
        handle.timer.daemon = True
        handle.timer.start()
        self._track(handle)
        return handle

    def _post_browse(self, handle: _BrowseHandle, event: BrowseEvent) -> None:
        self._post(self._dispatch_browse, (handle, event))

    @staticmethod
    def _dispatch_browse(item: Tuple[_BrowseHandle, BrowseEvent]) -> None:
        handle, event = item
        if not handle.cancelled:
            handle.callback(event)

    # ------------------------------------------------------------------
    # resolve

    def resolve(self, key: RecordKey, ip_ver: IPVer, callback: ResolveCallback) -> _ResolveHandle:
        type_ = qualify_type(key.type, key.domain)
        info = AsyncServiceInfo(type_, f"{key.name}.{type_}")
        handle = _ResolveHandle(key, callback)
        try:
            handle.future = asyncio.run_coroutine_threadsafe(
                info.async_request(self._zc, self.resolve_timeout_ms), self._zc.loop
            )
        except RuntimeError as e:
            raise ProviderError(f"service resolver failed to start: {e}") from e
        handle.future.add_done_callback(lambda fut: self._on_resolved(handle, ip_ver, info, fut))
        self._track(handle)
        return handle

    def _on_resolved(self, handle: _ResolveHandle, ip_ver: IPVer, info: AsyncServiceInfo, fut) -> None:
        if fut.cancelled():
            return
        error = fut.exception()
        if error is not None:
            event = ResolveEvent(ResolverEvent.FAILURE, handle.key, error=str(error))
        else:
            event = resolved_event(handle.key, ip_ver, info, bool(fut.result()))
        self._post(self._dispatch_resolve, (handle, event))

    @staticmethod
    def _dispatch_resolve(item: Tuple[_ResolveHandle, ResolveEvent]) -> None:
        handle, event = item
        if not handle.cancelled:
            handle.callback(event)

    # ------------------------------------------------------------------
    # teardown

    def cancel(self, handle: Any) -> None:
        if not isinstance(handle, _Handle) or handle.cancelled:
            return
        handle.cancelled = True
        self._untrack(handle)
        if isinstance(handle, _BrowseHandle):
            if handle.timer is not None:
                handle.timer.cancel()
            if handle.browser is not None:
                handle.browser.cancel()
        elif isinstance(handle, _ResolveHandle):
            if handle.future is not None:
                handle.future.cancel()
        elif isinstance(handle, _GroupHandle):
            try:
                self._zc.unregister_service(handle.info)
            except (ZeroconfError, OSError, RuntimeError) as e:
                raise ProviderError(f"unregister_service() failed: {e}") from e

    def close(self) -> None:
        self.request_stop()
        with self._handles_lock:
            handles = list(self._handles)
        for handle in handles:
            try:
                self.cancel(handle)
            except ProviderError as e:
                logger.debug(f"{e}")
        if self._owns_zeroconf:
            self._zc.close()
