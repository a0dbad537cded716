"""
DNS-SD discovery handle

サーバーは register_service() で自身を公開し、クライアントは get_server_urls() で
ネットワーク上のサーバーを発見する。

発見はあくまで補助機能なので、ここからは例外を外に出さない。
失敗はログに残し、空の結果または何もしない動作になる。

使用方法:
    with DNSSD() as dnssd:
        dnssd.register_service(uuid, "55132", IPVer.UNSPEC)

    with DNSSD() as dnssd:
        for uuid, urls in dnssd.get_server_urls(IPVer.UNSPEC).items():
            print(uuid, urls)
"""

import asyncio
import logging
import threading
from typing import Dict, Optional

from .browser import SERVICE_TYPE, BrowseResolveMachine
from .config import DiscoveryConfig
from .provider import DiscoveryProvider, ProviderError
from .runner import EventLoopRunner
from .types import ClientState, ClientStateEvent, GroupState, GroupStateEvent, IPVer, ProviderInfo, ServiceRecord
from .zeroconf_provider import ZeroconfProvider

logger = logging.getLogger(__name__)

PRODUCT_NAME = "SoapyRemote"
UUID_KEY = "uuid"

ServerURLs = Dict[str, Dict[IPVer, str]]


class DNSSD:
    """Publishes this server and discovers peers over mDNS/DNS-SD.

    The handle owns the provider, the publish group, the browser and the event
    loop thread. Nothing raises across the public methods.
    """

    def __init__(self, provider: Optional[DiscoveryProvider] = None,
                 config: Optional[DiscoveryConfig] = None):
        self.config = config or DiscoveryConfig()
        self._lock = threading.RLock()
        self._provider: Optional[DiscoveryProvider] = None
        self._machine: Optional[BrowseResolveMachine] = None
        self._runner: Optional[EventLoopRunner] = None
        self._group = None
        self._closed = False

        if provider is None:
            try:
                provider = ZeroconfProvider(
                    resolve_timeout_ms=self.config.resolve_timeout_ms,
                    all_for_now_delay=self.config.all_for_now_delay,
                )
            except (ProviderError, OSError) as e:
                logger.error(f"DNS-SD client creation failed: {e}")
                return

        self._provider = provider
        provider.set_client_callback(self._on_client_state)
        self._machine = BrowseResolveMachine(provider, lock=self._lock, service_type=SERVICE_TYPE)
        self._runner = EventLoopRunner(
            provider, poll_interval=self.config.poll_interval, on_exit=self._machine.abandon
        )

    def __enter__(self) -> "DNSSD":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def available(self) -> bool:
        return self._provider is not None and not self._closed

    def status(self) -> bool:
        """False if the client is unavailable or in a failed state."""
        if not self.available:
            return False
        return self._provider.client_state() != ClientState.FAILURE

    def info(self) -> Optional[ProviderInfo]:
        if self._provider is None:
            return None
        return self._provider.info()

    def print_info(self) -> None:
        """Log a summary of the engine connection (for server logs)."""
        info = self.info()
        if info is None:
            logger.info("DNS-SD client not available")
            return
        logger.info(f"DNS-SD version:  {info.version}")
        logger.info(f"DNS-SD hostname: {info.host_name}")
        logger.info(f"DNS-SD domain:   {info.domain_name}")
        logger.info(f"DNS-SD FQDN:     {info.host_name_fqdn}")

    # ------------------------------------------------------------------
    # callbacks (loop thread)

    def _on_client_state(self, event: ClientStateEvent) -> None:
        if event.state == ClientState.RUNNING:
            logger.debug("DNS-SD client running...")
        elif event.state in (ClientState.COLLISION, ClientState.FAILURE):
            logger.error(f"DNS-SD client failure: {event.error}")
            self._provider.request_stop()

    def _on_group_state(self, event: GroupStateEvent) -> None:
        if event.state == GroupState.ESTABLISHED:
            logger.debug("DNS-SD group established...")
        elif event.state in (GroupState.COLLISION, GroupState.FAILURE):
            logger.error(f"DNS-SD group failure: {event.error}")

    # ------------------------------------------------------------------
    # publish

    def register_service(self, uuid: str, service: str, ip_ver: IPVer = IPVer.UNSPEC) -> None:
        """Publish this server instance.

        Args:
            uuid: identity tag carried in the TXT record
            service: port number as a decimal string
            ip_ver: IP scope to publish under (UNSPEC publishes both)
        """
        if not self.status():
            logger.error("DNS-SD client not available, service not registered")
            return
        with self._lock:
            if self._group is not None:
                logger.warning("DNS-SD service already registered, ignoring")
                return
            try:
                port = int(service)
            except (TypeError, ValueError):
                logger.error(f"DNS-SD register failed: invalid port {service!r}")
                return

            # 同一マシン上で区別できる名前（衝突はプロバイダ側で解決）
            name = f"{PRODUCT_NAME} @ {self._provider.info().host_name}"
            record = ServiceRecord(name=name, type=SERVICE_TYPE, port=port, txt={UUID_KEY: uuid})
            try:
                self._group = self._provider.publish(record, IPVer.parse(ip_ver), self._on_group_state)
            except (ProviderError, OSError, ValueError) as e:
                logger.error(f"DNS-SD register failed: {e}")
                return

        # レコードを維持するためにバックグラウンドでループを回す
        self._runner.start()

    # ------------------------------------------------------------------
    # discovery

    def get_server_urls(self, ip_ver: IPVer = IPVer.UNSPEC) -> ServerURLs:
        """Discover servers as {uuid: {ip_ver: url}}.

        The first call blocks until the initial sweep is complete. Later calls
        read the live table, which the background loop keeps updating.
        """
        if not self.status():
            return {}
        try:
            ip_ver = IPVer.parse(ip_ver)
        except ValueError as e:
            logger.error(f"DNS-SD browse failed: {e}")
            return {}
        with self._lock:
            if not self._machine.start(ip_ver):
                return {}
            self._runner.start()
            self._machine.wait_complete()
            return self._machine.store.server_urls()

    # ------------------------------------------------------------------
    # teardown

    def close(self) -> None:
        """Stop the loop, then release browser, group and client in that order."""
        if self._closed or self._provider is None:
            self._closed = True
            return
        self._closed = True
        self._runner.stop()
        self._machine.close()
        group, self._group = self._group, None
        if group is not None:
            try:
                self._provider.cancel(group)
            except ProviderError as e:
                logger.error(f"DNS-SD unregister failed: {e}")
        self._provider.close()


# 便利関数

async def advertise_server(uuid: str, port, ip_ver: IPVer = IPVer.UNSPEC,
                           provider: Optional[DiscoveryProvider] = None) -> DNSSD:
    """
    簡易サーバー公開関数

    Returns:
        DNSSDインスタンス（後でclose()が必要）
    """
    loop = asyncio.get_running_loop()
    dnssd = await loop.run_in_executor(None, lambda: DNSSD(provider=provider))
    await loop.run_in_executor(None, dnssd.register_service, uuid, str(port), ip_ver)
    return dnssd


async def discover_servers(ip_ver: IPVer = IPVer.UNSPEC,
                           provider: Optional[DiscoveryProvider] = None) -> ServerURLs:
    """
    簡易サーバー発見関数

    Returns:
        {uuid: {ip_ver: url}}
    """
    loop = asyncio.get_running_loop()
    dnssd = await loop.run_in_executor(None, lambda: DNSSD(provider=provider))
    try:
        return await loop.run_in_executor(None, dnssd.get_server_urls, ip_ver)
    finally:
        await loop.run_in_executor(None, dnssd.close)
