"""
Server discovery via mDNS/DNS-SD (Bonjour/Avahi compatible)

同じローカルネットワーク内のサーバーを、アドレスの事前設定なしに発見する。
"""

from .browser import SERVICE_TYPE, BrowseResolveMachine, SweepState
from .config import DiscoveryConfig
from .dnssd import DNSSD, PRODUCT_NAME, advertise_server, discover_servers
from .provider import DiscoveryProvider, ProviderError
from .runner import EventLoopRunner
from .store import ResultStore
from .types import IF_UNSPEC, IPVer, RecordKey, RecordValue
from .zeroconf_provider import ZeroconfProvider

__all__ = [
    "DNSSD",
    "PRODUCT_NAME",
    "SERVICE_TYPE",
    "BrowseResolveMachine",
    "DiscoveryConfig",
    "DiscoveryProvider",
    "EventLoopRunner",
    "IF_UNSPEC",
    "IPVer",
    "ProviderError",
    "RecordKey",
    "RecordValue",
    "ResultStore",
    "SweepState",
    "ZeroconfProvider",
    "advertise_server",
    "discover_servers",
]
