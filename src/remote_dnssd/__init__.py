"""remote-dnssd: mDNS/DNS-SD advertisement and discovery of remote servers."""

__version__ = "0.1.0"

from .discovery import DNSSD, IPVer, advertise_server, discover_servers  # noqa: E402

__all__ = ["DNSSD", "IPVer", "advertise_server", "discover_servers", "__version__"]
