"""Shared types for DNS-SD discovery.

レコードキー、解決結果、プロバイダから届くイベントの型をまとめる。
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, NamedTuple, Optional

# インターフェース番号が不明な場合
IF_UNSPEC = -1


class IPVer(IntEnum):
    """IP protocol version preference."""
    UNSPEC = 0
    INET = 4
    INET6 = 6

    @classmethod
    def parse(cls, value) -> "IPVer":
        """'4', 6, 'inet6', 'unspec' などを IPVer に変換"""
        if isinstance(value, cls):
            return value
        s = str(value).strip().lower()
        aliases = {
            "": cls.UNSPEC, "0": cls.UNSPEC, "unspec": cls.UNSPEC, "any": cls.UNSPEC,
            "4": cls.INET, "v4": cls.INET, "ipv4": cls.INET, "inet": cls.INET,
            "6": cls.INET6, "v6": cls.INET6, "ipv6": cls.INET6, "inet6": cls.INET6,
        }
        if s not in aliases:
            raise ValueError(f"Unknown IP version: {value!r}")
        return aliases[s]


class RecordKey(NamedTuple):
    """Identity of one advertisement instance as seen by the browser."""
    interface: int
    protocol: IPVer
    name: str
    type: str
    domain: str


class RecordValue(NamedTuple):
    """Resolved record: identity tag, IP version and connection URL."""
    uuid: str
    ip_ver: IPVer
    url: str


class ClientState(Enum):
    CONNECTING = "connecting"
    REGISTERING = "registering"
    RUNNING = "running"
    COLLISION = "collision"
    FAILURE = "failure"


class GroupState(Enum):
    UNCOMMITTED = "uncommitted"
    REGISTERING = "registering"
    ESTABLISHED = "established"
    COLLISION = "collision"
    FAILURE = "failure"


class BrowserEvent(Enum):
    NEW = "new"
    REMOVE = "remove"
    CACHE_EXHAUSTED = "cache_exhausted"
    ALL_FOR_NOW = "all_for_now"
    FAILURE = "failure"


class ResolverEvent(Enum):
    FOUND = "found"
    FAILURE = "failure"


@dataclass
class ServiceRecord:
    """Outgoing service record."""
    name: str
    type: str
    port: int
    txt: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProviderInfo:
    """Diagnostic information about the discovery engine."""
    version: str
    host_name: str
    domain_name: str
    host_name_fqdn: str


@dataclass
class ClientStateEvent:
    state: ClientState
    error: Optional[str] = None


@dataclass
class GroupStateEvent:
    state: GroupState
    error: Optional[str] = None


@dataclass
class BrowseEvent:
    event: BrowserEvent
    key: Optional[RecordKey] = None
    error: Optional[str] = None


@dataclass
class ResolveEvent:
    """Terminal event of one resolution attempt.

    ``interface`` is the interface the address was received on, or
    ``IF_UNSPEC`` when the engine does not know it.
    """
    event: ResolverEvent
    key: RecordKey
    address: Optional[str] = None
    port: int = 0
    txt: Dict[str, str] = field(default_factory=dict)
    interface: int = IF_UNSPEC
    error: Optional[str] = None
