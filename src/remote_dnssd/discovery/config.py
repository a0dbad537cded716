"""Discovery settings (defaults < settings dict < environment)."""

import logging
import os
from typing import Any, Callable, Dict, Optional

from .types import IPVer

logger = logging.getLogger(__name__)


class DiscoveryConfig:
    """DNS-SD 設定を管理するクラス"""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        s = settings or {}
        self.enabled: bool = self._parse_enabled(s.get("enabled", True))
        self.ip_ver: IPVer = IPVer.parse(s.get("ip_ver", IPVer.UNSPEC))
        # zeroconf には ALL_FOR_NOW 相当の通知がないため、browse 開始からの待ち時間で代用する
        self.all_for_now_delay: float = float(s.get("all_for_now_delay", 1.5))
        self.resolve_timeout_ms: int = int(s.get("resolve_timeout_ms", 3000))
        self.poll_interval: float = float(s.get("poll_interval", 0.5))

        # 環境変数によるオーバーライド
        env_enabled = os.getenv("REMOTE_DNSSD_ENABLED")
        if env_enabled is not None:
            self.enabled = self._parse_enabled(env_enabled)
        self.ip_ver = self._env_override("REMOTE_DNSSD_IPVER", IPVer.parse, self.ip_ver)
        self.all_for_now_delay = self._env_override(
            "REMOTE_DNSSD_ALL_FOR_NOW", self._parse_seconds, self.all_for_now_delay
        )
        self.resolve_timeout_ms = self._env_override(
            "REMOTE_DNSSD_RESOLVE_TIMEOUT", int, self.resolve_timeout_ms
        )
        self.poll_interval = self._env_override(
            "REMOTE_DNSSD_POLL_INTERVAL", self._parse_seconds, self.poll_interval
        )

    @staticmethod
    def _env_override(name: str, parse: Callable[[str], Any], current: Any) -> Any:
        """不正な値は警告して無視する（起動を止めない）"""
        raw = os.getenv(name)
        if not raw:
            return current
        try:
            return parse(raw)
        except ValueError as e:
            logger.warning(f"Ignoring invalid {name}={raw!r}: {e}")
            return current

    @staticmethod
    def _parse_enabled(value) -> bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_seconds(value: str) -> float:
        """'1.5', '1500ms', '2s' を秒に変換"""
        s = str(value).strip().lower()
        if s.endswith("ms"):
            return float(s[:-2]) / 1000.0
        if s.endswith("s"):
            return float(s[:-1])
        return float(s)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "ip_ver": int(self.ip_ver),
            "all_for_now_delay": self.all_for_now_delay,
            "resolve_timeout_ms": self.resolve_timeout_ms,
            "poll_interval": self.poll_interval,
        }
