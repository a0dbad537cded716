"""Thread-safe table of resolved discovery records."""

import logging
import threading
from typing import Dict, Optional

from .types import IPVer, RecordKey, RecordValue

logger = logging.getLogger(__name__)


class ResultStore:
    """RecordKey -> RecordValue のテーブル

    エントリは resolve 完了で追加され、browse の REMOVE 通知でのみ削除される。
    ロックは外から渡すことができ、BrowseResolveMachine と共有する。
    """

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._lock = lock or threading.RLock()
        self._results: Dict[RecordKey, RecordValue] = {}

    def add(self, key: RecordKey, value: RecordValue) -> None:
        """Insert or wholesale replace the entry for ``key``."""
        with self._lock:
            self._results[key] = value
        logger.debug(f"DNS-SD discovered {value.url} [{value.uuid}] IPv{int(value.ip_ver)}")

    def remove(self, key: RecordKey) -> Optional[RecordValue]:
        """Remove ``key``; absent keys are ignored."""
        with self._lock:
            value = self._results.pop(key, None)
        if value is None:
            return None
        logger.debug(f"DNS-SD removed {value.url} [{value.uuid}] IPv{int(value.ip_ver)}")
        return value

    def get(self, key: RecordKey) -> Optional[RecordValue]:
        with self._lock:
            return self._results.get(key)

    def server_urls(self) -> Dict[str, Dict[IPVer, str]]:
        """Group entries as {uuid: {ip_ver: url}}."""
        uuid_to_url: Dict[str, Dict[IPVer, str]] = {}
        with self._lock:
            for value in self._results.values():
                uuid_to_url.setdefault(value.uuid, {})[value.ip_ver] = value.url
        return uuid_to_url

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._results
