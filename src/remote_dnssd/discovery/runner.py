"""Background thread that pumps the provider's event loop."""

import logging
import threading
from typing import Callable, Optional

from .provider import DiscoveryProvider

logger = logging.getLogger(__name__)


class EventLoopRunner:
    """
    プロバイダのイベントループを専用スレッドで回す。

    スレッドは最大一度だけ起動される。ループが終了すると on_exit が呼ばれる
    （待機中の呼び出し元を解放するため）。
    """

    def __init__(self, provider: DiscoveryProvider, poll_interval: float = 0.5,
                 on_exit: Optional[Callable[[], None]] = None):
        self._provider = provider
        self.poll_interval = poll_interval
        self._on_exit = on_exit
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the loop thread unless it was already started."""
        with self._start_lock:
            if self._thread is not None:
                return self._thread.is_alive()
            self._thread = threading.Thread(
                target=self._run, name="dnssd-event-loop", daemon=True
            )
            self._thread.start()
            return True

    def _run(self) -> None:
        logger.debug("DNS-SD event loop started")
        try:
            while self._provider.iterate(self.poll_interval):
                pass
        except Exception as e:
            logger.error(f"DNS-SD event loop failed: {e}", exc_info=True)
        finally:
            logger.debug("DNS-SD event loop stopped")
            if self._on_exit:
                self._on_exit()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the loop to quit and join the thread (if it was started)."""
        self._provider.request_stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
