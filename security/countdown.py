import logging
import threading

logger = logging.getLogger(__name__)


class LockoutCountdown:
    """
    Re-derives the remaining lockout time once per interval.

    Each tick calls ``tick(client_key)``, which also clears an expired lockout,
    and hands the remaining seconds to ``on_tick``. The chain stops on its own
    once the remaining time reaches 0, or earlier through ``cancel()``.
    """

    def __init__(self, tick, client_key: str, on_tick=None, interval: float = 1.0):
        self._tick = tick
        self._client_key = client_key
        self._on_tick = on_tick
        self._interval = interval
        self._lock = threading.Lock()
        self._timer = None
        self._cancelled = False
        self.remaining = None

    @property
    def active(self) -> bool:
        with self._lock:
            return self._timer is not None and not self._cancelled

    def start(self) -> "LockoutCountdown":
        self._run()
        return self

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _run(self) -> None:
        with self._lock:
            if self._cancelled:
                return
        try:
            self.remaining = self._tick(self._client_key)
        except Exception:
            logger.exception("Lockout countdown tick failed for %s", self._client_key)
            self.cancel()
            raise

        if self._on_tick is not None:
            self._on_tick(self.remaining)

        with self._lock:
            if self._cancelled or self.remaining <= 0:
                self._timer = None
                return
            self._timer = threading.Timer(self._interval, self._run)
            self._timer.daemon = True
            self._timer.start()
