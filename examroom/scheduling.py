import logging
import threading

logger = logging.getLogger(__name__)


class Handle:
    """A scheduled callback that can be cancelled before it runs."""

    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class Scheduler:
    """Runs callbacks after a delay or at a fixed interval.

    Exam sessions and dashboards receive a scheduler instead of starting
    timers themselves, so the owner controls when ticking starts and stops.
    """

    def call_later(self, delay, callback):
        raise NotImplementedError

    def call_every(self, interval, callback):
        raise NotImplementedError


class _TimerHandle(Handle):
    def __init__(self):
        super().__init__()
        self._timer = None
        self._lock = threading.Lock()

    def _arm(self, delay, fire):
        with self._lock:
            if self.cancelled:
                return
            self._timer = threading.Timer(delay, fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            super().cancel()
            if self._timer is not None:
                self._timer.cancel()


class ThreadScheduler(Scheduler):
    """Scheduler backed by ``threading.Timer``; callbacks run on timer threads."""

    def call_later(self, delay, callback):
        handle = _TimerHandle()

        def fire():
            if not handle.cancelled:
                self._run(callback)

        handle._arm(delay, fire)
        return handle

    def call_every(self, interval, callback):
        handle = _TimerHandle()

        def fire():
            if handle.cancelled:
                return
            self._run(callback)
            handle._arm(interval, fire)

        handle._arm(interval, fire)
        return handle

    @staticmethod
    def _run(callback):
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback failed")
