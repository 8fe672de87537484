import logging
import time
from typing import Any, Callable, Protocol


logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now_ms(self) -> int:
        ...


class SystemClock:
    """Wall clock in epoch milliseconds; deadlines are shared between peers."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class TaskRunner(Protocol):
    """Anything exposing socketio-style background tasks.

    Both ``flask_socketio.SocketIO`` and ``socketio.Client`` qualify.
    """

    def start_background_task(self, target: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        ...

    def sleep(self, seconds: float) -> Any:
        ...


class TimerHandle:
    """Cancellation handle for a repeating timer."""

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(Protocol):
    def every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        ...


class BackgroundTaskScheduler:
    """Repeating timers running as socketio background tasks.

    Each timer is a sleep loop; cancelling the handle stops it before the
    next callback fires.
    """

    def __init__(self, runner: TaskRunner) -> None:
        self.runner = runner

    def every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()
        self.runner.start_background_task(self._worker, handle, max(1, int(interval_ms)) / 1000.0, callback)
        return handle

    def _worker(self, handle: TimerHandle, delay: float, callback: Callable[[], None]) -> None:
        while not handle.cancelled:
            self.runner.sleep(delay)
            if handle.cancelled:
                return
            try:
                callback()
            except Exception:
                logger.exception("[timer-error] repeating timer callback failed")
