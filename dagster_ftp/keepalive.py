"""Fixed-delay scheduling of the connection keepalive."""

import threading
from collections.abc import Callable

import dagster as dg

logger = dg.get_dagster_logger(__name__)


class ScheduledTask:
    """A task re-run on a daemon timer thread until cancelled.

    The next run is scheduled only after the previous one finished, so runs
    never overlap. Exceptions escaping the task are logged and do not stop
    the schedule.
    """

    def __init__(self, task: Callable[[], None], fixed_delay: float, name: str):
        self._task = task
        self._fixed_delay = fixed_delay
        self._name = name
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _arm(self, delay: float) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(delay, self._run)
            self._timer.name = self._name
            self._timer.daemon = True
            self._timer.start()

    def _run(self) -> None:
        if self._cancelled:
            return
        try:
            self._task()
        except Exception:
            logger.exception(f"Scheduled task {self._name} failed")
        self._arm(self._fixed_delay)

    def cancel(self) -> None:
        """Stop the schedule. A run already in progress is allowed to finish."""
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class KeepaliveScheduler:
    """Creates :class:`ScheduledTask` instances backed by ``threading.Timer``."""

    def __init__(self, name: str = "dagster-ftp-keepalive"):
        self._name = name

    def schedule(
        self, task: Callable[[], None], initial_delay: float, fixed_delay: float
    ) -> ScheduledTask:
        """Run ``task`` after ``initial_delay`` seconds, then every ``fixed_delay``.

        The delay is measured from the end of one run to the start of the next.

        :param task: Callable run on the timer thread
        :type task: Callable[[], None]
        :param initial_delay: Seconds before the first run
        :type initial_delay: float
        :param fixed_delay: Seconds between the end of a run and the start of the next
        :type fixed_delay: float
        :return: Handle used to cancel the schedule
        :rtype: ScheduledTask
        """
        scheduled = ScheduledTask(task, fixed_delay, self._name)
        scheduled._arm(initial_delay)
        return scheduled
