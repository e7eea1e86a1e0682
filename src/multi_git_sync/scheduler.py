import datetime
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from .constants import APP_NAME
from .job import RepositoryJob
from .schedule import next_fire, validate

logger = logging.getLogger(APP_NAME)


def _now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


class Scheduler:
    """Runs each RepositoryJob on its own cron schedule.

    Every job gets a timer thread that sleeps until the job's next fire time
    and then hands ``job.run`` to a shared worker pool, so jobs firing at the
    same instant run concurrently. A single ``threading.Event`` acts as the
    cancellation token: once set, timers stop issuing ticks, while runs
    already on the pool are left to finish.
    """

    def __init__(self, max_workers: int | None = None):
        """Initializes an empty scheduler.

        Args:
            max_workers (int | None): Size of the worker pool. Defaults to
                                      twice the number of jobs.
        """
        self._entries: list[tuple[str, RepositoryJob]] = []
        self._max_workers = max_workers
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._executor: ThreadPoolExecutor | None = None
        self._running = False

    @property
    def jobs(self) -> list[tuple[str, RepositoryJob]]:
        """The registered (cron expression, job) pairs."""
        return list(self._entries)

    @property
    def is_running(self) -> bool:
        return self._running

    def add(self, schedule: str, job: RepositoryJob) -> None:
        """Registers a job under a cron expression.

        Raises:
            ConfigError: If the cron expression is invalid.
        """
        self._entries.append((validate(schedule), job))

    def start(self) -> None:
        """Starts one timer thread per job. Safe to call more than once."""
        if self._running:
            logger.debug("Scheduler already running")
            return

        workers = self._max_workers or max(len(self._entries), 1) * 2
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="sync-worker"
        )
        self._stop_event.clear()
        self._running = True

        for index, (schedule, job) in enumerate(self._entries):
            thread = threading.Thread(
                target=self._timer_loop,
                args=(schedule, job),
                name=f"sync-timer-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info(f"Scheduler started with {len(self._entries)} job(s).")

    def _timer_loop(self, schedule: str, job: RepositoryJob) -> None:
        last_fire: datetime.datetime | None = None
        while not self._stop_event.is_set():
            now = _now()
            # Never fire the same slot twice if the wall clock steps backwards.
            base = max(now, last_fire) if last_fire else now
            fire_at = next_fire(schedule, base)

            delay = max((fire_at - now).total_seconds(), 0)
            if self._stop_event.wait(timeout=delay):
                break
            last_fire = fire_at
            self._fire(job)

    def _fire(self, job: RepositoryJob) -> None:
        if self._stop_event.is_set() or self._executor is None:
            return
        try:
            self._executor.submit(job.run)
        except RuntimeError as e:
            # Pool already shut down.
            logger.debug(f"Tick for {job} dropped: {e}")

    def stop(self) -> None:
        """Stops issuing new ticks. In-flight runs are not interrupted."""
        self._stop_event.set()

    def shutdown(self, wait: bool = True) -> None:
        """Stops the timers and releases the worker pool.

        Args:
            wait (bool): Block until in-flight runs complete. Defaults to True.
        """
        self.stop()
        for thread in self._threads:
            thread.join()
        self._threads = []

        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        self._running = False
        logger.info("Scheduler shut down.")

    def run_forever(self) -> None:
        """Starts the scheduler and blocks until ``stop`` is called, then drains."""
        self.start()
        self._stop_event.wait()
        self.shutdown(wait=True)
