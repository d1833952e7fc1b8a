from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from croniter import croniter

from astral_projection.constants import CHECK_DELAY_SECONDS
from astral_projection.exceptions import ConfigurationError
from astral_projection.logger import logger

Job = Callable[[threading.Event], Any]


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class Scheduler:
    """
    Runs a job on a cron schedule by coarse polling.

    The job runs once right away. After that the scheduler wakes up every
    `poll_interval` seconds and runs the job again once the current time has
    passed the next occurrence. The next occurrence is computed from the time
    the run finished, so missed occurrences are dropped rather than replayed.

    The job receives the stop event and is expected to watch it; a running job
    is never interrupted by the scheduler itself.
    """

    def __init__(
        self,
        name: str,
        schedule: str,
        job: Job,
        stop_event: Optional[threading.Event] = None,
        poll_interval: float = CHECK_DELAY_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not croniter.is_valid(schedule):
            raise ConfigurationError(f"Invalid cron expression for {name}: {schedule}")

        self.name = name
        self.schedule = schedule
        self.job = job
        self.stop_event = stop_event or threading.Event()
        self.poll_interval = poll_interval
        self.state = SchedulerState.IDLE
        self._clock = clock
        self.next_run = self._next_occurrence()

    def _next_occurrence(self) -> datetime:
        return croniter(self.schedule, self._clock()).get_next(datetime)

    def is_due(self) -> bool:
        return self._clock() > self.next_run

    def run_once(self) -> None:
        """
        Runs the job, logging any fault instead of propagating it.
        """
        self.state = SchedulerState.RUNNING
        try:
            self.job(self.stop_event)
        except Exception:
            logger.exception(f"Execution of {self.name} interrupted")
        finally:
            self.state = SchedulerState.IDLE

    def tick(self) -> bool:
        """
        Runs the job if it is due and re-arms the schedule.

        Returns:
            bool: True if the job ran.
        """
        if not self.is_due():
            return False

        logger.info(f"Worker schedule triggered: {self.name}")
        self.run_once()

        self.next_run = self._next_occurrence()
        logger.info(f"Worker process completed: {self.name}")
        logger.info(f"Worker next execution should start at: {self.next_run}")
        return True

    def run_forever(self) -> None:
        """
        Runs the job on startup, then polls until the stop event is set.
        """
        logger.info(f"Worker {self.name} scheduled on: {self.schedule}")
        self.run_once()

        while not self.stop_event.is_set():
            self.tick()
            # Returns early once stop is requested
            self.stop_event.wait(self.poll_interval)

        logger.info(f"Worker {self.name} stopped")

    def stop(self) -> None:
        self.stop_event.set()
