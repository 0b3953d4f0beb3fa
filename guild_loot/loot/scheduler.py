"""
In-process fixed-interval scheduler for the sweeps.

Assumes a single scheduler process per database. The sweeps' conditional
updates keep overlapping runs from repeating side effects, but nothing
coordinates several schedulers.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.db import close_old_connections

from .sweep_service import SWEEPS

logger = logging.getLogger(__name__)

DEFAULT_INTERVALS = {
    'expire_items': 60 * 60,
    'settle_auctions': 60,
    'close_votes': 20 * 60,
    'sweep_disabled_users': 24 * 60 * 60,
}


@dataclass
class SweepJob:
    name: str
    func: Callable
    interval: float
    next_run: float = 0.0
    runs: int = 0
    failures: int = 0


class SweepScheduler:
    """
    Runs each registered job when its interval has elapsed. A failing job
    is logged and retried at its next interval.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.jobs: Dict[str, SweepJob] = {}

    def register(self, name: str, func: Callable, interval: float, run_immediately: bool = True) -> SweepJob:
        if interval <= 0:
            raise ValueError(f"Interval for {name} must be positive")
        next_run = self.clock() if run_immediately else self.clock() + interval
        job = SweepJob(name=name, func=func, interval=interval, next_run=next_run)
        self.jobs[name] = job
        return job

    def run_pending(self) -> List[str]:
        """
        Run every job that is due.

        Returns:
            List[str]: Names of the jobs that ran
        """
        now = self.clock()
        ran = []
        for job in self.jobs.values():
            if job.next_run > now:
                continue
            try:
                result = job.func()
                logger.debug(f"Sweep {job.name} finished: {result}")
            except Exception:
                job.failures += 1
                logger.error(f"Sweep {job.name} failed", exc_info=True)
            job.runs += 1
            job.next_run = now + job.interval
            ran.append(job.name)
        return ran

    def seconds_until_next(self) -> float:
        if not self.jobs:
            return 1.0
        return max(min(job.next_run for job in self.jobs.values()) - self.clock(), 0.0)

    def run_forever(self, stop_event: Optional[threading.Event] = None, max_sleep: float = 5.0) -> None:
        stop_event = stop_event or threading.Event()
        logger.info(f"Sweep scheduler started with jobs: {', '.join(self.jobs)}")
        while not stop_event.is_set():
            # Long-lived process: drop connections the database has timed out
            close_old_connections()
            self.run_pending()
            stop_event.wait(min(self.seconds_until_next(), max_sleep))
        logger.info("Sweep scheduler stopped")


def build_default_scheduler(only=None, clock: Callable[[], float] = time.monotonic) -> SweepScheduler:
    """Scheduler with every sweep at its configured interval."""
    intervals = dict(DEFAULT_INTERVALS)
    intervals.update(getattr(settings, 'LOOT_SWEEP_INTERVALS', {}))

    scheduler = SweepScheduler(clock=clock)
    for name, func in SWEEPS.items():
        if only and name not in only:
            continue
        scheduler.register(name, func, intervals[name])
    return scheduler
