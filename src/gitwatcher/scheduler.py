"""Recurring task scheduler -- one control loop, one worker per firing.

TaskRegistry holds the keyed tasks behind a single condition variable. The
Scheduler loop sleeps until the earliest due time (or until the registry
changes), then hands each due task to a thread pool. A key whose previous
firing is still running is skipped rather than queued, so a key never has
two executions in flight no matter how slow its job is.

Per-key lifecycle: idle -> due -> running -> idle, and evicted once the key
is removed or replaced.
"""

from __future__ import annotations

import functools
import itertools
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from loguru import logger

from .models import TaskState
from .schedule import ScheduleExpression, parse

log = logger.bind(stage="scheduler")

Job = Callable[[], object]
Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Timezone-aware local time; the default scheduler clock."""
    return datetime.now().astimezone()


@dataclass
class Task:
    key: str
    schedule: ScheduleExpression
    job: Job
    next_fire_at: datetime
    token: int


class TaskRegistry:
    """Keyed task table shared by the control loop and management callers.

    Every operation holds the same lock. Mutations bump ``version`` and
    notify waiters so the control loop can re-plan its sleep.
    """

    def __init__(self, clock: Clock = local_now) -> None:
        self._clock = clock
        self._changed = threading.Condition(threading.Lock())
        self._tasks: dict[str, Task] = {}
        self._running: dict[str, int] = {}  # key -> token of the in-flight task
        self._tokens = itertools.count(1)
        self._version = 0

    # -- Mutations --

    def add(self, key: str, spec: str, job: Job, now: datetime | None = None) -> Task:
        """Register ``job`` under ``key``, replacing any existing task.

        The replaced task's pending firing is dropped. Raises
        InvalidScheduleError before touching the table if ``spec`` is bad.
        """
        schedule = parse(spec)
        start = now or self._clock()
        next_fire_at = schedule.next(start)
        with self._changed:
            task = Task(
                key=key,
                schedule=schedule,
                job=job,
                next_fire_at=next_fire_at,
                token=next(self._tokens),
            )
            replaced = key in self._tasks
            self._tasks[key] = task
            self._bump()
        log.info(
            f"{'Replaced' if replaced else 'Added'} task {key} "
            f"schedule={schedule} next={next_fire_at.isoformat()}"
        )
        return task

    def remove(self, key: str) -> bool:
        """Remove ``key``. Absent keys are not an error; returns True if removed."""
        with self._changed:
            removed = self._tasks.pop(key, None) is not None
            if removed:
                self._bump()
        if removed:
            log.info(f"Removed task {key}")
        return removed

    def claim_due(self, now: datetime) -> tuple[list[Task], list[str]]:
        """Mark every due, idle task as running and return it.

        Due tasks whose key is still running are skipped and their key is
        returned in the second list. Either way the task's next fire time
        moves past ``now`` so the same slot is never considered twice.
        """
        claimed: list[Task] = []
        skipped: list[str] = []
        with self._changed:
            for task in self._tasks.values():
                if task.next_fire_at > now:
                    continue
                task.next_fire_at = task.schedule.next(now)
                if task.key in self._running:
                    skipped.append(task.key)
                    continue
                self._running[task.key] = task.token
                claimed.append(task)
            if claimed or skipped:
                self._bump()
        return claimed, skipped

    def release(self, key: str, token: int, now: datetime | None = None) -> None:
        """Return ``key`` to idle after the firing identified by ``token`` ends.

        The next fire time of the still-registered task is recomputed from
        ``now``, so a slow run does not leave a backlog of due slots.
        """
        with self._changed:
            if self._running.get(key) == token:
                del self._running[key]
            task = self._tasks.get(key)
            if task is not None and task.token == token:
                task.next_fire_at = task.schedule.next(now or self._clock())
            self._bump()

    def hold(self, key: str) -> int | None:
        """Mark ``key`` running on behalf of a caller outside the control loop.

        Returns the token to pass to ``release``, or None if ``key`` is
        already running. Scheduled firings of ``key`` are skipped while the
        hold lasts.
        """
        with self._changed:
            if key in self._running:
                return None
            token = next(self._tokens)
            self._running[key] = token
            self._bump()
            return token

    def begin(self, key: str, token: int) -> bool:
        """True if the claimed firing ``token`` may start its job.

        False once the task was removed or replaced after it was claimed.
        """
        with self._changed:
            task = self._tasks.get(key)
            return task is not None and task.token == token and self._running.get(key) == token

    def notify(self) -> None:
        """Wake any waiter without changing the table."""
        with self._changed:
            self._bump()

    def _bump(self) -> None:
        self._version += 1
        self._changed.notify_all()

    # -- Reads --

    @property
    def version(self) -> int:
        with self._changed:
            return self._version

    def wait_for_change(self, version: int, timeout: float | None) -> bool:
        """Block until the registry moves past ``version`` or ``timeout`` expires.

        Returns True if a change was observed.
        """
        with self._changed:
            return self._changed.wait_for(lambda: self._version != version, timeout)

    def snapshot(self) -> list[tuple[str, datetime]]:
        """(key, next_fire_at) for every task, earliest first."""
        with self._changed:
            entries = [(t.key, t.next_fire_at) for t in self._tasks.values()]
        return sorted(entries, key=lambda e: e[1])

    def keys(self) -> list[str]:
        with self._changed:
            return list(self._tasks)

    def is_running(self, key: str) -> bool:
        with self._changed:
            return key in self._running

    def state(self, key: str, now: datetime | None = None) -> TaskState:
        with self._changed:
            task = self._tasks.get(key)
            if task is None:
                return TaskState.EVICTED
            if key in self._running and self._running[key] == task.token:
                return TaskState.RUNNING
            if task.next_fire_at <= (now or self._clock()):
                return TaskState.DUE
            return TaskState.IDLE

    def __contains__(self, key: str) -> bool:
        with self._changed:
            return key in self._tasks

    def __len__(self) -> int:
        with self._changed:
            return len(self._tasks)


class Scheduler:
    """Fires registered tasks on their cron schedules.

    ``start()`` runs the control loop on a daemon thread. ``stop()`` ends the
    loop but leaves in-flight jobs alone; use ``wait_for_idle()`` to wait
    for them.
    """

    def __init__(
        self,
        registry: TaskRegistry | None = None,
        max_workers: int = 8,
        clock: Clock = local_now,
        max_idle_wait: float = 60.0,
    ) -> None:
        self.registry = registry or TaskRegistry(clock=clock)
        self.max_workers = max_workers
        self.max_idle_wait = max_idle_wait
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._futures: dict[Future, str] = {}
        self._futures_lock = threading.Lock()
        self._skipped: Counter[str] = Counter()

    # -- Registration --

    def add_task(self, key: str, spec: str, job: Job) -> Task:
        return self.registry.add(key, spec, job, now=self._clock())

    def remove_task(self, key: str) -> bool:
        return self.registry.remove(key)

    # -- Lifecycle --

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            log.debug("start() called while already running")
            return
        self._stop.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="gitwatcher-job",
        )
        self._thread = threading.Thread(
            target=self._loop,
            name="gitwatcher-scheduler",
            daemon=True,
        )
        self._thread.start()
        log.info(f"Scheduler started with {len(self.registry)} tasks")

    def stop(self, timeout: float | None = None) -> None:
        """Stop firing new jobs and wait for the loop thread to exit.

        Firings still queued for a worker are cancelled and their keys
        released. In-flight jobs keep running to completion.
        """
        self._stop.set()
        self.registry.notify()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        log.info("Scheduler stopped")

    def wait_for_idle(self, timeout: float | None = None) -> bool:
        """Wait until no job is in flight. Returns False on timeout."""
        with self._futures_lock:
            pending = list(self._futures)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # -- Observability --

    def skipped_firings(self, key: str) -> int:
        """Number of firings dropped because ``key`` was still running."""
        return self._skipped[key]

    def is_running(self, key: str) -> bool:
        return self.registry.is_running(key)

    def jobs(self) -> list[tuple[str, datetime, TaskState]]:
        now = self._clock()
        return [
            (key, next_fire_at, self.registry.state(key, now))
            for key, next_fire_at in self.registry.snapshot()
        ]

    # -- Control loop --

    def _loop(self) -> None:
        log.debug("Control loop running")
        while not self._stop.is_set():
            version = self.registry.version
            try:
                self.run_pending(self._clock())
            except Exception:
                log.exception("Scheduler iteration failed")
            if self._stop.is_set():
                break
            self.registry.wait_for_change(version, self._sleep_seconds())
        log.debug("Control loop exited")

    def _sleep_seconds(self) -> float:
        entries = self.registry.snapshot()
        if not entries:
            return self.max_idle_wait
        delta = (entries[0][1] - self._clock()).total_seconds()
        return min(max(delta, 0.0), self.max_idle_wait)

    def run_pending(self, now: datetime) -> list[str]:
        """Fire every task due at ``now``. Returns the keys that were fired."""
        claimed, skipped = self.registry.claim_due(now)
        for key in skipped:
            self._skipped[key] += 1
            log.warning(
                f"Skipping firing for {key}: previous run still in progress "
                f"(skipped {self._skipped[key]} so far)"
            )
        for task in claimed:
            self._submit(task)
        return [task.key for task in claimed]

    def _submit(self, task: Task) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="gitwatcher-job",
            )
        log.debug(f"Firing {task.key}")
        future = self._executor.submit(self._run_job, task)
        with self._futures_lock:
            self._futures[future] = task.key
        future.add_done_callback(functools.partial(self._forget, task))

    def _forget(self, task: Task, future: Future) -> None:
        with self._futures_lock:
            self._futures.pop(future, None)
        if future.cancelled():
            log.debug(f"Firing for {task.key} cancelled before it started")
            self.registry.release(task.key, task.token, self._clock())

    def _run_job(self, task: Task) -> None:
        try:
            if not self.registry.begin(task.key, task.token):
                log.debug(f"Task {task.key} was removed or replaced before it started")
                return
            task.job()
        except Exception:
            log.exception(f"Job for {task.key} raised")
        finally:
            self.registry.release(task.key, task.token, self._clock())
