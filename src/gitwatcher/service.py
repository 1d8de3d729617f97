"""Watcher service -- wires application state, scheduler and pipeline.

The scheduler only knows keys and zero-argument jobs. This module binds each
watched repository path to a job that snapshots the current settings, runs
the sync pipeline and records the outcome back into the application state.
"""

from __future__ import annotations

import functools
import threading
from pathlib import Path

from loguru import logger

from . import git
from .config import WatcherConfig
from .errors import InvalidScheduleError, StateError
from .models import STAGE_ORDER, RepoStatus, RunOutcome, RunResult, ServiceSettings, Stage
from .runner import SyncPipeline
from .schedule import parse
from .scheduler import Scheduler
from .state import AppState, RepositoryRecord

log = logger.bind(stage="service")


def normalize_path(path: str | Path) -> str:
    """Absolute, user-expanded path used as the task key."""
    return str(Path(path).expanduser().resolve())


class WatcherService:
    """Owns the scheduler and exposes the management operations."""

    def __init__(
        self,
        config: WatcherConfig,
        state: AppState | None = None,
        scheduler: Scheduler | None = None,
        pipeline: SyncPipeline | None = None,
    ) -> None:
        self.config = config
        self.state = state if state is not None else AppState.load(config.state_file)
        self.scheduler = scheduler or Scheduler(
            max_workers=config.max_workers,
            max_idle_wait=config.max_idle_wait,
        )
        self.pipeline = pipeline or SyncPipeline(config)
        self._schedules: dict[str, str] = {}  # key -> schedule currently registered
        self._schedules_lock = threading.Lock()

    # -- Registration --

    def _job(self, path: str):
        return functools.partial(self.run_scheduled, path)

    def register_repository(self, path: str | Path, schedule: str | None = None) -> RepositoryRecord:
        """Watch ``path`` on ``schedule``, replacing any previous schedule.

        Raises StateError for paths that are not git working trees and
        InvalidScheduleError for bad schedules; nothing is persisted then.
        """
        key = normalize_path(path)
        if not git.is_repository(key):
            raise StateError(f"Invalid git repository path: {key}")
        schedule = schedule or self.config.default_schedule
        parse(schedule)

        with self._schedules_lock:
            self.scheduler.add_task(key, schedule, self._job(key))
            self._schedules[key] = schedule
        record = self.state.add_repository(key, schedule)
        log.info(f"Watching {key} on '{schedule}'")
        return record

    def unregister_repository(self, path: str | Path) -> bool:
        key = normalize_path(path)
        with self._schedules_lock:
            self.scheduler.remove_task(key)
            self._schedules.pop(key, None)
        removed = self.state.remove_repository(key)
        if removed:
            log.info(f"Stopped watching {key}")
        return removed

    def load_schedules(self) -> int:
        """Register every persisted repository. Returns how many were scheduled."""
        self.reconcile()
        return len(self.scheduler.registry)

    def reconcile(self) -> bool:
        """Bring the scheduler in line with the state file.

        Picks up repositories added, removed or rescheduled by another
        process (the CLI writes the state file while ``serve`` runs).
        Returns True if any task was added, replaced or removed.
        """
        try:
            self.state.refresh()
        except StateError as e:
            log.error(f"Keeping current schedules: {e}")
            return False

        wanted = {record.path: record.schedule for record in self.state.repositories()}
        changed = False
        with self._schedules_lock:
            for key in set(self._schedules) | set(self.scheduler.registry.keys()):
                if key not in wanted:
                    self.scheduler.remove_task(key)
                    self._schedules.pop(key, None)
                    log.info(f"Stopped watching {key}")
                    changed = True
            for path, schedule in wanted.items():
                if self._schedules.get(path) == schedule:
                    continue
                # Recorded even when invalid so a bad entry is reported once
                self._schedules[path] = schedule
                try:
                    self.scheduler.add_task(path, schedule, self._job(path))
                    changed = True
                except InvalidScheduleError as e:
                    self.scheduler.remove_task(path)
                    log.error(f"Error setting up schedule for {path}: {e}")
        return changed

    # -- Lifecycle --

    def start(self) -> None:
        scheduled = self.load_schedules()
        self.scheduler.start()
        log.info(f"Watching {scheduled} repositories")

    def stop(self, wait: bool = False, timeout: float | None = None) -> None:
        """Stop scheduling. With ``wait``, also wait for in-flight runs."""
        self.scheduler.stop()
        if wait and not self.scheduler.wait_for_idle(timeout):
            log.warning("Runs still in flight after stop timeout")

    # -- Runs --

    def run_scheduled(self, path: str) -> RunResult | None:
        """Scheduler job body for ``path``."""
        try:
            self.state.refresh()
        except StateError as e:
            log.error(f"Using last known state for {path}: {e}")
        if path not in self.state:
            log.warning(f"Repository not found for scheduled task: {path}")
            return None
        result = self.pipeline.run(path, self.state.settings)
        self._report(result)
        return result

    def run_now(self, path: str | Path, stages: list[Stage] | None = None) -> RunResult:
        """Run the pipeline (or selected stages) synchronously.

        Refuses to start while a run for the same path is in progress, and
        holds the path for its duration so scheduled firings are skipped.
        """
        key = normalize_path(path)
        token = self.scheduler.registry.hold(key)
        if token is None:
            raise StateError(f"A sync for {key} is already running")
        try:
            result = self.pipeline.run_stages(key, self.state.settings, stages or STAGE_ORDER)
            self._report(result)
        finally:
            self.scheduler.registry.release(key, token)
        return result

    def refresh_status(self, path: str | Path) -> RepoStatus:
        """Fetch (best effort) and return a fresh status for ``path``."""
        key = normalize_path(path)
        git.fetch(
            key,
            remote=self.config.remote_name,
            ssh_key=self.config.resolved_ssh_key,
            timeout=self.config.network_timeout,
        )
        status = git.get_status(key, timeout=self.config.network_timeout)
        self.state.record_status(key, status)
        return status

    def update_settings(self, **changes) -> ServiceSettings:
        settings = self.state.update_settings(**changes)
        log.info(f"Settings updated: {', '.join(sorted(changes))}")
        return settings

    def _report(self, result: RunResult) -> None:
        if result.outcome == RunOutcome.FAILED:
            log.error(
                f"Sync failed for {result.repo_path} at {result.failed_stage}: "
                f"{type(result.error).__name__}: {result.error}"
            )
        elif result.outcome == RunOutcome.NOOP:
            log.debug(f"Sync no-op for {result.repo_path}")
        else:
            review = f" PR #{result.review.number}" if result.review else ""
            log.info(f"Synced {result.repo_path} in {result.duration:.1f}s{review}")
        self.state.record_result(result)
