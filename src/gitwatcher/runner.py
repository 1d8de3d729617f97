"""Sync pipeline runner -- drives one repository through the stages."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from .config import WatcherConfig
from .errors import GitWatcherError
from .models import (
    STAGE_ORDER,
    PipelineRun,
    RunOutcome,
    RunResult,
    ServiceSettings,
    Stage,
)
from .stages import get_stage_runner

log = logger.bind(stage="runner")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncPipeline:
    """Runs inspect -> commit -> push -> review for a repository.

    Holds no per-run state: every call builds a fresh PipelineRun, so the
    next scheduled firing naturally retries whatever failed last time.
    """

    def __init__(self, config: WatcherConfig) -> None:
        self.config = config

    def run(self, repo_path: str | Path, settings: ServiceSettings) -> RunResult:
        """Full pipeline. A clean working tree ends the run as a no-op."""
        return self.run_stages(repo_path, settings, STAGE_ORDER)

    def run_stages(
        self,
        repo_path: str | Path,
        settings: ServiceSettings,
        stages: list[Stage],
    ) -> RunResult:
        """Run ``stages`` in order, stopping at the first failure.

        ``settings`` is copied up front; later updates by other threads do
        not reach this run.
        """
        pipeline_run = PipelineRun(repo_path=str(repo_path), settings=replace(settings))
        started_at = _now()
        log.debug(f"Stages for {repo_path}: {' -> '.join(s.value for s in stages)}")

        for stage in stages:
            stage_runner = get_stage_runner(stage)
            try:
                stage_runner(pipeline_run=pipeline_run, config=self.config)
            except GitWatcherError as e:
                log.error(f"Stage '{stage.value}' failed for {repo_path}: {e}")
                return self._result(pipeline_run, RunOutcome.FAILED, started_at, stage, e)
            except Exception as e:
                log.exception(f"Stage '{stage.value}' crashed for {repo_path}")
                return self._result(pipeline_run, RunOutcome.FAILED, started_at, stage, e)

            pipeline_run.completed.append(stage)

            status = pipeline_run.status
            if stage in (Stage.INSPECT, Stage.COMMIT) and status is not None and status.is_clean:
                log.debug(f"No changes in {repo_path}, nothing to do")
                return self._result(pipeline_run, RunOutcome.NOOP, started_at)

        return self._result(pipeline_run, RunOutcome.SUCCESS, started_at)

    @staticmethod
    def _result(
        pipeline_run: PipelineRun,
        outcome: RunOutcome,
        started_at: datetime,
        failed_stage: Stage | None = None,
        error: Exception | None = None,
    ) -> RunResult:
        return RunResult(
            repo_path=pipeline_run.repo_path,
            outcome=outcome,
            started_at=started_at,
            finished_at=_now(),
            stages=list(pipeline_run.completed),
            failed_stage=failed_stage,
            error=error,
            status=pipeline_run.status,
            commit_message=pipeline_run.commit_message,
            review=pipeline_run.review,
        )
