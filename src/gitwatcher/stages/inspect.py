"""Inspect stage -- fresh working tree status for the run."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..git import get_status

if TYPE_CHECKING:
    from ..config import WatcherConfig
    from ..models import PipelineRun

log = logger.bind(stage="inspect")


def run(pipeline_run: PipelineRun, config: WatcherConfig, **kwargs) -> None:
    """Populate ``pipeline_run.status``. Raises StatusError if git fails."""
    status = get_status(pipeline_run.repo_path, timeout=config.network_timeout)
    pipeline_run.status = status
    if status.is_clean:
        log.debug(f"{pipeline_run.repo_path} is clean on {status.current_branch}")
    else:
        log.info(
            f"{pipeline_run.repo_path}: {len(status.changed_files)} changed files "
            f"on {status.current_branch}"
        )
