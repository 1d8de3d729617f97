"""Commit stage -- stage everything and commit with a generated message."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..ai import generate_commit_message, get_generator
from ..errors import GitWatcherError
from ..git import commit, get_branch_changes, get_status, stage_all

if TYPE_CHECKING:
    from ..config import WatcherConfig
    from ..models import PipelineRun

log = logger.bind(stage="commit")


def _branch_context(path: str, config: WatcherConfig) -> list[str]:
    """Commit subjects since the integration branch, or [] if unavailable.

    Only prompt context; a missing integration branch or disjoint history
    must not block the commit.
    """
    try:
        changes = get_branch_changes(
            path,
            config.integration_branch,
            config.remote_name,
            timeout=config.network_timeout,
        )
    except GitWatcherError as e:
        log.debug(f"No branch context for {path}: {e}")
        return []
    return changes.commits


def run(pipeline_run: PipelineRun, config: WatcherConfig, **kwargs) -> None:
    """Commit all pending changes in ``pipeline_run.repo_path``.

    Uses the status captured by the inspect stage when present. A clean
    tree is left untouched.
    """
    path = pipeline_run.repo_path
    status = pipeline_run.status
    if status is None:
        status = get_status(path, timeout=config.network_timeout)
        pipeline_run.status = status
    if status.is_clean:
        log.info(f"Nothing to commit in {path}")
        return

    stage_all(path, timeout=config.network_timeout)

    generator = get_generator(
        pipeline_run.settings,
        timeout=config.network_timeout,
        gemini_api_url=config.gemini_api_url,
    )
    message = generate_commit_message(
        generator,
        status.changed_files,
        _branch_context(path, config),
    )
    log.info(f"Commit message: {message}")

    commit(
        path,
        message,
        config.author_name,
        config.author_email,
        timeout=config.network_timeout,
    )
    pipeline_run.commit_message = message
