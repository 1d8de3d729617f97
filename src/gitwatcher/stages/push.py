"""Push stage -- publish the current branch under the same name."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..git import push

if TYPE_CHECKING:
    from ..config import WatcherConfig
    from ..models import PipelineRun

log = logger.bind(stage="push")


def run(pipeline_run: PipelineRun, config: WatcherConfig, **kwargs) -> None:
    branch = push(
        pipeline_run.repo_path,
        remote=config.remote_name,
        ssh_key=config.resolved_ssh_key,
        timeout=config.network_timeout,
    )
    log.info(f"Pushed {branch} to {config.remote_name}")
