"""Review stage -- open a draft pull request for the current branch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..ai import generate_review_description, generate_review_title, get_generator
from ..api.github import create_draft_review
from ..errors import ConfigurationError
from ..git import current_branch, get_branch_changes, get_remote_url, parse_remote_url

if TYPE_CHECKING:
    from ..config import WatcherConfig
    from ..models import PipelineRun

log = logger.bind(stage="review")


def run(pipeline_run: PipelineRun, config: WatcherConfig, **kwargs) -> None:
    """Create a draft PR from the current branch into the integration branch.

    The token is checked before any generation call so a misconfigured
    service fails fast.
    """
    path = pipeline_run.repo_path
    settings = pipeline_run.settings
    if not settings.github_token:
        raise ConfigurationError("GitHub token not provided in settings")

    owner, repo = parse_remote_url(
        get_remote_url(path, config.remote_name, timeout=config.network_timeout)
    )
    head = current_branch(path, timeout=config.network_timeout)
    base = config.integration_branch
    if head == base:
        raise ConfigurationError(f"cannot open a pull request from {base} into itself")

    changes = get_branch_changes(
        path,
        base,
        config.remote_name,
        timeout=config.network_timeout,
    )
    log.info(
        f"Starting PR generation for {owner}/{repo}: {len(changes.commits)} commits, "
        f"{len(changes.files)} files since {changes.merge_base[:12]}"
    )

    generator = get_generator(
        settings,
        timeout=config.network_timeout,
        gemini_api_url=config.gemini_api_url,
    )
    title = generate_review_title(generator, changes)
    body = generate_review_description(generator, changes)
    log.debug(f"PR title: {title}")

    pipeline_run.review = create_draft_review(
        owner,
        repo,
        title=title,
        head=head,
        base=base,
        body=body,
        token=settings.github_token,
        api_url=config.github_api_url,
        timeout=config.network_timeout,
    )
