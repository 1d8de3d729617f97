"""GitHub REST client for draft pull requests."""

import httpx
from loguru import logger

from ..errors import ConfigurationError, ReviewPlatformError
from ..models import ReviewRequest

log = logger.bind(stage="github")

GITHUB_API_URL = "https://api.github.com"


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def create_draft_review(
    owner: str,
    repo: str,
    title: str,
    head: str,
    base: str,
    body: str,
    token: str,
    api_url: str = GITHUB_API_URL,
    timeout: float = 30.0,
) -> ReviewRequest:
    """Open a draft pull request merging ``head`` into ``base``.

    Raises ConfigurationError without a token and ReviewPlatformError on
    transport errors or any non-2xx answer.
    """
    if not token:
        raise ConfigurationError("GitHub token not provided in settings")

    url = f"{api_url.rstrip('/')}/repos/{owner}/{repo}/pulls"
    payload = {
        "title": title,
        "head": head,
        "base": base,
        "body": body,
        "draft": True,
        "maintainer_can_modify": True,
    }

    log.debug(f"Creating draft PR {owner}/{repo}: {head} -> {base}")
    try:
        resp = httpx.post(url, json=payload, headers=_headers(token), timeout=timeout)
    except httpx.HTTPError as e:
        raise ReviewPlatformError(f"GitHub request failed: {e}") from e

    if not resp.is_success:
        raise ReviewPlatformError(
            f"error creating PR ({resp.status_code}): {resp.text}",
            status_code=resp.status_code,
        )

    data = resp.json()
    number = int(data.get("number", 0))
    html_url = data.get("html_url") or f"https://github.com/{owner}/{repo}/pull/{number}"
    log.info(f"PR created successfully: {html_url}")
    return ReviewRequest(number=number, url=html_url)
