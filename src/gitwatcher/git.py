"""git subprocess wrappers -- status, commit, push, fetch and branch history.

Every call runs the ``git`` CLI in the repository directory with a timeout,
so a hung remote can never pin a scheduler worker forever.
"""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path

from loguru import logger

from .ancestry import find_merge_base
from .errors import (
    AuthError,
    CommitError,
    ConfigurationError,
    GitCommandError,
    PushError,
    StatusError,
)
from .models import BranchChanges, RepoStatus

log = logger.bind(stage="git")

DEFAULT_TIMEOUT = 120.0

# stderr fragments that mean the transport refused our credentials
_AUTH_FAILURES = (
    "permission denied",
    "authentication failed",
    "could not read username",
    "could not read password",
    "host key verification failed",
    "invalid username or password",
    "access denied",
)

_SCP_URL_RE = re.compile(r"^[\w.-]+@(?P<host>[^:/]+):(?P<path>.+)$")
_URL_RE = re.compile(r"^(?:ssh|git|https?)://(?:[^@/]+@)?(?P<host>[^/]+)/(?P<path>.+)$")


def _run_git(
    path: str | Path,
    args: list[str],
    timeout: float | None = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run git in ``path``. Raises GitCommandError on failure when ``check``."""
    command = args[0] if args else ""
    full_env = None
    if env:
        full_env = {**os.environ, **env}
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(path),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=full_env,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitCommandError(command, -1, f"timed out after {exc.timeout}s") from exc
    except FileNotFoundError as exc:
        raise GitCommandError(command, 127, str(exc)) from exc
    if check and result.returncode != 0:
        raise GitCommandError(command, result.returncode, result.stderr.strip())
    return result


def is_repository(path: str | Path) -> bool:
    """True if ``path`` is inside a git working tree."""
    if not Path(path).is_dir():
        return False
    try:
        result = _run_git(path, ["rev-parse", "--is-inside-work-tree"], check=False)
    except GitCommandError:
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def current_branch(path: str | Path, timeout: float | None = DEFAULT_TIMEOUT) -> str:
    """Short name of the checked-out branch, or "HEAD" when detached."""
    result = _run_git(path, ["symbolic-ref", "--short", "-q", "HEAD"], timeout, check=False)
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    return "HEAD"


def _parse_porcelain(output: str) -> list[str]:
    """Paths from ``git status --porcelain=v1 -z`` output, in git's order."""
    files: list[str] = []
    entries = output.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        code, file_path = entry[:2], entry[3:]
        files.append(file_path)
        # Renames and copies carry the source path as the next entry
        if "R" in code or "C" in code:
            i += 1
    return files


def get_status(path: str | Path, timeout: float | None = DEFAULT_TIMEOUT) -> RepoStatus:
    """Fresh working tree snapshot. Raises StatusError if git fails."""
    try:
        result = _run_git(
            path,
            ["status", "--porcelain=v1", "-z", "--untracked-files=all"],
            timeout,
        )
        branch = current_branch(path, timeout)
    except GitCommandError as exc:
        raise StatusError(f"cannot read status of {path}: {exc}") from exc

    files = _parse_porcelain(result.stdout)
    log.debug(f"Status {path}: branch={branch} changed={len(files)}")
    return RepoStatus(
        has_changes=bool(files),
        changed_files=files,
        current_branch=branch,
    )


def stage_all(path: str | Path, timeout: float | None = DEFAULT_TIMEOUT) -> None:
    """Stage every working tree change, including deletions and new files."""
    try:
        _run_git(path, ["add", "--all"], timeout)
    except GitCommandError as exc:
        raise CommitError(f"cannot stage changes in {path}: {exc}") from exc


def commit(
    path: str | Path,
    message: str,
    author_name: str,
    author_email: str,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> str:
    """Commit the index as the automation identity. Returns the new commit id.

    Raises CommitError if nothing is staged or the write fails.
    """
    env = {
        "GIT_AUTHOR_NAME": author_name,
        "GIT_AUTHOR_EMAIL": author_email,
        "GIT_COMMITTER_NAME": author_name,
        "GIT_COMMITTER_EMAIL": author_email,
    }
    try:
        _run_git(path, ["commit", "--no-verify", "-m", message], timeout, env=env)
        sha = _run_git(path, ["rev-parse", "HEAD"], timeout).stdout.strip()
    except GitCommandError as exc:
        raise CommitError(f"commit failed in {path}: {exc}") from exc
    log.info(f"Committed {sha[:12]} in {path}")
    return sha


def get_remote_url(
    path: str | Path,
    remote: str = "origin",
    timeout: float | None = DEFAULT_TIMEOUT,
) -> str:
    try:
        return _run_git(path, ["remote", "get-url", remote], timeout).stdout.strip()
    except GitCommandError as exc:
        raise ConfigurationError(f"remote {remote!r} not configured for {path}") from exc


def is_ssh_url(url: str) -> bool:
    return bool(_SCP_URL_RE.match(url)) or url.startswith("ssh://")


def parse_remote_url(url: str) -> tuple[str, str]:
    """Extract (owner, repo) from an SSH or HTTPS remote URL.

    Accepts ``git@host:owner/repo.git``, ``ssh://git@host/owner/repo`` and
    ``https://host/owner/repo.git``.
    """
    url = url.strip()
    match = _SCP_URL_RE.match(url) or _URL_RE.match(url)
    if not match:
        raise ConfigurationError(f"unrecognized remote URL: {url!r}")
    repo_path = match.group("path").strip("/")
    if repo_path.endswith(".git"):
        repo_path = repo_path[:-4]
    parts = [p for p in repo_path.split("/") if p]
    if len(parts) < 2:
        raise ConfigurationError(f"remote URL has no owner/repo: {url!r}")
    return parts[-2], parts[-1]


def _ssh_env(ssh_key: Path | None) -> dict[str, str]:
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if ssh_key is not None:
        env["GIT_SSH_COMMAND"] = (
            f'ssh -i "{ssh_key}" -o IdentitiesOnly=yes -o BatchMode=yes'
        )
    return env


def _transport_key(path: str | Path, remote: str, ssh_key: Path | None, timeout) -> Path | None:
    """The SSH key to use for ``remote``, or None for non-SSH remotes."""
    url = get_remote_url(path, remote, timeout)
    if not is_ssh_url(url):
        return None
    if ssh_key is None or not ssh_key.is_file():
        raise AuthError(f"SSH key not found: {ssh_key}")
    return ssh_key


def push(
    path: str | Path,
    remote: str = "origin",
    ssh_key: Path | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> str:
    """Push the current branch to ``remote`` under the same name.

    Returns the branch name. Raises AuthError when credentials are missing
    or refused, PushError when the remote rejects the update.
    """
    try:
        key = _transport_key(path, remote, ssh_key, timeout)
    except ConfigurationError as exc:
        raise PushError(str(exc)) from exc

    branch = current_branch(path, timeout)
    if branch == "HEAD":
        raise PushError(f"cannot push detached HEAD in {path}")

    refspec = f"refs/heads/{branch}:refs/heads/{branch}"
    log.info(f"Pushing {refspec} to {remote}")
    try:
        _run_git(path, ["push", remote, refspec], timeout, env=_ssh_env(key))
    except GitCommandError as exc:
        stderr = exc.stderr.lower()
        if any(fragment in stderr for fragment in _AUTH_FAILURES):
            raise AuthError(f"push to {remote} was not authorized: {exc.stderr}") from exc
        raise PushError(f"push to {remote} rejected: {exc.stderr}") from exc
    return branch


def fetch(
    path: str | Path,
    remote: str = "origin",
    ssh_key: Path | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> bool:
    """Best-effort fetch. Returns False (and logs) instead of raising.

    An up-to-date remote is a success.
    """
    try:
        key = _transport_key(path, remote, ssh_key, timeout)
        _run_git(path, ["fetch", remote], timeout, env=_ssh_env(key))
    except (GitCommandError, AuthError, ConfigurationError) as exc:
        log.warning(f"Fetch failed for {path}: {exc}")
        return False
    return True


def resolve_branch(
    path: str | Path,
    branch: str,
    remote: str = "origin",
    timeout: float | None = DEFAULT_TIMEOUT,
) -> str:
    """Commit id of ``branch``, falling back to its remote-tracking ref."""
    for ref in (f"refs/heads/{branch}", f"refs/remotes/{remote}/{branch}"):
        result = _run_git(
            path,
            ["rev-parse", "--verify", "-q", f"{ref}^{{commit}}"],
            timeout,
            check=False,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    raise ConfigurationError(f"branch {branch!r} not found in {path}")


def commit_graph(
    path: str | Path,
    revs: list[str],
    timeout: float | None = DEFAULT_TIMEOUT,
) -> dict[str, list[str]]:
    """Parent mapping for every commit reachable from ``revs``."""
    output = _run_git(path, ["rev-list", "--parents", *revs], timeout).stdout
    graph: dict[str, list[str]] = {}
    for line in output.splitlines():
        ids = line.split()
        if ids:
            graph[ids[0]] = ids[1:]
    return graph


def get_branch_changes(
    path: str | Path,
    base_branch: str = "main",
    remote: str = "origin",
    timeout: float | None = DEFAULT_TIMEOUT,
) -> BranchChanges:
    """Commit subjects and files on HEAD since it diverged from ``base_branch``.

    Raises NoCommonAncestorError when the branches share no history and
    ConfigurationError when ``base_branch`` does not exist.
    """
    head = _run_git(path, ["rev-parse", "HEAD"], timeout).stdout.strip()
    base = resolve_branch(path, base_branch, remote, timeout)
    graph = commit_graph(path, [head, base], timeout)
    merge_base = find_merge_base(head, base, graph)

    if merge_base == head:
        return BranchChanges(files=[], commits=[], merge_base=merge_base)

    log_out = _run_git(
        path, ["log", "--format=%s", f"{merge_base}..{head}"], timeout
    ).stdout
    diff_out = _run_git(
        path, ["diff", "--name-only", merge_base, head], timeout
    ).stdout
    return BranchChanges(
        files=[f for f in diff_out.splitlines() if f],
        commits=[c for c in log_out.splitlines() if c],
        merge_base=merge_base,
    )
