"""CLI entry point for gitwatcher."""

from __future__ import annotations

import signal
import threading
from pathlib import Path

import click
from loguru import logger

from .ai import list_hosted_models
from .concurrency import acquire_global_lock
from .config import WatcherConfig
from .errors import GitWatcherError
from .models import AIServiceType, RunOutcome, RunResult, Stage
from .service import WatcherService

log = logger.bind(stage="cli")

_SECRET_FIELDS = ("gemini_api_key", "github_token")


def _find_config_file() -> Path | None:
    """Look for .env in cwd, then in the user config directory."""
    for candidate in [
        Path.cwd() / ".env",
        Path.home() / ".config" / "gitwatcher" / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _service(ctx: click.Context) -> WatcherService:
    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        try:
            obj["service"] = WatcherService(obj["config"])
        except GitWatcherError as e:
            raise click.ClickException(str(e)) from e
    return obj["service"]


def _mask(value: str) -> str:
    if not value:
        return ""
    return value[:4] + "*" * max(len(value) - 4, 4)


def _echo_result(result: RunResult) -> None:
    if result.outcome == RunOutcome.NOOP:
        click.echo(f"{result.repo_path}: nothing to commit")
        return
    if result.outcome == RunOutcome.FAILED:
        click.echo(
            f"{result.repo_path}: FAILED at {result.failed_stage}: "
            f"{type(result.error).__name__}: {result.error}",
            err=True,
        )
        return
    click.echo(f"{result.repo_path}: {' -> '.join(s.value for s in result.stages)}")
    if result.commit_message:
        click.echo(f"  Commit: {result.commit_message}")
    if result.review:
        click.echo(f"  Draft PR #{result.review.number}: {result.review.url}")


@click.group()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to .env file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool) -> None:
    """Watch git repositories and publish pending work as draft pull requests."""
    env_file = Path(config_file) if config_file else _find_config_file()
    config_kwargs: dict = {}
    if verbose:
        config_kwargs["log_level"] = "DEBUG"

    config = WatcherConfig(_env_file=env_file, **config_kwargs)  # type: ignore[call-arg]
    config.setup_logging()
    if env_file:
        log.debug(f"Loaded env from {env_file}")

    ctx.ensure_object(dict)["config"] = config


@main.command()
@click.option("--no-lock", is_flag=True, help="Skip the single-daemon lock.")
@click.pass_context
def serve(ctx: click.Context, no_lock: bool) -> None:
    """Run the scheduler in the foreground until interrupted."""
    config: WatcherConfig = ctx.obj["config"]
    try:
        lock = acquire_global_lock(config.lock_dir, skip=no_lock)
    except GitWatcherError as e:
        raise click.ClickException(str(e)) from e

    service = _service(ctx)
    stopping = threading.Event()

    def _handle_signal(signum, frame):
        log.info(f"Received signal {signum}, shutting down")
        stopping.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.start()
    click.echo(f"Watching {len(service.state.repositories())} repositories (Ctrl-C to stop)")
    try:
        while not stopping.wait(config.reload_interval):
            service.reconcile()
    finally:
        service.stop(wait=True, timeout=config.network_timeout)
        if lock is not None:
            lock.close()


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("-s", "--schedule", default=None, help="Cron schedule (5 fields).")
@click.pass_context
def add(ctx: click.Context, path: str, schedule: str | None) -> None:
    """Watch a repository."""
    service = _service(ctx)
    try:
        record = service.register_repository(path, schedule)
    except GitWatcherError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Watching {record.path} on '{record.schedule}'")


@main.command()
@click.argument("path", type=click.Path())
@click.pass_context
def remove(ctx: click.Context, path: str) -> None:
    """Stop watching a repository."""
    if _service(ctx).unregister_repository(path):
        click.echo(f"Removed {path}")
    else:
        click.echo(f"Not watched: {path}")


@main.command(name="list")
@click.pass_context
def list_repositories(ctx: click.Context) -> None:
    """List watched repositories."""
    records = _service(ctx).state.repositories()
    if not records:
        click.echo("No repositories watched")
        return
    for record in records:
        last_sync = record.last_sync.isoformat(timespec="seconds") if record.last_sync else "never"
        click.echo(f"{record.path}  [{record.schedule}]  last sync: {last_sync}")


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def status(ctx: click.Context, path: str) -> None:
    """Fetch and show the working tree status of a repository."""
    try:
        repo_status = _service(ctx).refresh_status(path)
    except GitWatcherError as e:
        raise click.ClickException(str(e)) from e
    state = "clean" if repo_status.is_clean else f"{len(repo_status.changed_files)} changed"
    click.echo(f"{path} on {repo_status.current_branch}: {state}")
    for changed in repo_status.changed_files:
        click.echo(f"  {changed}")


def _run_stages(ctx: click.Context, path: str, stages: list[Stage] | None) -> None:
    try:
        result = _service(ctx).run_now(path, stages)
    except GitWatcherError as e:
        raise click.ClickException(str(e)) from e
    _echo_result(result)
    if result.outcome == RunOutcome.FAILED:
        ctx.exit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def run(ctx: click.Context, path: str) -> None:
    """Run the full sync pipeline once: commit, push, draft PR."""
    _run_stages(ctx, path, None)


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def commit(ctx: click.Context, path: str) -> None:
    """Commit pending changes with a generated message."""
    _run_stages(ctx, path, [Stage.COMMIT])


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def push(ctx: click.Context, path: str) -> None:
    """Push the current branch."""
    _run_stages(ctx, path, [Stage.PUSH])


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def pr(ctx: click.Context, path: str) -> None:
    """Open a draft pull request for the current branch."""
    _run_stages(ctx, path, [Stage.REVIEW])


@main.group()
def settings() -> None:
    """Show or change service settings."""


@settings.command(name="show")
@click.pass_context
def settings_show(ctx: click.Context) -> None:
    current = _service(ctx).state.settings.to_dict()
    for field_name, value in current.items():
        if field_name in _SECRET_FIELDS:
            value = _mask(value)
        click.echo(f"{field_name}: {value}")


@settings.command(name="set")
@click.option(
    "--ai-service",
    type=click.Choice([t.value for t in AIServiceType]),
    default=None,
    help="Generation backend.",
)
@click.option("--ollama-server", default=None)
@click.option("--ollama-model", default=None)
@click.option("--gemini-api-key", default=None)
@click.option("--gemini-model", default=None)
@click.option("--github-token", default=None)
@click.pass_context
def settings_set(ctx: click.Context, **options) -> None:
    changes = {k: v for k, v in options.items() if v is not None}
    if not changes:
        raise click.UsageError("Nothing to change.")
    _service(ctx).update_settings(**changes)
    click.echo(f"Updated: {', '.join(sorted(changes))}")


@main.command()
@click.pass_context
def models(ctx: click.Context) -> None:
    """List Gemini models available to the configured API key."""
    service = _service(ctx)
    config: WatcherConfig = ctx.obj["config"]
    try:
        names = list_hosted_models(
            service.state.settings.gemini_api_key,
            api_url=config.gemini_api_url,
        )
    except GitWatcherError as e:
        raise click.ClickException(str(e)) from e
    for name in names:
        click.echo(name)
