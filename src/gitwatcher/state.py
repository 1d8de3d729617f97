"""Application state -- watched repositories and service settings.

One lock-guarded object owned by the service and shared with the CLI. It is
persisted as JSON (camelCase keys, compatible with earlier gitwatcher config
files); per-run status fields are runtime only.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

from loguru import logger

from .errors import StateError
from .models import RepoStatus, RunOutcome, RunResult, ServiceSettings

log = logger.bind(stage="state")

# ServiceSettings field -> key in the state file
_SETTINGS_KEYS = {
    "ai_service": "aiService",
    "ollama_server": "ollamaServer",
    "ollama_model": "ollamaModel",
    "gemini_api_key": "geminiAPIKey",
    "gemini_model": "geminiModel",
    "github_token": "githubToken",
}


@dataclass
class RepositoryRecord:
    path: str
    schedule: str
    last_sync: datetime | None = None
    last_outcome: RunOutcome | None = None
    last_error: str = ""
    status: RepoStatus | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "path": self.path,
            "schedule": self.schedule,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "lastOutcome": self.last_outcome.value if self.last_outcome else None,
            "lastError": self.last_error,
        }
        if self.status is not None:
            data["status"] = self.status.to_dict()
        return data


def _settings_from_file(data: dict) -> ServiceSettings:
    values = {
        field: data[key]
        for field, key in _SETTINGS_KEYS.items()
        if data.get(key) not in (None, "")
    }
    return ServiceSettings.from_dict(values)


def _settings_to_file(settings: ServiceSettings) -> dict:
    values = settings.to_dict()
    return {key: values[field] for field, key in _SETTINGS_KEYS.items()}


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        log.warning(f"Ignoring unparseable lastSync value {value!r}")
        return None


class AppState:
    """Repositories and settings behind one re-entrant lock."""

    def __init__(self, state_file: Path, settings: ServiceSettings | None = None) -> None:
        self.state_file = state_file
        self._lock = threading.RLock()
        self._settings = settings or ServiceSettings()
        self._repositories: dict[str, RepositoryRecord] = {}
        self._signature: tuple[int, int, int] | None = None

    # -- Persistence --

    @classmethod
    def load(cls, state_file: Path) -> AppState:
        """Read the state file, creating it with defaults if missing."""
        state = cls(state_file)
        if not state_file.exists():
            log.info(f"No state file at {state_file}, creating defaults")
            state.save()
            return state

        state._read()
        log.debug(f"Loaded {len(state._repositories)} repositories from {state_file}")
        return state

    def refresh(self) -> bool:
        """Re-read the state file if another process rewrote it.

        Runtime fields (last outcome, status) survive for repositories that
        are still listed. Returns True if the file was re-read.
        """
        with self._lock:
            signature = self._file_signature()
            if signature is None or signature == self._signature:
                return False
            self._read()
            log.info(f"Reloaded {self.state_file}: {len(self._repositories)} repositories")
            return True

    def _file_signature(self) -> tuple[int, int, int] | None:
        try:
            st = self.state_file.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _read(self) -> None:
        signature = self._file_signature()
        try:
            data = json.loads(self.state_file.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            raise StateError(f"Failed to read state file {self.state_file}: {exc}") from exc

        repositories: dict[str, RepositoryRecord] = {}
        for key, repo in (data.get("repositories") or {}).items():
            path = repo.get("path") or key
            record = RepositoryRecord(
                path=path,
                schedule=repo.get("schedule", ""),
                last_sync=_parse_time(repo.get("lastSync")),
            )
            previous = self._repositories.get(path)
            if previous is not None:
                record.last_outcome = previous.last_outcome
                record.last_error = previous.last_error
                record.status = previous.status
            repositories[path] = record

        self._settings = _settings_from_file(data.get("settings") or {})
        self._repositories = repositories
        self._signature = signature

    def save(self) -> None:
        with self._lock:
            data = {
                "repositories": {
                    path: {
                        "path": rec.path,
                        "schedule": rec.schedule,
                        "lastSync": rec.last_sync.isoformat() if rec.last_sync else None,
                    }
                    for path, rec in self._repositories.items()
                },
                "settings": _settings_to_file(self._settings),
            }
            self._atomic_write(data)

    def _atomic_write(self, data: dict) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.state_file.parent), suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.state_file)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_err:
                log.warning(f"Failed to cleanup temp file {tmp_path}: {cleanup_err}")
            raise
        self._signature = self._file_signature()

    # -- Settings --

    @property
    def settings(self) -> ServiceSettings:
        """Immutable snapshot of the current settings."""
        with self._lock:
            return self._settings

    def update_settings(self, **changes) -> ServiceSettings:
        with self._lock:
            self.refresh()
            self._settings = self._settings.with_changes(**changes)
            self.save()
            return self._settings

    # -- Repositories --

    def add_repository(self, path: str, schedule: str) -> RepositoryRecord:
        with self._lock:
            self.refresh()
            record = self._repositories.get(path)
            if record is None:
                record = RepositoryRecord(path=path, schedule=schedule)
            else:
                record = replace(record, schedule=schedule)
            self._repositories[path] = record
            self.save()
            return replace(record)

    def remove_repository(self, path: str) -> bool:
        with self._lock:
            self.refresh()
            removed = self._repositories.pop(path, None) is not None
            if removed:
                self.save()
            return removed

    def get(self, path: str) -> RepositoryRecord | None:
        """Copy of the record for ``path``, or None."""
        with self._lock:
            record = self._repositories.get(path)
            return replace(record) if record else None

    def repositories(self) -> list[RepositoryRecord]:
        with self._lock:
            return [replace(r) for r in self._repositories.values()]

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._repositories

    def record_status(self, path: str, status: RepoStatus, when: datetime | None = None) -> None:
        with self._lock:
            record = self._repositories.get(path)
            if record is None:
                return
            record.status = status
            record.last_sync = when or datetime.now().astimezone()

    def record_result(self, result: RunResult) -> None:
        """Store the outcome of a run; successful runs also bump last_sync."""
        with self._lock:
            self.refresh()
            record = self._repositories.get(result.repo_path)
            if record is None:
                return
            record.last_outcome = result.outcome
            record.last_error = str(result.error) if result.error else ""
            if result.status is not None:
                record.status = result.status
            if result.ok:
                record.last_sync = result.finished_at
                self.save()
