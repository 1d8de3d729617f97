"""Core enums and value types for gitwatcher.

Enums:
    Stage         -- Sync pipeline stage (inspect, commit, push, review).
    RunOutcome    -- Result of one pipeline run (noop, success, failed).
    TaskState     -- Scheduler state of a task key (idle, due, running, evicted).
    AIServiceType -- Generation backend selector (ollama, gemini).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum


class Stage(StrEnum):
    INSPECT = "inspect"
    COMMIT = "commit"
    PUSH = "push"
    REVIEW = "review"


class RunOutcome(StrEnum):
    NOOP = "noop"
    SUCCESS = "success"
    FAILED = "failed"


class TaskState(StrEnum):
    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"
    EVICTED = "evicted"


class AIServiceType(StrEnum):
    """Generation backend.

    ollama -- local/self-hosted chat endpoint (OpenAI-compatible API)
    gemini -- hosted Google Gemini model, authenticated by API key
    """

    OLLAMA = "ollama"
    GEMINI = "gemini"


# Full publish pipeline, in execution order
STAGE_ORDER: list[Stage] = [
    Stage.INSPECT,
    Stage.COMMIT,
    Stage.PUSH,
    Stage.REVIEW,
]

DEFAULT_OLLAMA_SERVER = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama2"
DEFAULT_GEMINI_MODEL = "gemini-pro"
FALLBACK_GEMINI_MODELS = ["gemini-pro", "gemini-pro-vision"]


@dataclass(frozen=True)
class RepoStatus:
    """Point-in-time view of a working tree. Never reused across runs."""

    has_changes: bool
    changed_files: list[str]
    current_branch: str

    @property
    def is_clean(self) -> bool:
        return not self.has_changes

    def to_dict(self) -> dict:
        return {
            "hasChanges": self.has_changes,
            "changedFiles": list(self.changed_files),
            "currentBranch": self.current_branch,
            "isClean": self.is_clean,
        }


@dataclass(frozen=True)
class BranchChanges:
    """Commits and files on the current branch since the merge base."""

    files: list[str]
    commits: list[str]
    merge_base: str = ""


@dataclass(frozen=True)
class ReviewRequest:
    number: int
    url: str


@dataclass(frozen=True)
class ServiceSettings:
    """User-editable service settings.

    Frozen so a pipeline run can hold its own copy while the settings
    are being updated elsewhere.
    """

    ai_service: AIServiceType = AIServiceType.OLLAMA
    ollama_server: str = DEFAULT_OLLAMA_SERVER
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_GEMINI_MODEL
    github_token: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ServiceSettings:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "ai_service" in known:
            value = (known["ai_service"] or AIServiceType.OLLAMA.value).lower()
            known["ai_service"] = AIServiceType(value)
        return cls(**known)

    def to_dict(self) -> dict:
        return {
            "ai_service": self.ai_service.value,
            "ollama_server": self.ollama_server,
            "ollama_model": self.ollama_model,
            "gemini_api_key": self.gemini_api_key,
            "gemini_model": self.gemini_model,
            "github_token": self.github_token,
        }

    def with_changes(self, **changes) -> ServiceSettings:
        if "ai_service" in changes:
            changes["ai_service"] = AIServiceType(changes["ai_service"])
        return replace(self, **changes)


@dataclass
class PipelineRun:
    """Transient state of one firing. Discarded when the run completes."""

    repo_path: str
    settings: ServiceSettings
    status: RepoStatus | None = None
    commit_message: str = ""
    review: ReviewRequest | None = None
    completed: list[Stage] = field(default_factory=list)


@dataclass
class RunResult:
    """Typed outcome of a pipeline run, reported to the caller."""

    repo_path: str
    outcome: RunOutcome
    started_at: datetime
    finished_at: datetime
    stages: list[Stage] = field(default_factory=list)
    failed_stage: Stage | None = None
    error: Exception | None = None
    status: RepoStatus | None = None
    commit_message: str = ""
    review: ReviewRequest | None = None

    @property
    def ok(self) -> bool:
        return self.outcome != RunOutcome.FAILED

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
