"""Text generation for commit messages and pull request descriptions.

Two backends share one contract, ``generate(prompt) -> str``:

    LocalChatGenerator -- any OpenAI-compatible chat endpoint (Ollama,
                          LiteLLM, OpenAI) via the openai SDK
    HostedGenerator    -- Google Gemini REST API, authenticated by API key

Both raise GenerationError when the backend is unreachable or answers
with no content. The pipeline only ever sees the Generator protocol.
"""

from __future__ import annotations

import re
from typing import Protocol

import httpx
from loguru import logger

from .errors import ConfigurationError, GenerationError
from .models import (
    FALLBACK_GEMINI_MODELS,
    AIServiceType,
    BranchChanges,
    ServiceSettings,
)

log = logger.bind(stage="ai")

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
COMMIT_SUBJECT_LIMIT = 72

_FENCE_RE = re.compile(r"^```[\w-]*\n(.*?)\n?```$", re.DOTALL)


class Generator(Protocol):
    def generate(self, prompt: str) -> str: ...


def get_client(base_url: str, api_key: str = "", timeout: float = 120.0):
    """Return an OpenAI client for an OpenAI-compatible server, or None.

    Returns None if base_url is empty. The SDK does not add the ``/v1``
    prefix itself, so it is appended here when missing.
    """
    if not base_url:
        return None

    from openai import OpenAI

    clean_url = base_url.rstrip("/")
    if not clean_url.endswith("/v1"):
        clean_url = f"{clean_url}/v1"

    return OpenAI(
        base_url=clean_url,
        api_key=api_key or "not-needed",
        timeout=timeout,
        max_retries=0,
    )


class LocalChatGenerator:
    """Chat completion against a self-hosted endpoint (Ollama by default)."""

    def __init__(self, server: str, model: str, timeout: float = 120.0) -> None:
        if not server:
            raise ConfigurationError("Ollama server URL not configured")
        if not model:
            raise ConfigurationError("Ollama model not configured")
        self.server = server
        self.model = model
        self.client = get_client(server, timeout=timeout)

    def generate(self, prompt: str) -> str:
        from openai import OpenAIError

        log.debug(f"Chat request: model={self.model} server={self.server}")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as e:
            raise GenerationError(f"chat endpoint {self.server} failed: {e}") from e

        if not response.choices:
            raise GenerationError(f"no choices returned by {self.model}")
        content = response.choices[0].message.content or ""
        if not content.strip():
            raise GenerationError(f"empty response from {self.model}")
        return content


class HostedGenerator:
    """Gemini ``generateContent`` over REST."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        api_url: str = GEMINI_API_URL,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Gemini API key not configured")
        if not model:
            raise ConfigurationError("Gemini model not configured")
        self.api_key = api_key
        # The models endpoint lists names as "models/<id>"
        self.model = model.removeprefix("models/")
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")

    def generate(self, prompt: str) -> str:
        url = f"{self.api_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}

        log.debug(f"Gemini request: model={self.model}")
        try:
            resp = httpx.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise GenerationError(f"Gemini API error: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Gemini returned invalid JSON: {e}") from e

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationError("no response candidates from Gemini API")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts)
        if not text.strip():
            raise GenerationError("empty response from Gemini API")
        return text


def get_generator(
    settings: ServiceSettings,
    timeout: float = 120.0,
    gemini_api_url: str = GEMINI_API_URL,
) -> Generator:
    """Build the backend selected by ``settings.ai_service``."""
    if settings.ai_service == AIServiceType.GEMINI:
        return HostedGenerator(
            settings.gemini_api_key,
            settings.gemini_model,
            timeout=timeout,
            api_url=gemini_api_url,
        )
    return LocalChatGenerator(
        settings.ollama_server,
        settings.ollama_model,
        timeout=timeout,
    )


def list_hosted_models(
    api_key: str,
    timeout: float = 30.0,
    api_url: str = GEMINI_API_URL,
) -> list[str]:
    """Names of the Gemini models visible to ``api_key``.

    Falls back to a fixed list when the API returns none.
    """
    if not api_key:
        raise ConfigurationError("Gemini API key not configured")

    names: list[str] = []
    page_token = ""
    while True:
        params = {"key": api_key}
        if page_token:
            params["pageToken"] = page_token
        try:
            resp = httpx.get(f"{api_url.rstrip('/')}/models", params=params, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise GenerationError(f"error listing Gemini models: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Gemini returned invalid JSON: {e}") from e
        names.extend(m["name"] for m in data.get("models", []) if m.get("name"))
        page_token = data.get("nextPageToken", "")
        if not page_token:
            break

    return names or list(FALLBACK_GEMINI_MODELS)


# -- Prompts --


def format_changes(files: list[str], commits: list[str]) -> str:
    files_text = "\n".join(files) if files else "(none)"
    commits_text = "\n".join(commits) if commits else "(none)"
    return f"Changed files:\n{files_text}\n\nRecent commits for context:\n{commits_text}"


def build_commit_prompt(files: list[str], commits: list[str] | None = None) -> str:
    return (
        "Generate a concise commit message for the following changes\n"
        "no placeholders, explanation, or other text should be provided\n"
        f"limit the message to {COMMIT_SUBJECT_LIMIT} characters\n\n"
        + format_changes(files, commits or [])
    )


def build_review_prompt(changes: BranchChanges) -> str:
    summary = "\n".join(f"- {c}" for c in changes.commits) or "(none)"
    files = "\n".join(changes.files) or "(none)"
    return (
        "Generate a detailed pull request description for the following changes:\n\n"
        f"Commits:\n{summary}\n\nChanged files:\n{files}\n\n"
        "The description should include:\n"
        "1. A summary of the changes\n"
        "2. The motivation for the changes\n"
        "3. Any potential impact or breaking changes\n"
        "4. Testing instructions if applicable\n\n"
        "Format the response in markdown.\n"
        "Do not include any other text in the response.\n"
        "Do not include any placeholders in the response. "
        "It is expected to be a complete description.\n"
        "Provide the output as markdown, but do not wrap it in a code block."
    )


def clean_text(text: str) -> str:
    """Strip whitespace, a wrapping code fence and wrapping quotes."""
    text = text.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'`":
        text = text[1:-1].strip()
    return text


def _subject_line(text: str) -> str:
    lines = [line for line in clean_text(text).splitlines() if line.strip()]
    if not lines:
        raise GenerationError("generated message is empty")
    subject = clean_text(lines[0])
    if len(subject) > COMMIT_SUBJECT_LIMIT:
        subject = subject[: COMMIT_SUBJECT_LIMIT - 3].rstrip() + "..."
    return subject


def generate_commit_message(
    generator: Generator,
    files: list[str],
    commits: list[str] | None = None,
) -> str:
    """One-line commit message for the staged ``files``."""
    return _subject_line(generator.generate(build_commit_prompt(files, commits)))


def generate_review_title(generator: Generator, changes: BranchChanges) -> str:
    return _subject_line(generator.generate(build_commit_prompt(changes.files, changes.commits)))


def generate_review_description(generator: Generator, changes: BranchChanges) -> str:
    body = clean_text(generator.generate(build_review_prompt(changes)))
    if not body:
        raise GenerationError("generated description is empty")
    return body
