"""GitWatcher -- watch git repositories, commit with generated messages, open draft PRs.

Core modules:
    config    -- Service configuration via pydantic-settings (GITWATCHER_* env vars)
    cli       -- Click CLI entry point: daemon (serve) plus management commands
    schedule  -- Five-field cron expressions, validated and evaluated via croniter
    scheduler -- Keyed task registry and worker-pool scheduler. A task never runs
                 concurrently with itself; overlapping firings are skipped.
    runner    -- Sync pipeline orchestration (inspect -> commit -> push -> review)
    service   -- Wires state, scheduler and pipeline together
    state     -- Watched repositories and settings, persisted as JSON
    git       -- git subprocess wrapper (status, commit, push, fetch, branch diff)
    ancestry  -- Merge-base search over a commit graph
    ai        -- Commit message and PR text generation (Ollama or Gemini)

Subpackages:
    api       -- Review platform clients (GitHub draft pull requests)
    stages    -- Pipeline stages
"""
