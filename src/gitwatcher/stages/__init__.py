"""Stage registry -- maps Stage enum values to run functions.

Pipeline order: inspect -> commit -> push -> review

Every stage has the signature ``run(pipeline_run, config, **kwargs)``,
reads and writes the transient PipelineRun, and raises a StageError
subclass (or ConfigurationError) on failure. The runner stops at the
first failure.

Stages:
    inspect -- Compute a fresh working tree status. A clean tree ends the run
               as a no-op before any other collaborator is called.
    commit  -- Stage all changes, ask the configured generation backend for a
               one-line message (changed files plus, when resolvable, the
               branch's commit subjects since the integration branch), and
               commit as the automation identity. GenerationError /
               CommitError.
    push    -- Push the current branch to the same name on the remote with
               the configured SSH key. AuthError / PushError.
    review  -- Resolve owner/repo from the remote URL, collect commits and
               files since the merge base with the integration branch,
               generate a title and markdown description, and open a draft
               pull request. ConfigurationError / NoCommonAncestorError /
               GenerationError / ReviewPlatformError.
"""

from ..models import Stage


def get_stage_runner(stage: Stage):
    """Return the run function for a given stage."""
    if stage == Stage.INSPECT:
        from .inspect import run as inspect_run

        return inspect_run

    if stage == Stage.COMMIT:
        from .commit import run as commit_run

        return commit_run

    if stage == Stage.PUSH:
        from .push import run as push_run

        return push_run

    if stage == Stage.REVIEW:
        from .review import run as review_run

        return review_run

    raise NotImplementedError(f"Stage '{stage}' is not implemented")
