"""Tests for runner.py -- stage ordering, no-op short circuit, failure handling."""

from unittest.mock import MagicMock, patch

import pytest

from gitwatcher.errors import AuthError, GenerationError
from gitwatcher.models import (
    BranchChanges,
    ReviewRequest,
    RepoStatus,
    RunOutcome,
    ServiceSettings,
    Stage,
)
from gitwatcher.runner import SyncPipeline

CLEAN = RepoStatus(has_changes=False, changed_files=[], current_branch="feature")
DIRTY = RepoStatus(has_changes=True, changed_files=["a.go", "b.go"], current_branch="feature")
SETTINGS = ServiceSettings(github_token="ghp_test")


@pytest.fixture
def collaborators():
    """Patch every git/AI/GitHub call the stages make."""
    generator = MagicMock()
    generator.generate.side_effect = [
        "Update a.go and b.go",
        "Update a.go and b.go",
        "## Summary\n\nUpdates.",
    ]
    with (
        patch("gitwatcher.stages.inspect.get_status") as inspect_status,
        patch("gitwatcher.stages.commit.stage_all") as stage_all,
        patch("gitwatcher.stages.commit.get_branch_changes") as commit_changes,
        patch("gitwatcher.stages.commit.get_generator", return_value=generator) as commit_gen,
        patch("gitwatcher.stages.commit.commit", return_value="abc123") as commit,
        patch("gitwatcher.stages.push.push", return_value="feature") as push,
        patch("gitwatcher.stages.review.get_remote_url", return_value="git@example.com:acme/widgets.git"),
        patch("gitwatcher.stages.review.current_branch", return_value="feature"),
        patch("gitwatcher.stages.review.get_branch_changes") as review_changes,
        patch("gitwatcher.stages.review.get_generator", return_value=generator) as review_gen,
        patch("gitwatcher.stages.review.create_draft_review") as create_review,
    ):
        commit_changes.return_value = BranchChanges(files=[], commits=[])
        review_changes.return_value = BranchChanges(
            files=["a.go", "b.go"], commits=["Update a.go and b.go"], merge_base="f00"
        )
        create_review.return_value = ReviewRequest(
            number=12, url="https://github.com/acme/widgets/pull/12"
        )
        yield {
            "inspect_status": inspect_status,
            "stage_all": stage_all,
            "commit_gen": commit_gen,
            "commit": commit,
            "push": push,
            "review_gen": review_gen,
            "create_review": create_review,
            "generator": generator,
        }


class TestSyncPipeline:
    def test_clean_tree_is_noop(self, config, collaborators):
        collaborators["inspect_status"].return_value = CLEAN
        result = SyncPipeline(config).run("/repo", SETTINGS)

        assert result.outcome == RunOutcome.NOOP
        assert result.ok
        assert result.stages == [Stage.INSPECT]
        for name in ("stage_all", "commit_gen", "commit", "push", "review_gen", "create_review"):
            collaborators[name].assert_not_called()
        collaborators["generator"].generate.assert_not_called()

    def test_dirty_tree_runs_every_stage(self, config, collaborators):
        collaborators["inspect_status"].return_value = DIRTY
        result = SyncPipeline(config).run("/repo", SETTINGS)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.stages == [Stage.INSPECT, Stage.COMMIT, Stage.PUSH, Stage.REVIEW]
        assert result.commit_message == "Update a.go and b.go"
        assert result.review.number == 12
        assert result.status is DIRTY

        first_prompt = collaborators["generator"].generate.call_args_list[0].args[0]
        assert "a.go" in first_prompt and "b.go" in first_prompt
        collaborators["push"].assert_called_once()
        args, kwargs = collaborators["create_review"].call_args
        assert args == ("acme", "widgets")
        assert kwargs["head"] == "feature"
        assert kwargs["base"] == "main"

    def test_generation_failure_stops_before_push(self, config, collaborators):
        collaborators["inspect_status"].return_value = DIRTY
        collaborators["generator"].generate.side_effect = GenerationError("backend down")

        result = SyncPipeline(config).run("/repo", SETTINGS)

        assert result.outcome == RunOutcome.FAILED
        assert not result.ok
        assert result.failed_stage == Stage.COMMIT
        assert isinstance(result.error, GenerationError)
        assert result.stages == [Stage.INSPECT]
        collaborators["commit"].assert_not_called()
        collaborators["push"].assert_not_called()
        collaborators["create_review"].assert_not_called()

    def test_push_failure_reported(self, config, collaborators):
        collaborators["inspect_status"].return_value = DIRTY
        collaborators["push"].side_effect = AuthError("SSH key not found: /nope")

        result = SyncPipeline(config).run("/repo", SETTINGS)

        assert result.failed_stage == Stage.PUSH
        assert isinstance(result.error, AuthError)
        assert result.commit_message == "Update a.go and b.go"
        collaborators["create_review"].assert_not_called()

    def test_unexpected_exception_becomes_failed_result(self, config, collaborators):
        collaborators["inspect_status"].side_effect = RuntimeError("surprise")
        result = SyncPipeline(config).run("/repo", SETTINGS)
        assert result.outcome == RunOutcome.FAILED
        assert result.failed_stage == Stage.INSPECT
        assert isinstance(result.error, RuntimeError)

    def test_settings_are_captured_per_run(self, config, collaborators):
        collaborators["inspect_status"].return_value = DIRTY
        SyncPipeline(config).run("/repo", SETTINGS)
        used = collaborators["commit_gen"].call_args.args[0]
        assert used == SETTINGS

    def test_run_selected_stages(self, config, collaborators):
        result = SyncPipeline(config).run_stages("/repo", SETTINGS, [Stage.PUSH])
        assert result.outcome == RunOutcome.SUCCESS
        assert result.stages == [Stage.PUSH]
        collaborators["inspect_status"].assert_not_called()
        collaborators["push"].assert_called_once()

    def test_duration_non_negative(self, config, collaborators):
        collaborators["inspect_status"].return_value = CLEAN
        result = SyncPipeline(config).run("/repo", SETTINGS)
        assert result.duration >= 0
