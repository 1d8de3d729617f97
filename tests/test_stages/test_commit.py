"""Tests for stages/commit.py -- mocked git and generation backend."""

from unittest.mock import MagicMock, patch

import pytest

from gitwatcher.errors import CommitError, GenerationError, NoCommonAncestorError
from gitwatcher.models import BranchChanges, PipelineRun, RepoStatus, ServiceSettings
from gitwatcher.stages.commit import run

DIRTY = RepoStatus(has_changes=True, changed_files=["a.go", "b.go"], current_branch="feature")
CLEAN = RepoStatus(has_changes=False, changed_files=[], current_branch="feature")


def _run(status=DIRTY):
    return PipelineRun(repo_path="/repo", settings=ServiceSettings(), status=status)


@pytest.fixture
def generator():
    gen = MagicMock()
    gen.generate.return_value = "Update a.go and b.go"
    return gen


class TestCommitStage:
    @patch("gitwatcher.stages.commit.commit", return_value="abc123")
    @patch("gitwatcher.stages.commit.get_branch_changes")
    @patch("gitwatcher.stages.commit.get_generator")
    @patch("gitwatcher.stages.commit.stage_all")
    def test_commits_with_generated_message(
        self, mock_stage, mock_get_gen, mock_changes, mock_commit, config, generator
    ):
        mock_get_gen.return_value = generator
        mock_changes.return_value = BranchChanges(files=["x"], commits=["earlier work"])
        pipeline_run = _run()

        run(pipeline_run=pipeline_run, config=config)

        mock_stage.assert_called_once_with("/repo", timeout=config.network_timeout)
        prompt = generator.generate.call_args.args[0]
        assert "a.go\nb.go" in prompt
        assert "earlier work" in prompt
        mock_commit.assert_called_once_with(
            "/repo",
            "Update a.go and b.go",
            "GitWatcher",
            "gitwatcher@local",
            timeout=config.network_timeout,
        )
        assert pipeline_run.commit_message == "Update a.go and b.go"

    @patch("gitwatcher.stages.commit.commit")
    @patch("gitwatcher.stages.commit.stage_all")
    @patch("gitwatcher.stages.commit.get_generator")
    def test_clean_tree_touches_nothing(self, mock_get_gen, mock_stage, mock_commit, config):
        run(pipeline_run=_run(CLEAN), config=config)
        mock_get_gen.assert_not_called()
        mock_stage.assert_not_called()
        mock_commit.assert_not_called()

    @patch("gitwatcher.stages.commit.commit")
    @patch("gitwatcher.stages.commit.get_branch_changes")
    @patch("gitwatcher.stages.commit.get_generator")
    @patch("gitwatcher.stages.commit.stage_all")
    @patch("gitwatcher.stages.commit.get_status")
    def test_computes_status_when_missing(
        self, mock_status, mock_stage, mock_get_gen, mock_changes, mock_commit, config, generator
    ):
        mock_status.return_value = DIRTY
        mock_get_gen.return_value = generator
        mock_changes.return_value = BranchChanges(files=[], commits=[])
        pipeline_run = _run(status=None)

        run(pipeline_run=pipeline_run, config=config)

        mock_status.assert_called_once()
        assert pipeline_run.status is DIRTY
        mock_commit.assert_called_once()

    @patch("gitwatcher.stages.commit.commit")
    @patch("gitwatcher.stages.commit.get_branch_changes")
    @patch("gitwatcher.stages.commit.get_generator")
    @patch("gitwatcher.stages.commit.stage_all")
    def test_missing_branch_context_still_commits(
        self, mock_stage, mock_get_gen, mock_changes, mock_commit, config, generator
    ):
        mock_get_gen.return_value = generator
        mock_changes.side_effect = NoCommonAncestorError("disjoint")

        run(pipeline_run=_run(), config=config)

        assert "(none)" in generator.generate.call_args.args[0]
        mock_commit.assert_called_once()

    @patch("gitwatcher.stages.commit.commit")
    @patch("gitwatcher.stages.commit.get_branch_changes")
    @patch("gitwatcher.stages.commit.get_generator")
    @patch("gitwatcher.stages.commit.stage_all")
    def test_generation_failure_skips_commit(
        self, mock_stage, mock_get_gen, mock_changes, mock_commit, config
    ):
        gen = MagicMock()
        gen.generate.side_effect = GenerationError("backend down")
        mock_get_gen.return_value = gen
        mock_changes.return_value = BranchChanges(files=[], commits=[])
        pipeline_run = _run()

        with pytest.raises(GenerationError):
            run(pipeline_run=pipeline_run, config=config)
        mock_commit.assert_not_called()
        assert pipeline_run.commit_message == ""

    @patch("gitwatcher.stages.commit.commit")
    @patch("gitwatcher.stages.commit.get_branch_changes")
    @patch("gitwatcher.stages.commit.get_generator")
    @patch("gitwatcher.stages.commit.stage_all")
    def test_commit_error_propagates(
        self, mock_stage, mock_get_gen, mock_changes, mock_commit, config, generator
    ):
        mock_get_gen.return_value = generator
        mock_changes.return_value = BranchChanges(files=[], commits=[])
        mock_commit.side_effect = CommitError("index locked")
        with pytest.raises(CommitError):
            run(pipeline_run=_run(), config=config)
