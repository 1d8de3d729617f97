"""Tests for stages/inspect.py."""

from unittest.mock import patch

import pytest

from gitwatcher.errors import StatusError
from gitwatcher.models import PipelineRun, RepoStatus, ServiceSettings
from gitwatcher.stages.inspect import run


class TestInspectStage:
    @patch("gitwatcher.stages.inspect.get_status")
    def test_sets_status(self, mock_status, config):
        status = RepoStatus(has_changes=True, changed_files=["a.go"], current_branch="feature")
        mock_status.return_value = status
        pipeline_run = PipelineRun(repo_path="/repo", settings=ServiceSettings())

        run(pipeline_run=pipeline_run, config=config)

        assert pipeline_run.status is status
        mock_status.assert_called_once_with("/repo", timeout=config.network_timeout)

    @patch("gitwatcher.stages.inspect.get_status")
    def test_propagates_status_error(self, mock_status, config):
        mock_status.side_effect = StatusError("not a repo")
        pipeline_run = PipelineRun(repo_path="/repo", settings=ServiceSettings())
        with pytest.raises(StatusError):
            run(pipeline_run=pipeline_run, config=config)
        assert pipeline_run.status is None
