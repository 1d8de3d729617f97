"""Tests for api/github.py -- draft pull request creation."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from gitwatcher.api.github import create_draft_review
from gitwatcher.errors import ConfigurationError, ReviewPlatformError


def _response(status_code, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.json.return_value = payload or {}
    resp.text = text
    return resp


class TestCreateDraftReview:
    @patch("gitwatcher.api.github.httpx.post")
    def test_creates_draft(self, mock_post):
        mock_post.return_value = _response(
            201, {"number": 42, "html_url": "https://github.com/acme/widgets/pull/42"}
        )
        review = create_draft_review(
            "acme", "widgets", title="Add x", head="feature", base="main",
            body="## Summary", token="ghp_test",
        )
        assert review.number == 42
        assert review.url == "https://github.com/acme/widgets/pull/42"

        assert mock_post.call_args.args[0] == "https://api.github.com/repos/acme/widgets/pulls"
        payload = mock_post.call_args.kwargs["json"]
        assert payload == {
            "title": "Add x",
            "head": "feature",
            "base": "main",
            "body": "## Summary",
            "draft": True,
            "maintainer_can_modify": True,
        }
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer ghp_test"

    @patch("gitwatcher.api.github.httpx.post")
    def test_url_fallback(self, mock_post):
        mock_post.return_value = _response(201, {"number": 7})
        review = create_draft_review("acme", "widgets", "t", "feature", "main", "b", token="t")
        assert review.url == "https://github.com/acme/widgets/pull/7"

    @patch("gitwatcher.api.github.httpx.post")
    def test_custom_api_url(self, mock_post):
        mock_post.return_value = _response(201, {"number": 1, "html_url": "u"})
        create_draft_review(
            "acme", "widgets", "t", "feature", "main", "b",
            token="t", api_url="https://ghe.example.com/api/v3/",
        )
        assert mock_post.call_args.args[0] == "https://ghe.example.com/api/v3/repos/acme/widgets/pulls"

    @patch("gitwatcher.api.github.httpx.post")
    def test_non_success_status(self, mock_post):
        mock_post.return_value = _response(422, text='{"message": "Validation Failed"}')
        with pytest.raises(ReviewPlatformError) as exc_info:
            create_draft_review("acme", "widgets", "t", "feature", "main", "b", token="t")
        assert exc_info.value.status_code == 422
        assert "Validation Failed" in str(exc_info.value)

    @patch("gitwatcher.api.github.httpx.post")
    def test_transport_error(self, mock_post):
        mock_post.side_effect = httpx.ConnectError("unreachable")
        with pytest.raises(ReviewPlatformError) as exc_info:
            create_draft_review("acme", "widgets", "t", "feature", "main", "b", token="t")
        assert exc_info.value.status_code is None

    @patch("gitwatcher.api.github.httpx.post")
    def test_missing_token(self, mock_post):
        with pytest.raises(ConfigurationError):
            create_draft_review("acme", "widgets", "t", "feature", "main", "b", token="")
        mock_post.assert_not_called()
