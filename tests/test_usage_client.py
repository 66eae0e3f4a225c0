"""
Tests for export usage reporting (HTTP mocked)

Run with:
    pytest tests/test_usage_client.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
import requests
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from compositor.usage_client import is_usage_configured, report_export


@pytest.fixture
def webhook(monkeypatch):
    monkeypatch.setenv("USAGE_WEBHOOK_URL", "https://usage.example.com/exports/\n")
    monkeypatch.delenv("USAGE_WEBHOOK_TIMEOUT_SECONDS", raising=False)


class TestReportExport:
    def test_not_configured_is_a_noop(self, monkeypatch):
        monkeypatch.delenv("USAGE_WEBHOOK_URL", raising=False)

        with patch("compositor.usage_client.requests.post") as post:
            result = report_export("client-a", 2700, 3600)

        assert result == {"success": True, "reported": False}
        assert is_usage_configured() is False
        post.assert_not_called()

    def test_posts_export_event(self, webhook):
        response = MagicMock(status_code=204)
        with patch("compositor.usage_client.requests.post", return_value=response) as post:
            result = report_export("client-a", 2700, 3600)

        assert result == {"success": True, "reported": True}
        assert is_usage_configured() is True

        args, kwargs = post.call_args
        assert args[0] == "https://usage.example.com/exports"
        assert kwargs["json"]["client_id"] == "client-a"
        assert kwargs["json"]["width"] == 2700
        assert kwargs["json"]["height"] == 3600
        assert "rendered_at" in kwargs["json"]
        assert kwargs["timeout"] == 5

    def test_http_error_is_reported_not_raised(self, webhook):
        with patch("compositor.usage_client.requests.post", return_value=MagicMock(status_code=500)):
            result = report_export(None, 2700, 3600)

        assert result["success"] is False
        assert result["reported"] is False
        assert result["error"] == "HTTP 500"

    def test_network_error_is_reported_not_raised(self, webhook):
        with patch("compositor.usage_client.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
            result = report_export("client-a", 2700, 3600, timeout=1)

        assert result["success"] is False
        assert "down" in result["error"]
