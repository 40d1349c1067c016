#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Unit tests for the lead data sources.
"""

import sys
import json
import time
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from lead_coverage.errors import LeadSourceError
from lead_coverage.fetching.batch_executor import BatchFetchExecutor
from lead_coverage.fetching.lead_source import (
    HttpLeadSource,
    ScriptLeadSource,
    build_lead_source,
)
from lead_coverage.models import FetchTask, OutcomeStatus, Partition
from lead_coverage.utils.timeout import Deadline, DeadlineExceeded


def make_response(status_code=200, payload=None, invalid_json=False):
    response = MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


class TestHttpLeadSource:
    """Tests for the HTTP acquisition service adapter."""

    def test_fetch_and_store(self, store, session):
        session.get.return_value = make_response(payload=[
            {"name": "Ink Masters", "city": "Austin", "id": 17},
            {"name": "Black Needle"},
            {"name": ""},
        ])
        source = HttpLeadSource(store, "https://leads.example.com/api/", session=session)

        stored = source.fetch_and_store(Deadline(30), "tattoo", "US", 10)

        assert stored == 2
        assert store.count_for_partition(Partition("tattoo", "US")) == 2
        args, kwargs = session.get.call_args
        assert args[0] == "https://leads.example.com/api/leads"
        assert kwargs["params"] == {"industry": "tattoo", "country": "US", "limit": 10}
        assert 0 < kwargs["timeout"] <= 30

    def test_payload_with_leads_key_is_truncated(self, store, session):
        session.get.return_value = make_response(payload={
            "leads": [{"name": f"Gym {i}"} for i in range(5)]
        })
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        assert source.fetch_and_store(Deadline(30), "gym", "GB", 3) == 3

    def test_auth_header(self, store, session):
        HttpLeadSource(store, "https://leads.example.com", api_key="secret-token", session=session)

        assert session.headers["Authorization"] == "Bearer secret-token"
        assert session.headers["Accept"] == "application/json"

    def test_http_error(self, store, session):
        session.get.return_value = make_response(status_code=503)
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        with pytest.raises(LeadSourceError, match="HTTP 503"):
            source.fetch_and_store(Deadline(30), "gym", "US", 10)

    def test_invalid_json(self, store, session):
        session.get.return_value = make_response(invalid_json=True)
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        with pytest.raises(LeadSourceError, match="Invalid JSON"):
            source.fetch_and_store(Deadline(30), "gym", "US", 10)

    def test_unexpected_payload(self, store, session):
        session.get.return_value = make_response(payload={"leads": "nope"})
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        with pytest.raises(LeadSourceError, match="Unexpected payload"):
            source.fetch_and_store(Deadline(30), "gym", "US", 10)

    @patch("tenacity.nap.time.sleep")
    def test_retries_connection_errors(self, mock_sleep, store, session):
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            make_response(payload=[{"name": "Gym"}]),
        ]
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        assert source.fetch_and_store(Deadline(30), "gym", "US", 10) == 1
        assert session.get.call_count == 2

    @patch("tenacity.nap.time.sleep")
    def test_gives_up_after_max_attempts(self, mock_sleep, store, session):
        session.get.side_effect = requests.Timeout("slow")
        source = HttpLeadSource(store, "https://leads.example.com", max_attempts=2, session=session)

        with pytest.raises(LeadSourceError, match="failed"):
            source.fetch_and_store(Deadline(30), "gym", "US", 10)
        assert session.get.call_count == 2

    def test_request_timeout_at_deadline_is_cancellation(self, store, session):
        def slow_get(url, params=None, timeout=None):
            time.sleep(timeout)
            raise requests.Timeout("read timed out")

        session.get.side_effect = slow_get
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        with pytest.raises(DeadlineExceeded):
            source.fetch_and_store(Deadline(0.3), "gym", "US", 10)

    def test_request_timeout_at_deadline_in_batch(self, store, session):
        def slow_get(url, params=None, timeout=None):
            time.sleep(timeout)
            raise requests.Timeout("read timed out")

        session.get.side_effect = slow_get
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        result = BatchFetchExecutor(source).run_batch(
            Deadline(0.3), [FetchTask(Partition("gym", "US"), 10)], max_concurrent=1
        )

        assert result.outcomes[0].status == OutcomeStatus.CANCELLED
        assert result.failed == 0

    def test_backoff_does_not_outlive_deadline(self, store, session):
        session.get.side_effect = requests.ConnectionError("connection refused")
        source = HttpLeadSource(store, "https://leads.example.com", max_attempts=5, session=session)

        start = time.monotonic()
        with pytest.raises(DeadlineExceeded):
            source.fetch_and_store(Deadline(0.5), "gym", "US", 10)

        assert time.monotonic() - start < 3

    def test_expired_deadline(self, store, session):
        deadline = Deadline(30)
        deadline.cancel("stopping")
        source = HttpLeadSource(store, "https://leads.example.com", session=session)

        with pytest.raises(DeadlineExceeded):
            source.fetch_and_store(deadline, "gym", "US", 10)
        session.get.assert_not_called()

    def test_requires_base_url(self, store):
        with pytest.raises(ValueError):
            HttpLeadSource(store, "")


class TestScriptLeadSource:
    """Tests for the external fetch script adapter."""

    @pytest.fixture
    def script(self, tmp_path):
        path = tmp_path / "simple_fetch.py"
        path.write_text("# fetch script\n")
        return path

    def test_build_command(self, store, script, tmp_path):
        source = ScriptLeadSource(store, script, tmp_path / "out", interpreter="python3")

        assert source.build_command("tattoo", "US", 1000) == [
            "python3", str(script), "tattoo",
            "--country", "US", "--limit", "1000", "--output", str(tmp_path / "out"),
        ]

    def test_fetch_and_store(self, store, script, tmp_path):
        output_dir = tmp_path / "out"
        source = ScriptLeadSource(store, script, output_dir)

        def fake_run(command, **kwargs):
            (output_dir / "spa_GB.json").write_text(json.dumps([{"name": "Calm"}, {"name": "Glow"}]))
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        with patch("lead_coverage.fetching.lead_source.subprocess.run", side_effect=fake_run) as mock_run:
            stored = source.fetch_and_store(Deadline(30), "spa", "GB", 500)

        assert stored == 2
        assert store.count_for_partition(Partition("spa", "GB")) == 2
        assert mock_run.call_args.kwargs["timeout"] <= 30
        assert mock_run.call_args.args[0][0] == sys.executable

    def test_nonzero_exit(self, store, script, tmp_path):
        source = ScriptLeadSource(store, script, tmp_path / "out")
        completed = subprocess.CompletedProcess([], 2, stdout="", stderr="rate limited")

        with patch("lead_coverage.fetching.lead_source.subprocess.run", return_value=completed):
            with pytest.raises(LeadSourceError, match="rate limited"):
                source.fetch_and_store(Deadline(30), "spa", "GB", 500)

    def test_missing_output_file(self, store, script, tmp_path):
        source = ScriptLeadSource(store, script, tmp_path / "out")
        completed = subprocess.CompletedProcess([], 0, stdout="", stderr="")

        with patch("lead_coverage.fetching.lead_source.subprocess.run", return_value=completed):
            with pytest.raises(LeadSourceError, match="no output file"):
                source.fetch_and_store(Deadline(30), "spa", "GB", 500)

    def test_timeout_without_deadline_is_source_error(self, store, script, tmp_path):
        source = ScriptLeadSource(store, script, tmp_path / "out", timeout=1)

        with patch("lead_coverage.fetching.lead_source.subprocess.run",
                   side_effect=subprocess.TimeoutExpired("python", 1)):
            with pytest.raises(LeadSourceError, match="timed out"):
                source.fetch_and_store(Deadline(), "spa", "GB", 500)

    def test_timeout_at_deadline(self, store, script, tmp_path):
        source = ScriptLeadSource(store, script, tmp_path / "out")
        deadline = Deadline(30)

        def expire(*args, **kwargs):
            deadline.cancel("job timeout")
            raise subprocess.TimeoutExpired("python", 30)

        with patch("lead_coverage.fetching.lead_source.subprocess.run", side_effect=expire):
            with pytest.raises(DeadlineExceeded):
                source.fetch_and_store(deadline, "spa", "GB", 500)

    def test_missing_script(self, store, tmp_path):
        source = ScriptLeadSource(store, tmp_path / "nope.py", tmp_path / "out")

        with pytest.raises(LeadSourceError, match="not found"):
            source.fetch_and_store(Deadline(30), "spa", "GB", 500)


class TestBuildLeadSource:

    def test_http_when_url_configured(self, app_config, store):
        app_config.lead_source_url = "https://leads.example.com"
        assert isinstance(build_lead_source(app_config, store), HttpLeadSource)

    def test_script_otherwise(self, app_config, store):
        app_config.lead_source_url = None
        source = build_lead_source(app_config, store)
        assert isinstance(source, ScriptLeadSource)
        assert source.script_path == Path(app_config.fetch_script_path)
