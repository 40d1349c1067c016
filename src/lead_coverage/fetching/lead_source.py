#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Lead Data Sources

Adapters that fetch leads for one partition and persist them to the lead
store. The batch executor only sees ``fetch_and_store``; how leads are
obtained is up to the adapter.
"""

import os
import sys
import json
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from lead_coverage.config import AppConfig
from lead_coverage.errors import LeadSourceError
from lead_coverage.utils.storage import LeadStore
from lead_coverage.utils.timeout import Deadline, DeadlineExceeded
from lead_coverage.utils.logger import get_logger, log_sensitive

# Configure logger
logger = get_logger(__name__)

# Constants
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_TIMEOUT = 120  # seconds
USER_AGENT = "Lead Coverage Monitor"


class LeadSource(ABC):
    """Fetches and persists up to ``target_count`` leads for a partition."""

    name = "lead_source"

    @abstractmethod
    def fetch_and_store(self, deadline: Deadline, industry: str, country: str, target_count: int) -> int:
        """
        Fetch leads and persist them.

        Args:
            deadline: Cancellation signal and time budget of the calling job
            industry: Industry to fetch
            country: ISO-3166 alpha-2 country code
            target_count: Maximum number of leads to request

        Returns:
            int: Number of leads actually stored

        Raises:
            LeadSourceError: If the fetch or the persist step fails
            DeadlineExceeded: If the deadline ended before the fetch finished
        """


def _bounded_timeout(deadline: Deadline, default: float) -> float:
    remaining = deadline.remaining()
    if remaining is None:
        return default
    if remaining <= 0:
        raise DeadlineExceeded(deadline.describe())
    return min(default, remaining)


class HttpLeadSource(LeadSource):
    """
    Lead source backed by an HTTP acquisition service.

    Calls ``GET {base_url}/leads`` with industry, country and limit query
    parameters; the response is either a JSON list of lead objects or an
    object with a ``leads`` list.
    """

    name = "http"

    def __init__(self, store: LeadStore, base_url: str, api_key: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
                 session: Optional[requests.Session] = None):
        """
        Initialize the HTTP lead source.

        Args:
            store: Store that receives fetched leads
            base_url: Base URL of the acquisition service
            api_key: Optional bearer token
            timeout: Per-request timeout in seconds (capped by the job deadline)
            max_attempts: Attempts per call for transient transport errors
            session: Optional preconfigured requests session
        """
        if not base_url:
            raise ValueError("base_url is required")
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.session = session or requests.Session()
        self._configure_session(api_key)

    def _configure_session(self, api_key: Optional[str]) -> None:
        """Configure the requests session with default and auth headers."""
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"
            log_sensitive(logger, logging.DEBUG, f"Using API key {api_key} for {self.base_url}", api_key=api_key)

    def _request(self, deadline: Deadline, params: Dict[str, Any]) -> requests.Response:
        timeout = _bounded_timeout(deadline, self.timeout)
        return self.session.get(f"{self.base_url}/leads", params=params, timeout=timeout)

    def _get_with_retries(self, deadline: Deadline, params: Dict[str, Any]) -> requests.Response:
        backoff = wait_exponential(multiplier=1, min=1, max=10)

        def wait_within_deadline(retry_state) -> float:
            delay = backoff(retry_state)
            remaining = deadline.remaining()
            return delay if remaining is None else min(delay, remaining)

        retrying = Retrying(
            stop=stop_any(
                stop_after_attempt(self.max_attempts),
                lambda retry_state: deadline.done,
            ),
            wait=wait_within_deadline,
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            reraise=True,
        )
        return retrying(self._request, deadline, params)

    def fetch_and_store(self, deadline: Deadline, industry: str, country: str, target_count: int) -> int:
        params = {"industry": industry, "country": country, "limit": target_count}

        try:
            response = self._get_with_retries(deadline, params)
        except requests.RequestException as e:
            if deadline.done:
                raise DeadlineExceeded(deadline.describe()) from e
            raise LeadSourceError(f"Request for {industry}/{country} failed: {e}") from e

        if response.status_code >= 400:
            raise LeadSourceError(
                f"Acquisition service returned HTTP {response.status_code} for {industry}/{country}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise LeadSourceError(f"Invalid JSON from acquisition service for {industry}/{country}") from e

        records = payload.get("leads", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise LeadSourceError(f"Unexpected payload shape for {industry}/{country}")

        stored = self.store.save_leads(industry, country, records[:target_count], source=self.name)
        logger.info(f"Fetched {len(records)} and stored {stored} leads for {industry}/{country}")
        return stored


class ScriptLeadSource(LeadSource):
    """
    Lead source that runs an external fetch script.

    The script is invoked as
    ``<python> <script> <industry> --country C --limit N --output DIR`` and
    must write ``DIR/<industry>_<country>.json`` containing a list of leads.
    """

    name = "script"

    def __init__(self, store: LeadStore, script_path: Path, output_dir: Path,
                 timeout: float = DEFAULT_TIMEOUT, interpreter: Optional[str] = None):
        self.store = store
        self.script_path = Path(script_path)
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self.interpreter = interpreter or sys.executable

    def build_command(self, industry: str, country: str, target_count: int) -> List[str]:
        return [
            self.interpreter,
            str(self.script_path),
            industry,
            "--country", country,
            "--limit", str(target_count),
            "--output", str(self.output_dir),
        ]

    def output_file(self, industry: str, country: str) -> Path:
        return self.output_dir / f"{industry}_{country}.json"

    def _load_output(self, path: Path) -> Sequence[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise LeadSourceError(f"Could not read fetch output {path}: {e}") from e
        records = payload.get("leads", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise LeadSourceError(f"Unexpected content in {path}")
        return records

    def fetch_and_store(self, deadline: Deadline, industry: str, country: str, target_count: int) -> int:
        if not self.script_path.exists():
            raise LeadSourceError(f"Fetch script not found: {self.script_path}")

        os.makedirs(self.output_dir, exist_ok=True)
        output = self.output_file(industry, country)
        if output.exists():
            output.unlink()

        command = self.build_command(industry, country, target_count)
        timeout = _bounded_timeout(deadline, self.timeout)
        logger.info(f"Triggering data fetch for {industry}/{country} (limit: {target_count})")

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            if deadline.done:
                raise DeadlineExceeded(deadline.describe()) from e
            raise LeadSourceError(f"Fetch script timed out after {timeout:.0f}s for {industry}/{country}") from e
        except OSError as e:
            raise LeadSourceError(f"Could not run fetch script: {e}") from e

        if completed.returncode != 0:
            logger.debug(f"Fetch script output: {completed.stdout}{completed.stderr}")
            raise LeadSourceError(
                f"Fetch script exited with status {completed.returncode} for {industry}/{country}: "
                f"{completed.stderr.strip()[-500:]}"
            )

        if not output.exists():
            raise LeadSourceError(f"Fetch script produced no output file for {industry}/{country}")

        records = self._load_output(output)
        return self.store.save_leads(industry, country, list(records)[:target_count], source=self.name)


def build_lead_source(app_config: AppConfig, store: LeadStore) -> LeadSource:
    """
    Create the configured lead source.

    The HTTP source is used when LEAD_SOURCE_URL is set, otherwise the
    fetch script.
    """
    if app_config.lead_source_url:
        return HttpLeadSource(
            store,
            app_config.lead_source_url,
            api_key=app_config.lead_source_api_key,
            timeout=app_config.lead_source_timeout_secs,
        )
    return ScriptLeadSource(
        store,
        app_config.fetch_script_path,
        app_config.fetch_output_dir,
        timeout=app_config.lead_source_timeout_secs,
    )
