from __future__ import annotations

import json
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

import requests
from requests.exceptions import RequestException

from .config_loader import config
from .errors import NetworkError, RateLimitExhausted
from .logger_config import logger
from .rate_limiter import BackoffState, KeyedRateLimiter

# Shared by every client in the process: a 429 seen by one worker slows all of them
_BACKOFF = BackoffState()
_RATE_LIMITER: Optional[KeyedRateLimiter] = None
_DEFAULT_CLIENT: Optional["FetchClient"] = None
_init_lock = threading.RLock()


def shared_rate_limiter() -> KeyedRateLimiter:
    global _RATE_LIMITER
    with _init_lock:
        if _RATE_LIMITER is None:
            _RATE_LIMITER = KeyedRateLimiter(
                per_second=config.get("network.requests_per_second", 2),
                burst=config.get("network.burst", 1),
            )
        return _RATE_LIMITER


def shared_backoff() -> BackoffState:
    return _BACKOFF


class FetchClient:
    """Rate limited, 429-aware HTTP GET used for every network read."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[KeyedRateLimiter] = None,
        backoff: Optional[BackoffState] = None,
        max_bounces: Optional[int] = None,
        base_backoff_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        debug_dir: Optional[Path] = None,
    ) -> None:
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or shared_rate_limiter()
        self.backoff = backoff or shared_backoff()
        self.max_bounces = max_bounces if max_bounces is not None else config.get("network.max_bounces", 10)
        self.base_backoff_seconds = (
            base_backoff_seconds if base_backoff_seconds is not None
            else config.get("network.base_backoff_seconds", 8)
        )
        self.timeout = timeout if timeout is not None else config.get("network.timeout_seconds", 60)
        self._sleep = sleep
        if debug_dir is None and config.get("network.debug_dump", False):
            debug_dir = Path("debug_dump")
        self.debug_dir = debug_dir

        self.session.headers.update({
            "User-Agent": config.get("network.user_agent", "AutEBook"),
            "Accept": "*/*",
        })

    def get_text(self, url: str) -> str:
        with self.safe_request(url) as response:
            return response.text

    def get_bytes(self, url: str) -> bytes:
        with self.safe_request(url) as response:
            return response.content

    @contextmanager
    def safe_request(self, url: str):
        """
        Send a throttled GET and yield the response.
        Non-2xx responses and transport errors raise NetworkError carrying the URL.
        """
        response = self._send(url)
        if not response.ok:
            self._dump_debug(response, exception=f"Unexpected status code: {response.status_code}")
            raise NetworkError(url, f"Broken link: HTTP {response.status_code}", response.status_code)
        yield response

    def _send(self, url: str) -> requests.Response:
        host = urlsplit(url).hostname or ""
        self.rate_limiter.wait_for(host, self._sleep)

        try:
            logger.debug(f"GET {url}")
            response = self.session.get(url, timeout=self.timeout)
        except RequestException as e:
            self._dump_debug(request=e.request, exception=e)
            raise NetworkError(url, f"Request failed: {e}") from e

        if response.status_code == 429:
            bounce = self.backoff.escalate(self.max_bounces)
            if bounce is None:
                self._dump_debug(response, exception="Rate limit exhausted")
                raise RateLimitExhausted(url, self.max_bounces)
            secs = self.base_backoff_seconds * 2 ** bounce
            logger.warning(f"Too many requests, waiting for {secs} s ({url})")
            self._sleep(secs)
            return self._send(url)

        self.backoff.reset()
        return response

    def _dump_debug(self, response: Optional[requests.Response] = None,
                    request: Optional[requests.PreparedRequest] = None,
                    exception=None):
        """Write the failing exchange to ``debug_dir`` when dumping is enabled."""
        if self.debug_dir is None:
            return
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            file_path = self.debug_dir / f"debug_{timestamp}_{uuid.uuid4()}.html"

            debug_info = [
                f"Timestamp: {datetime.now().isoformat()}",
                f"Exception: {exception!r}",
            ]

            req_url, req_headers = "N/A", {}
            if response is not None:
                req_url = response.request.url
                req_headers = dict(response.request.headers)
            elif request is not None:
                req_url = request.url
                req_headers = dict(request.headers)

            debug_info.append(f"Request URL: {req_url}")
            debug_info.append("Request headers:")
            debug_info.append(json.dumps(req_headers, indent=2, default=str))

            if response is not None:
                debug_info.append(f"Status code: {response.status_code}")
                debug_info.append("Response headers:")
                debug_info.append(json.dumps(dict(response.headers), indent=2, default=str))
                debug_info.append("-" * 80)
                debug_info.append(response.text)

            file_path.write_text("\n".join(debug_info), encoding="utf-8")
            logger.debug(f"Debug dump written to {file_path}")
        except Exception as e:
            logger.error(f"Failed to write debug dump: {e}")


def default_client() -> FetchClient:
    global _DEFAULT_CLIENT
    with _init_lock:
        if _DEFAULT_CLIENT is None:
            _DEFAULT_CLIENT = FetchClient()
        return _DEFAULT_CLIENT


def get_text(url: str) -> str:
    return default_client().get_text(url)


def get_bytes(url: str) -> bytes:
    return default_client().get_bytes(url)
