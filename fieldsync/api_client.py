"""HTTP client for the membership management REST API."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Generator, Iterable, Optional, Sequence, Tuple
from urllib.parse import urljoin

import requests
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import DEFAULT_API_BASES, DEFAULT_API_VERSION

LOGGER = logging.getLogger(__name__)

ApiResponse = Tuple[int, Any]


class _Throttled(Exception):
    def __init__(self, status: int, data: Any) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status
        self.data = data


class MembershipApiClient:
    """Wrapper around the membership API used for members and custom fields.

    :meth:`get` never raises for HTTP level problems. Transport failures are
    reported as status ``0`` with ``None`` data so callers can fall back.
    """

    def __init__(
        self,
        *,
        base_urls: Sequence[str] = DEFAULT_API_BASES,
        api_version: str = DEFAULT_API_VERSION,
        verify_ssl: bool = True,
        timeout: int = 45,
        rate_limit_per_minute: Optional[int] = None,
        max_retries: int = 3,
        backoff_seconds: float = 15.0,
        on_token_refresh: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.base_urls = [self._normalise_base_url(url) for url in base_urls if url]
        if not self.base_urls:
            raise ValueError("At least one API base URL is required")
        self.api_version = api_version.strip("/")
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
        })
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.on_token_refresh = on_token_refresh
        self.refreshed_token: Optional[str] = None
        self.base_used: Optional[str] = None
        self._sleep_between_requests = (
            60.0 / rate_limit_per_minute if rate_limit_per_minute else 0.0
        )
        self._last_request_time: float | None = None

    # -- Low level request helpers -------------------------------------------------
    def _normalise_base_url(self, base_url: str) -> str:
        cleaned = base_url.strip().rstrip("/")
        return cleaned or base_url

    def _build_url(self, base: str, path: str) -> str:
        if path.lower().startswith(("http://", "https://")):
            return path
        normalised_path = path.lstrip("/")
        return urljoin(f"{base}/{self.api_version}/", normalised_path)

    def _throttle(self, url: str) -> None:
        if self._sleep_between_requests and self._last_request_time is not None:
            elapsed = time.monotonic() - self._last_request_time
            remaining = self._sleep_between_requests - elapsed
            if remaining > 0:
                LOGGER.debug("Sleeping %.2fs before GET %s to respect rate limits", remaining, url)
                time.sleep(remaining)

    def _send(self, url: str, params: Dict[str, Any], token: str) -> requests.Response:
        self._throttle(url)
        LOGGER.debug("HTTP GET %s params=%s", url, params)
        response = self.session.get(
            url,
            params=params or None,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
            verify=self.verify_ssl,
        )
        self._last_request_time = time.monotonic()
        LOGGER.debug("Response status=%s", response.status_code)
        return response

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            LOGGER.warning("Response from %s was not valid JSON", response.url)
            return None

    def _get_once(self, path: str, query: Dict[str, Any], token: str) -> ApiResponse:
        # A rotated token replaces whatever the caller still holds.
        token = self.refreshed_token or token
        bases = [None] if path.lower().startswith(("http://", "https://")) else self.base_urls
        last_status = 0
        for base in bases:
            url = self._build_url(base or "", path)
            try:
                response = self._send(url, query, token)
                if response.headers.get("tokenRefreshNeeded", "").lower() == "true":
                    token = self.refresh_token(token)
                    response = self._send(url, query, token)
            except requests.RequestException as exc:
                LOGGER.warning("Request to %s failed: %s", url, exc)
                continue

            status = response.status_code
            data = self._decode(response)
            if status == 429 or _is_throttle_detail(data):
                raise _Throttled(status, data)
            if status >= 500:
                LOGGER.warning("Server error %s from %s; trying next base URL", status, url)
                last_status = status
                continue
            if base is not None:
                self.base_used = base
            return status, data
        return last_status, None

    # -- Public API ----------------------------------------------------------------
    def get(self, path: str, query: Optional[Dict[str, Any]] = None, token: str = "") -> ApiResponse:
        """Return ``(status_code, data)`` for a GET request.

        HTTP 429 responses are retried with exponential backoff; when retries
        are exhausted the last throttled response is returned.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(_Throttled),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=120),
        )
        try:
            return retrying(self._get_once, path, dict(query or {}), token)
        except RetryError as exc:
            throttled = exc.last_attempt.exception()
            LOGGER.error("Repeated throttling for %s; giving up after %s attempts", path, self.max_retries)
            if isinstance(throttled, _Throttled):
                return throttled.status, throttled.data
            return 429, None

    def get_with_query_fallback(self, path: str, query: Dict[str, Any], token: str) -> ApiResponse:
        """Retry once without the ``query`` parameter when the first call fails."""
        status, data = self.get(path, query, token)
        if status == 200 or "query" not in query:
            return status, data
        reduced = {key: value for key, value in query.items() if key != "query"}
        LOGGER.debug("Retrying %s without query parameter after status %s", path, status)
        return self.get(path, reduced, token)

    def iter_list(
        self,
        path: str,
        query: Optional[Dict[str, Any]],
        token: str,
        *,
        max_pages: int = 200,
    ) -> Generator[Dict[str, Any], None, None]:
        """Yield items of a paginated ``{"results": [...], "next": url}`` listing."""
        next_path: Optional[str] = path
        params: Optional[Dict[str, Any]] = dict(query or {})
        page = 0
        while next_path and page < max_pages:
            status, payload = self.get(next_path, params, token)
            if status != 200:
                LOGGER.warning("Listing %s stopped at page %s with status %s", path, page + 1, status)
                return
            items, next_path = _split_page(payload)
            LOGGER.info("Fetched %s items from %s page %s", len(items), path, page + 1)
            for item in items:
                yield item
            # ``next`` links already carry their query string.
            params = None
            page += 1

    def refresh_token(self, token: str) -> str:
        """Exchange ``token`` for a fresh one, returning the old token on failure."""
        LOGGER.info("Refreshing API token")
        for base in self.base_urls:
            url = self._build_url(base, "refresh-token")
            try:
                response = self._send(url, {}, token)
            except requests.RequestException as exc:
                LOGGER.warning("Token refresh failed at %s: %s", base, exc)
                continue
            data = self._decode(response)
            if response.status_code == 200 and isinstance(data, dict) and data.get("Bearer"):
                new_token = str(data["Bearer"])
                self.refreshed_token = new_token
                if self.on_token_refresh:
                    self.on_token_refresh(new_token)
                LOGGER.info("API token refreshed")
                return new_token
        LOGGER.warning("Token refresh failed; continuing with the current token")
        return token


def _is_throttle_detail(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    detail = data.get("detail")
    return isinstance(detail, str) and "gedrosselt" in detail.lower()


def _split_page(payload: Any) -> Tuple[Iterable[Dict[str, Any]], Optional[str]]:
    if isinstance(payload, list):
        return payload, None
    if not isinstance(payload, dict):
        return [], None
    items = payload.get("results")
    if items is None:
        items = payload.get("data", [])
    if isinstance(items, dict):
        items = list(items.values())
    return list(items or []), payload.get("next")
