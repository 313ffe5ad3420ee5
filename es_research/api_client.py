"""GitHub REST API client used for discovery, validation and file retrieval."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote

import requests
import requests_cache

from .config import Config
from .constants import API_DEFAULTS, HTTP_STATUS, RATE_LIMIT_CONFIG, RETRY_CONFIG
from .exceptions import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    RateLimitError,
)
from .models import FileEntry

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(slots=True)
class RateLimitState:
    """Throttle bookkeeping for one client.

    Calls are spaced at least ``min_interval`` seconds apart. When the last
    observed quota drops below ``remaining_floor`` the next call waits until
    the advertised reset time plus ``reset_buffer`` seconds.
    """

    min_interval: float = RATE_LIMIT_CONFIG['request_delay']
    remaining_floor: int = RATE_LIMIT_CONFIG['remaining_floor']
    reset_buffer: float = RATE_LIMIT_CONFIG['reset_buffer']
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[float] = None
    next_slot: float = 0.0

    def update_from_headers(self, headers: Any) -> None:
        """Record quota information from GitHub rate-limit response headers."""
        try:
            if "X-RateLimit-Remaining" in headers:
                self.remaining = int(headers["X-RateLimit-Remaining"])
            if "X-RateLimit-Limit" in headers:
                self.limit = int(headers["X-RateLimit-Limit"])
            if "X-RateLimit-Reset" in headers:
                self.reset_at = float(headers["X-RateLimit-Reset"])
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed rate limit headers: %s", dict(headers))

    def reserve(self, now: float) -> float:
        """Reserve the next call slot and return how long to wait for it.

        The slot is claimed before the caller suspends, so concurrent callers
        on one event loop are spaced out without a lock.
        """
        start = max(now, self.next_slot)
        if (
            self.remaining is not None
            and self.reset_at is not None
            and self.remaining < self.remaining_floor
        ):
            resume = self.reset_at + self.reset_buffer
            if resume > start:
                logger.warning(
                    "Rate limit nearly exhausted (%d left), waiting %.0fs for reset",
                    self.remaining,
                    resume - now,
                )
                start = resume
            # Quota is refreshed once the reset time has passed.
            self.remaining = None
        self.next_slot = start + self.min_interval
        return start - now

    async def throttle(self, clock: Callable[[], float] = time.time) -> None:
        """Cooperatively wait for the next call slot."""
        delay = self.reserve(clock())
        if delay > 0:
            await asyncio.sleep(delay)


class GitHubApiClient:
    """Thin wrapper around the GitHub REST API.

    This class handles:
    - Authentication
    - Retries with exponential backoff
    - Mapping HTTP failures onto the es-research error hierarchy
    - Rate-limit bookkeeping through an explicit :class:`RateLimitState`
    """

    def __init__(
        self,
        config: Config,
        session: Optional[requests.Session] = None,
        rate_limit: Optional[RateLimitState] = None,
        token: Optional[str] = None,
    ):
        """Initialize GitHub API client.

        Args:
            config: Configuration object
            session: Optional requests session, mainly for tests
            rate_limit: Optional throttle state; a fresh one is created per client
            token: Optional token overriding the configured credential

        Raises:
            ConfigurationError: If no token is configured
        """
        self.config = config
        self.session = session
        self.rate_limit = rate_limit or RateLimitState(
            min_interval=config.github.request_delay,
            remaining_floor=config.github.rate_limit_floor,
        )

        token = token or config.get_token()
        if not token:
            raise ConfigurationError(
                "GitHub token is not configured. Export GITHUB_TOKEN or run `es-research init`."
            )

        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": config.github.user_agent,
        }
        self._worker = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create requests session with optional caching."""
        if self.session is None:
            if self.config.github.enable_cache:
                cache_dir = self.config.output.cache_path
                cache_dir.mkdir(parents=True, exist_ok=True)
                # 304 has an empty body, so only full responses are cached.
                self.session = requests_cache.CachedSession(
                    cache_name=str(cache_dir / "api_cache"),
                    backend="sqlite",
                    expire_after=self.config.github.cache_expire_after,
                    allowable_codes=[200],
                    allowable_methods=["GET", "HEAD"],
                )
                logger.debug(
                    "Initialized cached session (expire_after=%ss)",
                    self.config.github.cache_expire_after,
                )
            else:
                self.session = requests.Session()
                logger.debug("Initialized regular session (caching disabled)")

            self.session.headers.update(self._headers)
        return self.session

    def _build_api_url(self, path: str) -> str:
        if not path or not path.strip():
            raise ValueError("API path cannot be empty")
        base = self.config.github.api_url.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    def _should_retry(self, exc: Exception) -> bool:
        if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
            return True
        if isinstance(exc, requests.HTTPError) and exc.response is not None:
            return exc.response.status_code in HTTP_STATUS['retryable_errors']
        return False

    @staticmethod
    def _is_rate_limited(response: Optional[requests.Response]) -> bool:
        if response is None:
            return False
        if response.status_code == 429:
            return True
        return (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        )

    def request_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute a GET request with retry logic and return the decoded JSON.

        Args:
            path: API endpoint path
            params: Optional query parameters

        Returns:
            Decoded JSON payload

        Raises:
            AuthenticationError: If GitHub rejects the token
            NotFoundError: If the resource does not exist
            RateLimitError: If the rate limit is still exhausted after retries
            ApiError: If the request fails after retries
        """
        logger.debug("Requesting %s params=%s", path, params)
        max_retries = self.config.github.max_retries
        last_exception: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                response = self._get_session().get(
                    self._build_api_url(path),
                    params=params,
                    timeout=self.config.github.timeout,
                )
                self._observe_quota(response.headers)

                if response.status_code == HTTP_STATUS['unauthorized']:
                    raise AuthenticationError("GitHub API rejected the provided token")
                if response.status_code == HTTP_STATUS['not_found']:
                    raise NotFoundError(f"Not found: {path}", response.status_code)

                response.raise_for_status()

                if getattr(response, "from_cache", False):
                    logger.debug("Response from cache for %s", path)

                try:
                    return response.json()
                except (json.JSONDecodeError, ValueError) as json_exc:
                    logger.error(
                        "Failed to decode JSON from %s (status %s): %s",
                        path,
                        response.status_code,
                        response.text[:200],
                    )
                    raise ApiError(
                        f"Invalid JSON response from {path}: {json_exc}", response.status_code
                    ) from json_exc

            except requests.HTTPError as exc:
                last_exception = exc
                if not self._should_retry(exc):
                    status_code = exc.response.status_code if exc.response is not None else None
                    raise ApiError(f"API request failed: {path}", status_code) from exc

            except requests.RequestException as exc:
                last_exception = exc
                if not self._should_retry(exc):
                    raise ApiError(f"Network error for {path}: {exc}") from exc

            if attempt < max_retries:
                sleep_time = RETRY_CONFIG['backoff_base'] ** attempt  # 1s, 2s, 4s
                logger.debug(
                    "Retrying %s after %ss (attempt %d/%d)", path, sleep_time, attempt + 1, max_retries
                )
                time.sleep(sleep_time)

        response = getattr(last_exception, "response", None)
        if self._is_rate_limited(response):
            raise RateLimitError(
                f"Rate limit exceeded for {path}", response.status_code
            ) from last_exception
        status_code = response.status_code if response is not None else None
        raise ApiError(
            f"Request failed after {max_retries} retries: {path}", status_code
        ) from last_exception

    def _observe_quota(self, headers: Any) -> None:
        """Record rate-limit headers, deferring them when running in a worker."""
        pending = getattr(self._worker, "quota_headers", None)
        if pending is None:
            self.rate_limit.update_from_headers(headers)
        else:
            pending.append(headers)

    async def call(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Run one blocking API method off the event loop, after throttling.

        Quota headers seen by the worker thread are applied to
        ``rate_limit`` back on the event loop once the call returns.
        """
        await self.rate_limit.throttle()
        observed: List[Any] = []

        def invoke() -> R:
            self._worker.quota_headers = observed
            try:
                return func(*args, **kwargs)
            finally:
                self._worker.quota_headers = None

        try:
            return await asyncio.to_thread(invoke)
        finally:
            for headers in observed:
                self.rate_limit.update_from_headers(headers)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def search_repositories(
        self,
        query: str,
        per_page: int = API_DEFAULTS['per_page'],
        page: int = 1,
        sort: str = "stars",
        order: str = "desc",
    ) -> List[Dict[str, Any]]:
        """Search repositories; returns the raw result items."""
        payload = self.request_json(
            "/search/repositories",
            {"q": query, "sort": sort, "order": order, "per_page": min(per_page, 100), "page": page},
        )
        return list(payload.get("items", []))

    def search_code(
        self, query: str, per_page: int = API_DEFAULTS['per_page'], page: int = 1
    ) -> List[Dict[str, Any]]:
        """Search code; returns the raw result items."""
        payload = self.request_json(
            "/search/code",
            {"q": query, "sort": "indexed", "order": "desc", "per_page": min(per_page, 100), "page": page},
        )
        return list(payload.get("items", []))

    def get_repository(self, full_name: str) -> Dict[str, Any]:
        """Get repository details."""
        return self.request_json(f"/repos/{full_name}")

    def get_tree(self, full_name: str, ref: str) -> List[FileEntry]:
        """List every file (blob) in a repository tree.

        Raises:
            NotFoundError: If the repository or ref does not exist
        """
        payload = self.request_json(
            f"/repos/{full_name}/git/trees/{quote(ref, safe='')}", {"recursive": "1"}
        )
        if payload.get("truncated"):
            logger.warning("Tree listing for %s was truncated by GitHub", full_name)
        return [
            FileEntry(path=item["path"], size=item.get("size"))
            for item in payload.get("tree", [])
            if item.get("type") == "blob"
        ]

    def get_file_content(self, full_name: str, path: str) -> Optional[str]:
        """Fetch and decode one file.

        Returns:
            The decoded text, or None if the path is missing or not a file
        """
        try:
            payload = self.request_json(f"/repos/{full_name}/contents/{quote(path)}")
        except NotFoundError:
            return None

        if not isinstance(payload, dict) or payload.get("type") != "file":
            return None
        content = payload.get("content")
        if content is None:
            return None
        if payload.get("encoding", "base64") != "base64":
            return content
        try:
            return base64.b64decode(content).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as exc:
            raise ApiError(f"Could not decode {path} in {full_name}: {exc}") from exc

    def fetch_manifest(self, full_name: str, path: str) -> str:
        """Fetch a manifest file, raising when it does not exist.

        Raises:
            NotFoundError: If the manifest is absent
            ApiError: For any other failure
        """
        content = self.get_file_content(full_name, path)
        if content is None:
            raise NotFoundError(f"{path} not found in {full_name}", HTTP_STATUS['not_found'])
        return content

    def get_rate_limit(self) -> Dict[str, Any]:
        """Return the core rate limit resource and record it."""
        payload = self.request_json("/rate_limit")
        core = payload.get("resources", {}).get("core", {})
        if core:
            fields = {"X-RateLimit-Remaining": "remaining", "X-RateLimit-Limit": "limit", "X-RateLimit-Reset": "reset"}
            self._observe_quota({header: core[key] for header, key in fields.items() if key in core})
        return core

    def close(self) -> None:
        """Close the requests session and release resources."""
        if self.session is not None:
            self.session.close()
            self.session = None

    def __enter__(self) -> "GitHubApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @staticmethod
    def clear_cache(cache_dir: Path) -> bool:
        """Delete the on-disk API response cache.

        Returns:
            True if a cache file was removed
        """
        cache_path = cache_dir / "api_cache.sqlite"
        if cache_path.exists():
            cache_path.unlink()
            logger.info("Cleared API cache: %s", cache_path)
            return True
        return False
