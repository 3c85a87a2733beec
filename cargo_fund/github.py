"""
Retrieval of ``.github/FUNDING.yml`` through the Github API.

Requests go through PyGithub.  Each repository is fetched at most once per
run: :class:`FundingFetcher` keeps one :class:`~concurrent.futures.Future`
per :class:`~cargo_fund.models.RepoKey`, so crates that share a repository,
whether asked for one after the other or concurrently, share one request
and one outcome (file contents, absence, or error).
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor

import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from cargo_fund import __version__
from cargo_fund.errors import FetchError, InvalidTokenError
from cargo_fund.logging import get_logger
from cargo_fund.models import RawDeclaration, RepoKey

logger = get_logger("github")

FUNDING_PATH = ".github/FUNDING.yml"
DEFAULT_TIMEOUT = 30
DEFAULT_JOBS = 8


def make_client(token: str, timeout: float = DEFAULT_TIMEOUT, jobs: int = DEFAULT_JOBS) -> Github:
    """Create an authenticated Github client.

    Retries are disabled so that an exhausted rate limit surfaces as an
    error instead of a long sleep.

    Args:
        token: Personal access token with the ``public_repo`` scope.
        timeout: Per-request timeout in seconds.
        jobs: Number of concurrent fetches; sizes the connection pool.

    Returns:
        A ``github.Github`` instance.
    """
    return Github(
        auth=Auth.Token(token),
        timeout=timeout,
        user_agent=f"cargo-fund/{__version__}",
        retry=None,
        pool_size=jobs,
        lazy=True,
    )


class FundingFetcher:
    """Fetch funding declarations concurrently, once per repository.

    Args:
        client: A ``github.Github`` client, or anything with the same
            ``get_repo(full_name).get_contents(path)`` surface.
        max_workers: Upper bound on concurrent requests.
    """

    def __init__(self, client: Github, max_workers: int = DEFAULT_JOBS):
        self._client = client
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="cargo-fund"
        )
        self._lock = threading.Lock()
        self._futures: dict[RepoKey, Future[RawDeclaration | None]] = {}

    def __enter__(self) -> FundingFetcher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def submit(self, key: RepoKey) -> Future[RawDeclaration | None]:
        """Start fetching ``key`` unless a fetch is already known for it."""
        with self._lock:
            future = self._futures.get(key)
            if future is None:
                future = self._executor.submit(self._fetch, key)
                self._futures[key] = future
            return future

    def fetch(self, key: RepoKey) -> RawDeclaration | None:
        """Return the funding declaration of ``key``, or ``None`` if it has none.

        Raises:
            InvalidTokenError: Github rejected the API token.
            FetchError: The request failed, timed out or was rate limited.
        """
        return self.submit(key).result()

    def _fetch(self, key: RepoKey) -> RawDeclaration | None:
        logger.debug("fetching %s from %s", FUNDING_PATH, key)
        try:
            repo = self._client.get_repo(key.full_name)
            contents = repo.get_contents(FUNDING_PATH)
        except UnknownObjectException:
            logger.debug("%s has no %s", key, FUNDING_PATH)
            return None
        except BadCredentialsException as exc:
            raise InvalidTokenError(key.full_name) from exc
        except RateLimitExceededException as exc:
            raise FetchError(key.full_name, "Github API rate limit exceeded") from exc
        except GithubException as exc:
            raise FetchError(key.full_name, f"Github API returned unexpected status: {exc.status}") from exc
        except requests.exceptions.RequestException as exc:
            raise FetchError(key.full_name, f"request failed: {exc}") from exc
        if isinstance(contents, list):
            # The path is a directory.
            return None
        return RawDeclaration(contents.decoded_content.decode("utf-8", errors="replace"))


__all__ = ["FUNDING_PATH", "FundingFetcher", "make_client"]
