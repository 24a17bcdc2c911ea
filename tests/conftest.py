"""Shared fakes for the GitHub port."""
import asyncio
from typing import Dict, List, Optional
import pytest
from repoaudit.config import Settings
from repoaudit.domain.errors import AuthError
from repoaudit.domain.github_interface import IGitHubClient
from repoaudit.domain.models import FetchKey, FetchResult, RepositoryRef, SearchPage


class FakeGitHubClient(IGitHubClient):
    """In-memory GitHub client that records every call.

    files maps "owner/name" to file content (bytes) or a FetchResult; a
    repository missing from the map answers NotFound.
    """

    def __init__(
        self,
        files: Optional[Dict[str, object]] = None,
        pages: Optional[List[SearchPage]] = None,
        delay: float = 0.0,
        reject_token: bool = False,
        auth_error_for: Optional[str] = None
    ):
        self.files = {k.lower(): v for k, v in (files or {}).items()}
        self.pages = pages or []
        self.delay = delay
        self.reject_token = reject_token
        self.auth_error_for = auth_error_for
        self.fetch_calls: List[FetchKey] = []
        self.search_queries: List[str] = []
        self.verify_calls = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    @property
    def network_calls(self) -> int:
        return len(self.fetch_calls) + len(self.search_queries) + self.verify_calls

    async def verify_token(self) -> str:
        self.verify_calls += 1
        if self.reject_token:
            raise AuthError("bad credentials")
        return "octocat"

    async def search_code(self, query: str, per_page: int = 100):
        self.search_queries.append(query)
        for page in self.pages:
            yield page

    async def fetch_file(self, key: FetchKey) -> FetchResult:
        self.fetch_calls.append(key)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.auth_error_for and key.repository.full_name.lower() == self.auth_error_for:
                raise AuthError("token revoked")
            value = self.files.get(key.repository.full_name.lower())
            if value is None:
                return FetchResult.not_found()
            if isinstance(value, FetchResult):
                return value
            return FetchResult.found(value)
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


def repo_page(names: List[str], total_count: int, incomplete: bool = False, skipped: int = 0) -> SearchPage:
    """Build a search page from "owner/name" strings."""
    return SearchPage(
        total_count=total_count,
        incomplete_results=incomplete,
        repositories=tuple(RepositoryRef.parse(n) for n in names),
        skipped_hits=skipped
    )


@pytest.fixture
def settings():
    return Settings(token="test-token", max_concurrency=4, search_ceiling=1000)
