"""Tests for the GitHub REST client status handling and retries."""
import asyncio
import json
import pytest
from repoaudit.domain.errors import AuthError, ConfigError, NetworkError
from repoaudit.domain.models import FailureReason, FetchKey, FetchStatus, RepositoryRef
from repoaudit.infrastructure.github_client import (
    GitHubRestClient,
    HttpResponse,
    RetryPolicy,
    parse_next_link
)


KEY = FetchKey(RepositoryRef("acme", "app"), "package-lock.json")


async def no_sleep(seconds):
    return None


class ScriptedClient(GitHubRestClient):
    """Client whose HTTP layer replays canned responses."""

    def __init__(self, responses, token="test-token", max_attempts=3):
        super().__init__(
            token,
            max_concurrency=2,
            retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=0, max_delay=0),
            sleep=no_sleep
        )
        self.responses = list(responses)
        self.requests = []

    async def _send(self, url, params, accept):
        self.requests.append((url, params, accept))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def response(status, body=b"", headers=None):
    return HttpResponse(status=status, headers=headers or {}, body=body)


def search_body(names, total_count):
    return json.dumps({
        "total_count": total_count,
        "incomplete_results": False,
        "items": [{"repository": {"full_name": n}} for n in names],
    }).encode()


def test_fetch_file_found():
    """Test a 200 response returns the raw bytes."""
    client = ScriptedClient([response(200, b"content")])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.FOUND
    assert result.content == b"content"
    url, params, accept = client.requests[0]
    assert url == "https://api.github.com/repos/acme/app/contents/package-lock.json"
    assert params is None
    assert accept == "application/vnd.github.raw"


def test_fetch_file_passes_ref():
    """Test that a ref is sent as a query parameter."""
    client = ScriptedClient([response(200, b"x")])
    
    asyncio.run(client.fetch_file(FetchKey(RepositoryRef("acme", "app"), "a b/yarn.lock", ref="dev")))
    
    url, params, _ = client.requests[0]
    assert url.endswith("/contents/a%20b/yarn.lock")
    assert params == {"ref": "dev"}


def test_fetch_file_not_found_is_not_an_error():
    """Test that a 404 maps to NotFound without retries."""
    client = ScriptedClient([response(404)])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.NOT_FOUND
    assert len(client.requests) == 1


def test_fetch_file_retries_server_errors_then_succeeds():
    """Test backoff recovery from transient 5xx."""
    client = ScriptedClient([response(502), response(503), response(200, b"ok")])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.FOUND
    assert len(client.requests) == 3


def test_fetch_file_gives_up_after_retry_budget():
    """Test that exhausted retries surface as an Error result."""
    client = ScriptedClient([response(500)] * 3)
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.ERROR
    assert result.reason == FailureReason.SERVER_ERROR
    assert len(client.requests) == 3


def test_fetch_file_rate_limited_then_error():
    """Test 403/429 handling: retried, then Error(RATE_LIMITED)."""
    client = ScriptedClient([response(429), response(403), response(403)])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.ERROR
    assert result.reason == FailureReason.RATE_LIMITED


def test_fetch_file_network_failure_retried():
    """Test that connection errors are retried."""
    client = ScriptedClient([NetworkError("connection reset"), response(200, b"ok")])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.FOUND
    assert len(client.requests) == 2


def test_fetch_file_network_failure_exhausted():
    """Test that persistent connection errors become Error(NETWORK_ERROR)."""
    client = ScriptedClient([NetworkError("connection reset")] * 3)
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.reason == FailureReason.NETWORK_ERROR


def test_fetch_file_unauthorized_is_fatal():
    """Test that a 401 raises instead of producing a per-repo result."""
    client = ScriptedClient([response(401)])
    
    with pytest.raises(AuthError):
        asyncio.run(client.fetch_file(KEY))
    assert len(client.requests) == 1


def test_missing_token_fails_without_request():
    """Test that no request is made without a token."""
    client = ScriptedClient([response(200)], token=None)
    
    with pytest.raises(AuthError):
        asyncio.run(client.fetch_file(KEY))
    assert client.requests == []


def test_unexpected_client_error_is_not_retried():
    """Test that other 4xx statuses are recorded once."""
    client = ScriptedClient([response(451)])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.reason == FailureReason.HTTP_ERROR
    assert len(client.requests) == 1


def test_rate_limit_headers_update_shared_state():
    """Test that response headers resynchronise the limiter."""
    headers = {"X-RateLimit-Remaining": "77", "X-RateLimit-Reset": "1893456000", "X-RateLimit-Resource": "core"}
    client = ScriptedClient([response(200, b"x", headers)])
    
    asyncio.run(client.fetch_file(KEY))
    
    assert client.limiter.state.remaining == 77


def test_retry_after_pauses_limiter():
    """Test that a Retry-After header pauses new requests."""
    client = ScriptedClient([response(403, headers={"Retry-After": "0"}), response(200, b"x")])
    
    result = asyncio.run(client.fetch_file(KEY))
    
    assert result.status == FetchStatus.FOUND
    assert client.limiter._paused_until is not None


def test_search_code_follows_pagination():
    """Test Link header pagination through search results."""
    next_link = '<https://api.github.com/search/code?q=x&page=2>; rel="next", <https://api.github.com/search/code?q=x&page=2>; rel="last"'
    client = ScriptedClient([
        response(200, search_body(["acme/app", "acme/lib"], 3), {"Link": next_link}),
        response(200, search_body(["acme/app"], 3)),
    ])
    
    async def collect():
        return [page async for page in client.search_code("org:acme lodash")]
    
    pages = asyncio.run(collect())
    
    assert [len(p.repositories) for p in pages] == [2, 1]
    assert pages[0].total_count == 3
    assert client.requests[0][1] == {"q": "org:acme lodash", "per_page": 100}
    assert client.requests[1] == ("https://api.github.com/search/code?q=x&page=2", None, "application/vnd.github+json")


def test_search_code_stops_on_refused_page():
    """Test that a 422 past the ceiling ends pagination quietly."""
    next_link = '<https://api.github.com/search/code?page=11>; rel="next"'
    client = ScriptedClient([
        response(200, search_body(["acme/app"], 5000), {"Link": next_link}),
        response(422, b'{"message": "Cannot access beyond the first 1000 results"}'),
    ])
    
    async def collect():
        return [page async for page in client.search_code("x")]
    
    pages = asyncio.run(collect())
    
    assert len(pages) == 1


def test_search_code_invalid_query_is_config_error():
    """Test that a 422 on the first page rejects the query."""
    client = ScriptedClient([response(422, b'{"message": "Validation Failed"}')])
    
    async def collect():
        return [page async for page in client.search_code("bad:")]
    
    with pytest.raises(ConfigError):
        asyncio.run(collect())


def test_search_code_counts_unusable_hits():
    """Test that hits without a usable repository are counted, not dropped silently."""
    body = json.dumps({
        "total_count": 3,
        "incomplete_results": False,
        "items": [
            {"repository": {"full_name": "acme/app"}},
            {"repository": {}},
            {"repository": {"full_name": "not-a-repo"}},
        ],
    }).encode()
    client = ScriptedClient([response(200, body)])
    
    async def collect():
        return [page async for page in client.search_code("x")]
    
    pages = asyncio.run(collect())
    
    assert pages[0].repositories == (RepositoryRef("acme", "app"),)
    assert pages[0].skipped_hits == 2


def test_parse_next_link():
    """Test Link header parsing."""
    assert parse_next_link('<https://a/2>; rel="next", <https://a/9>; rel="last"') == "https://a/2"
    assert parse_next_link('<https://a/9>; rel="last"') is None
    assert parse_next_link(None) is None
