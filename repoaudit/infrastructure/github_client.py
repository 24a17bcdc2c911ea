"""GitHub API client implementation with rate limiting and retry logic."""
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional
from urllib.parse import quote
import aiohttp
from gql import gql, Client
from gql.transport.aiohttp import AIOHTTPTransport
from gql.transport.exceptions import TransportError, TransportServerError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)
from repoaudit.domain.errors import (
    AuditError,
    AuthError,
    ConfigError,
    NetworkError,
    RateLimitError,
    ServerError
)
from repoaudit.domain.github_interface import IGitHubClient
from repoaudit.domain.models import (
    FailureReason,
    FetchKey,
    FetchResult,
    RepositoryRef,
    SearchPage
)
from repoaudit.infrastructure.rate_limit import RateLimiter


logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "repoaudit/0.1"

ACCEPT_RAW = "application/vnd.github.raw"
ACCEPT_JSON = "application/vnd.github+json"

TRANSIENT_ERRORS = (RateLimitError, NetworkError, ServerError)

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient failures."""
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0


@dataclass(frozen=True)
class HttpResponse:
    """The parts of an HTTP response the client looks at."""
    status: int
    headers: Mapping[str, str]
    body: bytes


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """Extract the rel="next" URL from a Link header."""
    if not link_header:
        return None
    for part in link_header.split(","):
        match = _NEXT_LINK.search(part)
        if match:
            return match.group(1)
    return None


def _retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class GitHubRestClient(IGitHubClient):
    """GitHub REST client for code search and file retrieval.

    Implements the IGitHubClient port. Every request passes through a shared
    RateLimiter and is retried with exponential backoff on rate limiting,
    server errors and network failures. A GraphQL probe validates the token
    before a run fans out.
    """

    VIEWER_QUERY = gql("""
        query Viewer {
            viewer {
                login
            }
            rateLimit {
                remaining
                resetAt
            }
        }
    """)

    def __init__(
        self,
        access_token: Optional[str],
        max_concurrency: int = 100,
        retry_policy: Optional[RetryPolicy] = None,
        limiter: Optional[RateLimiter] = None,
        search_limiter: Optional[RateLimiter] = None,
        api_url: str = GITHUB_API_URL,
        graphql_url: str = GITHUB_GRAPHQL_URL,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize GitHub client.

        Args:
            access_token: GitHub personal access token
            max_concurrency: Maximum simultaneous in-flight file requests
            retry_policy: Backoff settings for transient failures
            limiter: Throttle for the "core" REST resource
            search_limiter: Throttle for the "search" resource
            api_url: REST API base URL
            graphql_url: GraphQL endpoint
            timeout: Per-request timeout in seconds
            sleep: Coroutine used for backoff waits
        """
        self._access_token = access_token
        self._retry_policy = retry_policy or RetryPolicy()
        self.limiter = limiter or RateLimiter(max_concurrency, resource="core", sleep=sleep)
        # Code search has its own small quota and runs sequentially
        self.search_limiter = search_limiter or RateLimiter(1, resource="search", sleep=sleep)
        self._api_url = api_url.rstrip("/")
        self._graphql_url = graphql_url
        self._timeout = timeout
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None

    def _require_token(self) -> str:
        if not self._access_token:
            raise AuthError("No GitHub access token configured")
        return self._access_token

    async def _init_session(self) -> aiohttp.ClientSession:
        """Initialize the HTTP session (lazy initialization)."""
        if self._session is None:
            headers = {
                "Authorization": f"Bearer {self._require_token()}",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            }
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
        return self._session

    async def _send(self, url: str, params: Optional[dict], accept: str) -> HttpResponse:
        """Issue one GET request.

        Raises:
            NetworkError: On connection failure or timeout
        """
        session = await self._init_session()
        try:
            async with session.get(url, params=params, headers={"Accept": accept}) as resp:
                body = await resp.read()
                return HttpResponse(status=resp.status, headers=resp.headers.copy(), body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Request to {url} failed: {e!r}") from e

    async def _request(
        self,
        url: str,
        params: Optional[dict],
        accept: str,
        limiter: RateLimiter
    ) -> HttpResponse:
        """Send one request inside a limiter slot and classify the status.

        Returns:
            Responses that are not transient failures (2xx, 404, other 4xx)

        Raises:
            AuthError: On 401
            RateLimitError: On 403/429
            ServerError: On 5xx
            NetworkError: On connection failure
        """
        self._require_token()
        async with limiter.slot():
            logger.debug(f"GET {url} params={params}")
            resp = await self._send(url, params, accept)

        await limiter.update_from_headers(resp.headers)

        if resp.status == 401:
            raise AuthError(f"GitHub rejected the access token (401) for {url}")
        if resp.status in (403, 429):
            retry_after = _retry_after_seconds(resp.headers)
            if retry_after is not None:
                await limiter.pause(retry_after)
            raise RateLimitError(f"Rate limited ({resp.status}) on {url}", retry_after)
        if resp.status >= 500:
            raise ServerError(f"Server error ({resp.status}) on {url}", resp.status)
        return resp

    async def _request_with_retry(
        self,
        url: str,
        params: Optional[dict],
        accept: str,
        limiter: RateLimiter
    ) -> HttpResponse:
        """Retry transient failures with exponential backoff.

        Raises:
            The last transient error once the retry budget is spent
        """
        policy = self._retry_policy
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.base_delay, min=0, max=policy.max_delay),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True
        )
        async for attempt in retrying:
            with attempt:
                response = await self._request(url, params, accept, limiter)
        return response

    async def fetch_file(self, key: FetchKey) -> FetchResult:
        """Fetch raw file content via the contents API.

        Args:
            key: Repository, file path and optional ref

        Returns:
            Found(bytes), NotFound, or Error with the failure reason

        Raises:
            AuthError: If the token is missing or rejected
        """
        repo = key.repository
        url = f"{self._api_url}/repos/{repo.owner}/{repo.name}/contents/{quote(key.file_path)}"
        params = {"ref": key.ref} if key.ref else None

        try:
            resp = await self._request_with_retry(url, params, ACCEPT_RAW, self.limiter)
        except RateLimitError as e:
            return FetchResult.error(FailureReason.RATE_LIMITED, str(e))
        except ServerError as e:
            return FetchResult.error(FailureReason.SERVER_ERROR, str(e))
        except NetworkError as e:
            return FetchResult.error(FailureReason.NETWORK_ERROR, str(e))

        if resp.status == 200:
            logger.debug(f"Fetched {key.file_path} from {repo} ({len(resp.body)} bytes)")
            return FetchResult.found(resp.body)
        if resp.status == 404:
            return FetchResult.not_found()
        return FetchResult.error(
            FailureReason.HTTP_ERROR,
            f"Unexpected status {resp.status} fetching {key.file_path} from {repo}"
        )

    async def search_code(self, query: str, per_page: int = 100) -> AsyncIterator[SearchPage]:
        """Page through code-search results.

        Follows the Link header until there is no next page. The API refuses
        pages past its result ceiling with 422; that ends pagination quietly
        and the caller sees fewer results than total_count.

        Args:
            query: Search query including any org: qualifier
            per_page: Results per page (max 100)

        Yields:
            SearchPage per page of results
        """
        url: Optional[str] = f"{self._api_url}/search/code"
        params: Optional[dict] = {"q": query, "per_page": min(per_page, 100)}
        page = 0

        while url:
            resp = await self._request_with_retry(url, params, ACCEPT_JSON, self.search_limiter)
            page += 1

            if resp.status == 422:
                if page == 1:
                    raise ConfigError(f"GitHub rejected search query {query!r}: {resp.body[:200]!r}")
                logger.warning(f"Search refused page {page}; stopping pagination")
                return
            if resp.status != 200:
                raise AuditError(f"Code search failed with status {resp.status}")

            try:
                data = json.loads(resp.body)
            except ValueError as e:
                raise AuditError(f"Code search returned invalid JSON: {e}") from e

            repositories = []
            skipped = 0
            for item in data.get("items", []):
                full_name = ((item or {}).get("repository") or {}).get("full_name")
                try:
                    repositories.append(RepositoryRef.parse(full_name))
                except ValueError:
                    logger.warning(f"Skipping search hit with odd repository name {full_name!r}")
                    skipped += 1

            logger.info(f"Search page {page}: {len(repositories) + skipped} hits")
            yield SearchPage(
                total_count=int(data.get("total_count", 0)),
                incomplete_results=bool(data.get("incomplete_results", False)),
                repositories=tuple(repositories),
                skipped_hits=skipped
            )

            url = parse_next_link(resp.headers.get("Link"))
            params = None

    async def verify_token(self) -> str:
        """Validate the token with a GraphQL viewer query.

        Returns:
            Login of the authenticated user, or an empty string when the probe
            could not reach GitHub

        Raises:
            AuthError: If the token is missing or rejected
        """
        token = self._require_token()
        transport = AIOHTTPTransport(
            url=self._graphql_url,
            headers={"Authorization": f"Bearer {token}", "User-Agent": USER_AGENT}
        )
        client = Client(transport=transport, fetch_schema_from_transport=False)

        try:
            async with client as session:
                result = await session.execute(self.VIEWER_QUERY)
        except TransportServerError as e:
            if e.code == 401:
                raise AuthError("GitHub rejected the access token (401)") from e
            logger.warning(f"Token probe failed: {e}")
            return ""
        except (TransportError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Token probe failed: {e}")
            return ""

        login = result.get("viewer", {}).get("login", "")
        rate_limit = result.get("rateLimit", {})
        logger.info(
            f"Authenticated as {login}; GraphQL rate limit remaining: "
            f"{rate_limit.get('remaining')}, resets at: {rate_limit.get('resetAt')}"
        )
        return login

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
