"""Repository discovery: a static repository list or a code-search query."""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from repoaudit.domain.errors import ConfigError
from repoaudit.domain.github_interface import IGitHubClient
from repoaudit.domain.models import DiscoveryResult, PartialResults, RepositoryRef


logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 100

# GitHub code search stops paging after 1000 results
DEFAULT_SEARCH_CEILING = 1000


def _dedupe(repositories: Iterable[RepositoryRef]) -> List[RepositoryRef]:
    """Drop case-insensitive duplicates, keeping the first spelling."""
    seen: Dict[RepositoryRef, RepositoryRef] = {}
    for repo in repositories:
        seen.setdefault(repo, repo)
    return list(seen.values())


def load_repo_list(path: str) -> List[RepositoryRef]:
    """Load a JSON array of "owner/name" strings.

    Args:
        path: Path to the repository list file

    Returns:
        Deduplicated repositories in file order

    Raises:
        ConfigError: If the file is missing, unreadable, not a JSON array, or
            contains any malformed entry
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Repository list {path} not found") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read repository list {path}: {e}") from e

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"Repository list {path} is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ConfigError(f"Repository list {path} must be a JSON array of 'owner/name' strings")

    repositories = []
    for index, entry in enumerate(data):
        try:
            repositories.append(RepositoryRef.parse(entry))
        except ValueError as e:
            raise ConfigError(f"Repository list {path}, entry {index}: {e}") from e

    return _dedupe(repositories)


def save_repo_list(path: str, repositories: Iterable[RepositoryRef]) -> None:
    """Write repositories as a sorted, pretty-printed JSON array."""
    names = sorted(repo.full_name for repo in repositories)
    Path(path).write_text(json.dumps(names, indent=2) + "\n", encoding="utf-8")
    logger.info(f"Wrote {len(names)} repositories to {path}")


def build_search_query(query: str, org: Optional[str]) -> str:
    """Scope a search query to an organization when one is given."""
    if org:
        return f"org:{org} {query}"
    return query


class RepositoryDiscoverer:
    """Resolves the set of repositories a run works on.

    A search query takes precedence over a repository list: when both are
    configured, the query is used and the list file is not read.
    """

    def __init__(self, github_client: IGitHubClient, search_ceiling: int = DEFAULT_SEARCH_CEILING):
        """Initialize discoverer.

        Args:
            github_client: GitHub API client implementation
            search_ceiling: Maximum number of search results to consume
        """
        if search_ceiling < 1:
            raise ValueError("search_ceiling must be at least 1")
        self._github_client = github_client
        self._search_ceiling = search_ceiling

    async def discover(
        self,
        repos_path: Optional[str],
        query: Optional[str] = None,
        org: Optional[str] = None,
        save_discovered: bool = False
    ) -> DiscoveryResult:
        """Resolve repositories from a query or a list file.

        Args:
            repos_path: Path of the JSON repository list
            query: Code-search query; enables dynamic discovery
            org: Organization that scopes the query
            save_discovered: Write search results back to repos_path

        Returns:
            DiscoveryResult with deduplicated repositories
        """
        if query:
            result = await self.search(query, org)
            if save_discovered and repos_path:
                try:
                    save_repo_list(repos_path, result.repositories)
                except OSError as e:
                    logger.warning(f"Failed to write {repos_path}: {e}")
            return result

        if not repos_path:
            raise ConfigError("Either a repository list or a search query is required")

        repositories = load_repo_list(repos_path)
        logger.info(f"Loaded {len(repositories)} repositories from {repos_path}")
        return DiscoveryResult(repositories=tuple(repositories))

    async def search(self, query: str, org: Optional[str] = None) -> DiscoveryResult:
        """Collect repositories matching a code search.

        Stops at the result ceiling. Whenever fewer results were consumed than
        the API reported, the result carries a PartialResults signal.
        """
        search_query = build_search_query(query, org)
        logger.info(f"Searching code with query {search_query!r}")

        collected: List[RepositoryRef] = []
        consumed = 0
        total_count = 0
        incomplete = False
        hit_ceiling = False

        pages = self._github_client.search_code(search_query, per_page=SEARCH_PAGE_SIZE)
        try:
            async for page in pages:
                total_count = max(total_count, page.total_count)
                incomplete = incomplete or page.incomplete_results
                # Unusable hits still count as consumed search results
                consumed += min(page.skipped_hits, max(0, self._search_ceiling - consumed))
                for repo in page.repositories:
                    if consumed >= self._search_ceiling:
                        hit_ceiling = True
                        break
                    collected.append(repo)
                    consumed += 1
                if hit_ceiling or consumed >= self._search_ceiling:
                    break
        finally:
            await pages.aclose()

        hit_ceiling = hit_ceiling or (consumed >= self._search_ceiling and total_count > consumed)
        repositories = _dedupe(collected)

        partial = None
        if hit_ceiling or incomplete or total_count > consumed:
            if hit_ceiling:
                reason = f"search result ceiling of {self._search_ceiling} reached"
            elif incomplete:
                reason = "API reported incomplete results"
            else:
                reason = "API stopped paginating before all results"
            partial = PartialResults(total_count=total_count, retrieved=consumed, reason=reason)
            logger.warning(
                f"Partial results: {reason}; retrieved {consumed} of {total_count} search hits"
            )

        logger.info(f"Discovered {len(repositories)} repositories from {consumed} search hits")
        return DiscoveryResult(repositories=tuple(repositories), partial=partial)
