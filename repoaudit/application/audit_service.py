"""Audit service orchestrating discovery, cached fetching and analysis."""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Sequence
from repoaudit.application.analyzer import ContentAnalyzer
from repoaudit.application.discovery import RepositoryDiscoverer
from repoaudit.application.report import sort_outcomes
from repoaudit.config import AuditConfig, Settings
from repoaudit.domain.cache_interface import ICacheStore
from repoaudit.domain.github_interface import IGitHubClient
from repoaudit.domain.models import (
    AnalysisOutcome,
    AuditMetrics,
    AuditMode,
    AuditReport,
    CacheEntry,
    FetchFailed,
    FetchKey,
    FetchStatus,
    FileAbsent,
    RepositoryRef
)


logger = logging.getLogger(__name__)


class AuditService:
    """Application service for auditing files across repositories.

    Orchestrates discovery, the fetch cache, the GitHub client and content
    analysis. Only configuration and authentication errors abort a run;
    every other failure is recorded against its repository.
    """

    def __init__(
        self,
        github_client: IGitHubClient,
        cache: ICacheStore,
        settings: Settings
    ):
        """Initialize audit service.

        Args:
            github_client: GitHub API client implementation
            cache: Fetch cache implementation
            settings: Environment settings (token, concurrency, search ceiling)
        """
        self._github_client = github_client
        self._cache = cache
        self._settings = settings
        self._discoverer = RepositoryDiscoverer(github_client, settings.search_ceiling)
        self._cache_hits = 0
        self._fetches = 0

    async def run(self, config: AuditConfig) -> AuditReport:
        """Run one audit.

        Args:
            config: Validated run options

        Returns:
            AuditReport with one outcome per repository, in report order

        Raises:
            ConfigError: Missing token, bad repository list or bad query
            AuthError: The API rejected the token
        """
        start_time = time.time()
        self._cache_hits = 0
        self._fetches = 0

        # Fails before any network activity
        self._settings.require_token()
        await self._github_client.verify_token()

        discovery = await self._discoverer.discover(
            config.repos_path,
            query=config.query,
            org=config.org,
            save_discovered=config.save_discovered
        )
        repositories = discovery.repositories

        if config.mode == AuditMode.LIST:
            logger.info(f"Listing {len(repositories)} repositories; no content fetched")
            return AuditReport(
                mode=config.mode,
                repositories=tuple(sorted(repositories, key=lambda r: r.full_name.lower())),
                partial=discovery.partial,
                metrics=AuditMetrics(repositories=len(repositories),
                                     duration_seconds=time.time() - start_time)
            )

        if config.clear_cache:
            await asyncio.to_thread(self._cache.clear)

        analyzer = ContentAnalyzer(
            mode=config.mode,
            filename=config.filename,
            package=config.package,
            search=config.search,
            ignore_case=config.ignore_case
        )

        logger.info(
            f"Auditing {config.filename} in {len(repositories)} repositories "
            f"with up to {self._settings.max_concurrency} concurrent workers"
        )
        outcomes = await self._run_workers(repositories, config, analyzer)

        failures = sum(1 for outcome in outcomes.values() if isinstance(outcome, FetchFailed))
        duration = time.time() - start_time
        metrics = AuditMetrics(
            repositories=len(repositories),
            cache_hits=self._cache_hits,
            fetches=self._fetches,
            failures=failures,
            duration_seconds=duration
        )

        logger.info(
            f"Audit completed: {len(repositories)} repositories in {duration:.2f} seconds "
            f"({self._cache_hits} cached, {self._fetches} fetched, {failures} failed)"
        )

        return AuditReport(
            mode=config.mode,
            repositories=tuple(repositories),
            outcomes=tuple(sort_outcomes(outcomes.values(), config.mode)),
            partial=discovery.partial,
            package=config.package,
            search=config.search,
            filename=config.filename,
            metrics=metrics
        )

    async def _run_workers(
        self,
        repositories: Sequence[RepositoryRef],
        config: AuditConfig,
        analyzer: ContentAnalyzer
    ) -> Dict[RepositoryRef, AnalysisOutcome]:
        """Drain a queue of repositories with a fixed pool of workers.

        A fatal error in one worker cancels the others and propagates.
        """
        queue: asyncio.Queue = asyncio.Queue()
        for repo in repositories:
            queue.put_nowait(repo)

        outcomes: Dict[RepositoryRef, AnalysisOutcome] = {}
        worker_count = max(1, min(self._settings.max_concurrency, len(repositories)))

        async def worker() -> None:
            while True:
                try:
                    repo = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcomes[repo] = await self._process(repo, config, analyzer)

        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return outcomes

    async def _process(
        self,
        repo: RepositoryRef,
        config: AuditConfig,
        analyzer: ContentAnalyzer
    ) -> AnalysisOutcome:
        """Cache lookup, fetch on miss, then analysis for one repository.

        Cache reads and writes run in worker threads.
        """
        key = FetchKey(repository=repo, file_path=config.filename, ref=config.ref)

        entry = await asyncio.to_thread(self._cache.get, key)
        if entry is not None:
            self._cache_hits += 1
            logger.debug(f"Cache hit for {repo} ({entry.status.value})")
        else:
            self._fetches += 1
            result = await self._github_client.fetch_file(key)
            if result.status == FetchStatus.ERROR:
                logger.warning(f"Fetching {config.filename} from {repo} failed: {result.detail}")
                return FetchFailed(repository=repo, reason=result.reason, detail=result.detail)

            entry = CacheEntry(
                key=key,
                status=result.status,
                fetched_at=datetime.now(timezone.utc),
                content=result.content
            )
            await asyncio.to_thread(self._cache.put, entry)

        if entry.status == FetchStatus.NOT_FOUND:
            return FileAbsent(repository=repo)
        return analyzer.analyze(repo, entry.content or b"")

    async def close(self) -> None:
        """Close connections."""
        await self._github_client.close()
        self._cache.close()
