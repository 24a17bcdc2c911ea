"""Main entry point for the repository auditor.

Audits a package's resolved versions in lockfiles, or searches a file for a
literal string, across a list of GitHub repositories or the results of a
code search.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv
from repoaudit.application.audit_service import AuditService
from repoaudit.application.report import render_report
from repoaudit.config import (
    DEFAULT_ORG_CONFIG,
    DEFAULT_REPOS_PATH,
    AuditConfig,
    Settings,
    load_default_org,
    save_default_org
)
from repoaudit.domain.errors import AuditError, AuthError, ConfigError
from repoaudit.infrastructure.file_cache import FileCacheStore
from repoaudit.infrastructure.github_client import GitHubRestClient, RetryPolicy


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3


def build_parser() -> argparse.ArgumentParser:
    """Command-line options."""
    parser = argparse.ArgumentParser(
        description="Audit npm lockfile versions or search for a string in a file "
                    "across GitHub repositories."
    )
    parser.add_argument("-r", "--repos", default=DEFAULT_REPOS_PATH,
                        help="JSON file with a list of 'owner/name' repositories "
                             f"(default: {DEFAULT_REPOS_PATH}); ignored when --query is given")
    parser.add_argument("-q", "--query",
                        help="GitHub code search query; discovers repositories dynamically "
                             "and writes them to --repos")
    parser.add_argument("-o", "--org",
                        help="Organization scoping --query (default: 'org' from .repoaudit.toml)")
    parser.add_argument("-p", "--package", help="Package whose resolved versions to report")
    parser.add_argument("-f", "--filename",
                        help="File to fetch from each repository (default for --package: package-lock.json)")
    parser.add_argument("-s", "--search", help="Literal string to search for; requires --filename")
    parser.add_argument("-i", "--ignore-case", action="store_true",
                        help="Case-insensitive --search")
    parser.add_argument("--ref", help="Branch, tag or commit to read instead of the default branch")
    parser.add_argument("-c", "--clear-cache", action="store_true",
                        help="Clear the cache and fetch everything from GitHub")
    return parser


def resolve_default_org(path: str = DEFAULT_ORG_CONFIG) -> Optional[str]:
    """Default organization for scoping searches.

    Read from the config file when it exists. Otherwise an interactive user
    is asked once and the answer (possibly empty) is written to the file.
    """
    if Path(path).exists():
        return load_default_org(path)
    if not sys.stdin.isatty():
        logger.info(f"No {path} and not interactive; searching without a default organization")
        return None

    org = input("Enter default GitHub organization (or leave empty to skip): ").strip()
    try:
        save_default_org(org, path)
    except OSError as e:
        logger.warning(f"Failed to write {path}: {e}. Using '{org}' for this run only")
    else:
        logger.info(f"Created {path} with default org '{org}'")
    return org or None


async def run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one audit and print the report."""
    org = args.org
    if org is None and args.query:
        org = resolve_default_org()
    config = AuditConfig.from_options(
        repos=args.repos,
        query=args.query,
        org=org,
        package=args.package,
        filename=args.filename,
        search=args.search,
        ref=args.ref,
        ignore_case=args.ignore_case,
        clear_cache=args.clear_cache,
        save_discovered=True
    )

    github_client = GitHubRestClient(
        settings.token,
        max_concurrency=settings.max_concurrency,
        retry_policy=RetryPolicy(max_attempts=settings.max_retries)
    )
    cache = FileCacheStore(settings.cache_dir)
    service = AuditService(github_client=github_client, cache=cache, settings=settings)

    try:
        report = await service.run(config)
    finally:
        await service.close()

    print(render_report(report))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Parse options, run the audit and map fatal errors to exit codes."""
    # Load environment variables from .env or env file
    load_dotenv('.env') or load_dotenv('env')

    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(str(e))
        return EXIT_CONFIG_ERROR

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        return asyncio.run(run(args, settings))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except AuthError as e:
        logger.error(f"Authentication failed: {e}")
        return EXIT_AUTH_ERROR
    except AuditError as e:
        logger.error(f"Audit failed: {e}", exc_info=True)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
