"""Run configuration: environment settings and validated audit options."""
import json
import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from repoaudit.application.lockfiles import DEFAULT_LOCKFILE
from repoaudit.domain.errors import ConfigError
from repoaudit.domain.models import AuditMode


logger = logging.getLogger(__name__)

TOKEN_VARIABLES = ("GITHUB_TOKEN", "GH_TOKEN", "GHP_TOKEN")

DEFAULT_REPOS_PATH = "repos.json"
DEFAULT_CACHE_DIR = ".cache"
DEFAULT_MAX_CONCURRENCY = 100
DEFAULT_SEARCH_CEILING = 1000
DEFAULT_MAX_RETRIES = 5
DEFAULT_ORG_CONFIG = ".repoaudit.toml"


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if parsed < 1:
        raise ConfigError(f"{name} must be at least 1, got {parsed}")
    return parsed


@dataclass(frozen=True)
class Settings:
    """Process settings taken from the environment."""
    token: Optional[str]
    cache_dir: str = DEFAULT_CACHE_DIR
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    search_ceiling: int = DEFAULT_SEARCH_CEILING
    max_retries: int = DEFAULT_MAX_RETRIES
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from environment variables.

        Args:
            environ: Variables to read; defaults to os.environ

        Raises:
            ConfigError: If a numeric setting is not a positive integer
        """
        environ = os.environ if environ is None else environ
        token = next((environ[name] for name in TOKEN_VARIABLES if environ.get(name)), None)
        return cls(
            token=token,
            cache_dir=environ.get("REPOAUDIT_CACHE_DIR") or DEFAULT_CACHE_DIR,
            max_concurrency=_int_setting(environ, "REPOAUDIT_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            search_ceiling=_int_setting(environ, "REPOAUDIT_SEARCH_CEILING", DEFAULT_SEARCH_CEILING),
            max_retries=_int_setting(environ, "REPOAUDIT_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            log_level=(environ.get("REPOAUDIT_LOG_LEVEL") or "INFO").upper(),
        )

    def require_token(self) -> str:
        """Return the access token.

        Raises:
            ConfigError: If no token variable is set
        """
        if not self.token:
            raise ConfigError(
                f"{TOKEN_VARIABLES[0]} environment variable is required "
                f"(also accepted: {', '.join(TOKEN_VARIABLES[1:])})"
            )
        return self.token


def load_default_org(path: str = DEFAULT_ORG_CONFIG) -> Optional[str]:
    """Read the default organization from a TOML file such as ``org = "acme"``.

    Returns:
        The organization, or None when the file is absent or has no org

    Raises:
        ConfigError: If the file exists but is not valid TOML
    """
    config_path = Path(path)
    if not config_path.exists():
        return None
    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    org = data.get("org")
    if org is not None and not isinstance(org, str):
        raise ConfigError(f"'org' in {path} must be a string")
    return org or None


def save_default_org(org: str, path: str = DEFAULT_ORG_CONFIG) -> None:
    """Write the default organization as ``org = "..."``.

    Raises:
        OSError: If the file cannot be written
    """
    # A JSON string literal is also a valid TOML basic string
    Path(path).write_text(f"org = {json.dumps(org)}\n", encoding="utf-8")


@dataclass(frozen=True)
class AuditConfig:
    """Validated options for one audit run."""
    mode: AuditMode
    repos_path: Optional[str] = DEFAULT_REPOS_PATH
    query: Optional[str] = None
    org: Optional[str] = None
    package: Optional[str] = None
    filename: Optional[str] = None
    search: Optional[str] = None
    ref: Optional[str] = None
    ignore_case: bool = False
    clear_cache: bool = False
    save_discovered: bool = False

    @classmethod
    def from_options(
        cls,
        repos: Optional[str] = DEFAULT_REPOS_PATH,
        query: Optional[str] = None,
        org: Optional[str] = None,
        package: Optional[str] = None,
        filename: Optional[str] = None,
        search: Optional[str] = None,
        ref: Optional[str] = None,
        ignore_case: bool = False,
        clear_cache: bool = False,
        save_discovered: bool = False
    ) -> 'AuditConfig':
        """Pick the audit mode and check the option combination.

        A search string selects string-search mode and needs a filename. A
        package name selects package-audit mode; the filename defaults to
        package-lock.json. With neither, repositories are only listed.

        Raises:
            ConfigError: On a contradictory or incomplete combination
        """
        if package and search:
            raise ConfigError("--package and --search are mutually exclusive")

        if search:
            if not filename:
                raise ConfigError("--search requires --filename")
            mode = AuditMode.SEARCH
        elif package:
            mode = AuditMode.PACKAGE
            filename = filename or DEFAULT_LOCKFILE
        else:
            if filename:
                logger.warning("--filename given without --package or --search; listing repositories only")
            mode = AuditMode.LIST

        if not query and not repos:
            raise ConfigError("Either --repos or --query is required")

        return cls(
            mode=mode,
            repos_path=repos,
            query=query or None,
            org=org or None,
            package=package or None,
            filename=filename,
            search=search or None,
            ref=ref or None,
            ignore_case=ignore_case,
            clear_cache=clear_cache,
            save_discovered=save_discovered,
        )
