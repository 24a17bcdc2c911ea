"""Domain models representing core business entities."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union


@dataclass(frozen=True, eq=False)
class RepositoryRef:
    """Immutable reference to a hosted repository.

    GitHub treats owner and repository names case-insensitively, so equality
    and hashing do too. The original spelling is kept for display.
    """
    owner: str
    name: str

    @classmethod
    def parse(cls, full_name: str) -> 'RepositoryRef':
        """Build a reference from an ``owner/name`` string.

        Raises:
            ValueError: If the string is not exactly two non-empty segments
        """
        if not isinstance(full_name, str):
            raise ValueError(f"Repository must be a string, got {full_name!r}")
        parts = full_name.strip().split("/")
        if len(parts) != 2 or not all(parts) or any(c.isspace() for c in full_name.strip()):
            raise ValueError(f"Expected 'owner/name', got {full_name!r}")
        return cls(owner=parts[0], name=parts[1])

    @property
    def full_name(self) -> str:
        """Returns the full repository name (owner/name)."""
        return f"{self.owner}/{self.name}"

    def _normalized(self) -> Tuple[str, str]:
        return (self.owner.lower(), self.name.lower())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RepositoryRef):
            return NotImplemented
        return self._normalized() == other._normalized()

    def __hash__(self) -> int:
        return hash(self._normalized())

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class FetchKey:
    """Identifies one file in one repository; the cache key."""
    repository: RepositoryRef
    file_path: str
    ref: Optional[str] = None

    def cache_token(self) -> str:
        """Deterministic string form used to derive on-disk cache names."""
        owner, name = self.repository._normalized()
        return f"{owner}/{name}:{self.file_path}@{self.ref or ''}"


class FetchStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry:
    """A fetched file (or a definitive 'not found') as stored in the cache."""
    key: FetchKey
    status: FetchStatus
    fetched_at: datetime
    content: Optional[bytes] = None


@dataclass(frozen=True)
class FetchResult:
    """Result of a single file fetch: Found(bytes), NotFound or Error(reason)."""
    status: FetchStatus
    content: Optional[bytes] = None
    reason: Optional['FailureReason'] = None
    detail: str = ""

    @classmethod
    def found(cls, content: bytes) -> 'FetchResult':
        return cls(status=FetchStatus.FOUND, content=content)

    @classmethod
    def not_found(cls) -> 'FetchResult':
        return cls(status=FetchStatus.NOT_FOUND)

    @classmethod
    def error(cls, reason: 'FailureReason', detail: str) -> 'FetchResult':
        return cls(status=FetchStatus.ERROR, reason=reason, detail=detail)


@dataclass(frozen=True)
class SearchPage:
    """One page of code-search results reduced to the repositories hit."""
    total_count: int
    incomplete_results: bool
    repositories: Tuple[RepositoryRef, ...]
    # Hits on the page that named no usable repository
    skipped_hits: int = 0


@dataclass(frozen=True)
class PartialResults:
    """Signals that discovery stopped before the search was exhausted."""
    total_count: int
    retrieved: int
    reason: str


@dataclass(frozen=True)
class DiscoveryResult:
    """Deduplicated repositories produced by discovery."""
    repositories: Tuple[RepositoryRef, ...]
    partial: Optional[PartialResults] = None


class AuditMode(str, Enum):
    PACKAGE = "package"
    SEARCH = "search"
    LIST = "list"


class FailureReason(str, Enum):
    PARSE_ERROR = "parse_error"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"


# Per-repository analysis outcomes. Exactly one is produced for every
# repository in a run.

@dataclass(frozen=True)
class VersionFound:
    repository: RepositoryRef
    versions: Tuple[str, ...]

    @property
    def version(self) -> str:
        """Lowest resolved version; versions are kept in comparator order."""
        return self.versions[0]


@dataclass(frozen=True)
class PackageAbsent:
    repository: RepositoryRef


@dataclass(frozen=True)
class StringMatch:
    repository: RepositoryRef
    matched: bool
    snippet: Optional[str] = None


@dataclass(frozen=True)
class FileAbsent:
    repository: RepositoryRef


@dataclass(frozen=True)
class FetchFailed:
    repository: RepositoryRef
    reason: FailureReason
    detail: str = ""


AnalysisOutcome = Union[VersionFound, PackageAbsent, StringMatch, FileAbsent, FetchFailed]


@dataclass
class RateLimitState:
    """Shared rate-limit bookkeeping for all concurrent fetches.

    Only RateLimiter mutates it.
    """
    remaining: int
    limit: int
    reset_at: Optional[datetime]
    max_concurrency: int
    in_flight: int = 0


@dataclass(frozen=True)
class AuditMetrics:
    """Counters for an audit run."""
    repositories: int
    cache_hits: int = 0
    fetches: int = 0
    failures: int = 0
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class AuditReport:
    """Everything a run produced, in report order."""
    mode: AuditMode
    repositories: Tuple[RepositoryRef, ...]
    outcomes: Tuple[AnalysisOutcome, ...] = ()
    partial: Optional[PartialResults] = None
    package: Optional[str] = None
    search: Optional[str] = None
    filename: Optional[str] = None
    metrics: Optional[AuditMetrics] = field(default=None, compare=False)
