"""Turns fetched file content into a per-repository analysis outcome."""
import logging
from typing import Optional
from repoaudit.application.lockfiles import resolve_versions
from repoaudit.domain.errors import ParseError
from repoaudit.domain.models import (
    AnalysisOutcome,
    AuditMode,
    FailureReason,
    FetchFailed,
    PackageAbsent,
    RepositoryRef,
    StringMatch,
    VersionFound
)


logger = logging.getLogger(__name__)

MAX_SNIPPET_LENGTH = 200


def find_snippet(content: bytes, needle: str, ignore_case: bool = False) -> Optional[str]:
    """Literal substring search over raw bytes.

    Returns:
        The first matching line, stripped and truncated, or None without a match
    """
    pattern = needle.encode("utf-8")
    haystack = content
    if ignore_case:
        pattern = pattern.lower()
        haystack = content.lower()

    position = haystack.find(pattern)
    if position < 0:
        return None

    start = content.rfind(b"\n", 0, position) + 1
    end = content.find(b"\n", position + len(pattern))
    if end < 0:
        end = len(content)
    line = content[start:end].decode("utf-8", errors="replace").strip()
    if len(line) > MAX_SNIPPET_LENGTH:
        line = line[:MAX_SNIPPET_LENGTH - 3] + "..."
    return line


class ContentAnalyzer:
    """Analyzes one file per repository in package-audit or string-search mode."""

    def __init__(
        self,
        mode: AuditMode,
        filename: str,
        package: Optional[str] = None,
        search: Optional[str] = None,
        ignore_case: bool = False
    ):
        """Initialize analyzer.

        Args:
            mode: PACKAGE or SEARCH
            filename: Name of the fetched file; selects the lockfile parser
            package: Package to resolve in PACKAGE mode
            search: Literal string to look for in SEARCH mode
            ignore_case: Case-insensitive search
        """
        if mode == AuditMode.PACKAGE and not package:
            raise ValueError("package-audit mode needs a package name")
        if mode == AuditMode.SEARCH and not search:
            raise ValueError("string-search mode needs a search string")
        if mode == AuditMode.LIST:
            raise ValueError("listing mode does not analyze content")
        self._mode = mode
        self._filename = filename
        self._package = package
        self._search = search
        self._ignore_case = ignore_case

    def analyze(self, repository: RepositoryRef, content: bytes) -> AnalysisOutcome:
        """Analyze fetched content.

        Args:
            repository: Repository the content came from
            content: Raw file bytes

        Returns:
            VersionFound, PackageAbsent, StringMatch or FetchFailed(PARSE_ERROR)
        """
        if self._mode == AuditMode.SEARCH:
            snippet = find_snippet(content, self._search, self._ignore_case)
            return StringMatch(repository=repository, matched=snippet is not None, snippet=snippet)

        try:
            versions = resolve_versions(self._filename, content, self._package)
        except ParseError as e:
            logger.warning(f"Cannot parse {self._filename} in {repository}: {e}")
            return FetchFailed(repository=repository, reason=FailureReason.PARSE_ERROR, detail=str(e))

        if not versions:
            return PackageAbsent(repository=repository)
        return VersionFound(repository=repository, versions=tuple(versions))
