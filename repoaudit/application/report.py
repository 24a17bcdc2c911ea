"""Aggregation and rendering of audit results.

Every function here dispatches over all outcome variants; an unknown variant
is a programming error and raises TypeError.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple
from repoaudit.domain.models import (
    AnalysisOutcome,
    AuditMode,
    AuditReport,
    FetchFailed,
    FileAbsent,
    PackageAbsent,
    RepositoryRef,
    StringMatch,
    VersionFound
)
from repoaudit.domain.versions import is_parseable, sort_versions, version_sort_key


NOT_FOUND_LABEL = "not found"
NO_MATCH_LABEL = "no match"
PACKAGE_ABSENT_LABEL = "package absent"
MATCH_LABEL = "match"


def _unknown(outcome: object) -> TypeError:
    return TypeError(f"Unknown analysis outcome: {outcome!r}")


def _name_key(repo: RepositoryRef) -> str:
    return repo.full_name.lower()


def sort_outcomes(outcomes: Iterable[AnalysisOutcome], mode: AuditMode) -> List[AnalysisOutcome]:
    """Order outcomes for reporting, independent of completion order.

    Package mode: found versions first by lowest resolved version, then
    everything else; ties and non-version outcomes by repository name.
    Search mode: by repository name.
    """
    outcomes = list(outcomes)
    for outcome in outcomes:
        if not isinstance(outcome, (VersionFound, PackageAbsent, StringMatch, FileAbsent, FetchFailed)):
            raise _unknown(outcome)

    if mode != AuditMode.PACKAGE:
        return sorted(outcomes, key=lambda o: _name_key(o.repository))

    def key(outcome: AnalysisOutcome) -> tuple:
        if isinstance(outcome, VersionFound):
            return (0, version_sort_key(outcome.version), _name_key(outcome.repository))
        return (1, (), _name_key(outcome.repository))

    return sorted(outcomes, key=key)


def version_groups(report: AuditReport) -> List[Tuple[str, List[RepositoryRef]]]:
    """Repositories grouped by resolved version, in comparator order.

    A repository resolving several versions appears in each group.
    Unparsable versions come last, in the order they were first seen.
    """
    groups: Dict[str, List[RepositoryRef]] = OrderedDict()
    for outcome in report.outcomes:
        if isinstance(outcome, VersionFound):
            for version in outcome.versions:
                groups.setdefault(version, []).append(outcome.repository)
        elif not isinstance(outcome, (PackageAbsent, StringMatch, FileAbsent, FetchFailed)):
            raise _unknown(outcome)

    return [
        (version, sorted(groups[version], key=_name_key))
        for version in sort_versions(groups)
    ]


def unparsable_versions(report: AuditReport) -> List[str]:
    """Resolved versions the comparator could not parse."""
    return [version for version, _ in version_groups(report) if not is_parseable(version)]


def matches(report: AuditReport) -> List[StringMatch]:
    return [o for o in report.outcomes if isinstance(o, StringMatch) and o.matched]


def no_matches(report: AuditReport) -> List[AnalysisOutcome]:
    """Fetched and analyzed, but nothing matched."""
    return [
        o for o in report.outcomes
        if isinstance(o, PackageAbsent) or (isinstance(o, StringMatch) and not o.matched)
    ]


def absent(report: AuditReport) -> List[FileAbsent]:
    return [o for o in report.outcomes if isinstance(o, FileAbsent)]


def failures(report: AuditReport) -> List[FetchFailed]:
    return [o for o in report.outcomes if isinstance(o, FetchFailed)]


def describe(outcome: AnalysisOutcome) -> str:
    """Short label for one outcome."""
    if isinstance(outcome, VersionFound):
        return ", ".join(outcome.versions)
    if isinstance(outcome, PackageAbsent):
        return PACKAGE_ABSENT_LABEL
    if isinstance(outcome, StringMatch):
        return MATCH_LABEL if outcome.matched else NO_MATCH_LABEL
    if isinstance(outcome, FileAbsent):
        return NOT_FOUND_LABEL
    if isinstance(outcome, FetchFailed):
        return f"failed ({outcome.reason.value})"
    raise _unknown(outcome)


def summary(report: AuditReport) -> Dict[str, str]:
    """Map of repository full name to outcome label."""
    if report.mode == AuditMode.LIST:
        return {repo.full_name: "listed" for repo in report.repositories}
    return {outcome.repository.full_name: describe(outcome) for outcome in report.outcomes}


def render_report(report: AuditReport) -> str:
    """Plain-text report for the terminal."""
    lines: List[str] = []

    if report.mode == AuditMode.LIST:
        lines.extend(repo.full_name for repo in report.repositories)
    elif report.mode == AuditMode.PACKAGE:
        unparsable = set(unparsable_versions(report))
        for version, repos in version_groups(report):
            flag = "  (unparsable version)" if version in unparsable else ""
            for repo in repos:
                lines.append(f"{version}\t: {repo.full_name}{flag}")
        _append_section(lines, f"{report.package} not in {report.filename}",
                        [o.repository.full_name for o in no_matches(report)])
    else:
        for outcome in matches(report):
            lines.append(f"{outcome.repository.full_name}\t: {outcome.snippet}")
        _append_section(lines, "no match", [o.repository.full_name for o in no_matches(report)])

    if report.mode != AuditMode.LIST:
        _append_section(lines, f"{report.filename} not found",
                        [o.repository.full_name for o in absent(report)])
        _append_section(lines, "fetch failed",
                        [f"{o.repository.full_name}: {o.reason.value} {o.detail}".rstrip()
                         for o in failures(report)])

    if report.partial is not None:
        lines.append("")
        lines.append(
            f"PARTIAL RESULTS: {report.partial.reason} "
            f"({report.partial.retrieved} of {report.partial.total_count} search hits)"
        )

    return "\n".join(lines)


def _append_section(lines: List[str], title: str, entries: List[str]) -> None:
    if not entries:
        return
    lines.append("")
    lines.append(f"-- {title} ({len(entries)})")
    lines.extend(f"   {entry}" for entry in entries)
