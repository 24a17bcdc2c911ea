"""Version comparator used to rank package-audit results.

Follows the usual ``major.minor.patch[-prerelease][+build]`` shape with a few
relaxations that lockfiles in the wild need: a leading ``v``, missing minor or
patch fields, and more than three numeric fields.
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple


_VERSION_PATTERN = re.compile(
    r"^v?(?P<release>\d+(?:\.\d+)*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@dataclass(frozen=True)
class Version:
    """A parsed version string."""
    release: Tuple[int, ...]
    prerelease: Tuple[str, ...] = ()
    build: Tuple[str, ...] = ()

    @property
    def has_suffix(self) -> bool:
        """True when a pre-release or build suffix is present."""
        return bool(self.prerelease or self.build)


def parse_version(text: str) -> Optional[Version]:
    """Parse a version string.

    Args:
        text: Version string such as ``1.2.3``, ``v2.0.0-beta.1`` or ``1.4``

    Returns:
        Parsed Version, or None when the string is not a version
    """
    match = _VERSION_PATTERN.match(text.strip())
    if not match:
        return None

    release = [int(part) for part in match.group("release").split(".")]
    # Missing minor/patch count as 0; extra trailing zeros carry no weight
    while len(release) < 3:
        release.append(0)
    while len(release) > 3 and release[-1] == 0:
        release.pop()

    prerelease = match.group("prerelease")
    build = match.group("build")
    return Version(
        release=tuple(release),
        prerelease=tuple(prerelease.split(".")) if prerelease else (),
        build=tuple(build.split(".")) if build else (),
    )


def is_parseable(text: str) -> bool:
    """Return True if the string parses as a version."""
    return parse_version(text) is not None


def _identifier_key(identifier: str) -> Tuple[int, int, str]:
    # Numeric identifiers sort before alphanumeric ones
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


def version_sort_key(text: str) -> tuple:
    """Sort key giving the comparator's total order.

    Unparsable strings all share one key, so a stable sort keeps them in
    their original order after every parseable version.
    """
    version = parse_version(text)
    if version is None:
        return (1,)

    if version.has_suffix:
        suffix = version.prerelease or version.build
        return (0, version.release, 0, tuple(_identifier_key(i) for i in suffix))
    return (0, version.release, 1, ())


def compare_versions(left: str, right: str) -> int:
    """Three-way comparison: negative, zero or positive."""
    left_key = version_sort_key(left)
    right_key = version_sort_key(right)
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def sort_versions(versions: Iterable[str]) -> List[str]:
    """Return the versions in ascending comparator order."""
    return sorted(versions, key=version_sort_key)
