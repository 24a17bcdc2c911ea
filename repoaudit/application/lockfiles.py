"""Lockfile parsers that resolve the installed versions of one package.

Supported: npm package-lock.json / npm-shrinkwrap.json (lockfile v1, v2 and
v3), yarn.lock (classic and berry), pnpm-lock.yaml (v5, v6 and v9).
"""
import json
import re
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Set, Tuple
import yaml
from repoaudit.domain.errors import ParseError
from repoaudit.domain.versions import sort_versions


NPM_LOCKFILES = {"package-lock.json", "npm-shrinkwrap.json"}
YARN_LOCKFILE = "yarn.lock"
PNPM_LOCKFILE = "pnpm-lock.yaml"

DEFAULT_LOCKFILE = "package-lock.json"

_YARN_VERSION = re.compile(r'^\s+version:?\s+"?([^"\s]+)"?\s*$', re.M)
_YARN_MARKER = re.compile(r"^(?:# yarn lockfile v1\s*$|__metadata:)", re.M)


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"Lockfile is not valid UTF-8: {e}") from e


def npm_name_from_path(path: str) -> Optional[str]:
    """Package name installed at a package-lock "packages" path.

    Handles scoped packages and nested installs:
    "node_modules/a/node_modules/@babel/core" -> "@babel/core"
    """
    if not path:
        return None

    parts = path.split("/")
    for i in range(len(parts) - 1, -1, -1):
        if parts[i] == "node_modules":
            if i + 2 < len(parts) and parts[i + 1].startswith("@"):
                return parts[i + 1] + "/" + parts[i + 2]
            if i + 1 < len(parts):
                return parts[i + 1]
            break

    return None


def npm_versions(content: bytes, package: str) -> Set[str]:
    """Resolved versions of a package in an npm lockfile.

    v2/v3 lockfiles carry a flat "packages" map keyed by install path; v1 only
    has the nested "dependencies" tree.

    Raises:
        ParseError: If the content is not an npm lockfile
    """
    try:
        data = json.loads(_decode(content))
    except ValueError as e:
        raise ParseError(f"Invalid lockfile JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("Lockfile root is not a JSON object")

    found: Set[str] = set()
    packages = data.get("packages")
    lockfile_version = data.get("lockfileVersion")

    if isinstance(packages, dict) and lockfile_version != 1:
        for path, meta in packages.items():
            if not isinstance(meta, dict):
                continue
            if npm_name_from_path(path) == package and meta.get("version"):
                found.add(str(meta["version"]))
        return found

    dependencies = data.get("dependencies")
    if dependencies is None:
        if packages is None and lockfile_version is None:
            raise ParseError("Not an npm lockfile: no packages or dependencies")
        return found

    # v1: nested installs appear under their parent's own "dependencies"
    stack = [dependencies]
    while stack:
        tree = stack.pop()
        if not isinstance(tree, dict):
            continue
        for name, meta in tree.items():
            if not isinstance(meta, dict):
                continue
            if name == package and meta.get("version"):
                found.add(str(meta["version"]))
            stack.append(meta.get("dependencies"))
    return found


def _yarn_descriptor_name(descriptor: str) -> str:
    descriptor = descriptor.strip().strip('"')
    at = descriptor.find("@", 1)
    return descriptor[:at] if at > 0 else descriptor


def yarn_versions(content: bytes, package: str) -> Set[str]:
    """Resolved versions of a package in a yarn.lock.

    Each block starts with one or more comma-separated descriptors such as
    ``"left-pad@^1.3.0", left-pad@~1.2.0:`` (classic) or
    ``"left-pad@npm:^1.3.0":`` (berry) followed by an indented version line.

    Raises:
        ParseError: If non-empty content has neither a lockfile marker nor a
            single versioned block
    """
    text = _decode(content)
    found: Set[str] = set()
    recognised = bool(_YARN_MARKER.search(text))

    for block in re.split(r"\n\s*\n", text):
        header = next(
            (line for line in block.splitlines()
             if line and not line.startswith((" ", "#")) and line.rstrip().endswith(":")),
            None
        )
        if header is None:
            continue
        version = _YARN_VERSION.search(block)
        if not version:
            continue
        recognised = True
        names = {_yarn_descriptor_name(d) for d in header.rstrip()[:-1].split(",")}
        if package in names:
            found.add(version.group(1))

    if not recognised and text.strip():
        raise ParseError("Not a yarn lockfile: no versioned entries")
    return found


_PNPM_V5_KEY = re.compile(r"^/?(@?[^@/]+(?:/[^@/]+)?)/([^/_(]+)")
_PNPM_KEY = re.compile(r"^/?(@?[^@/]+(?:/[^@/]+)?)@([^(]+)")


def _pnpm_key_name_version(key: str, legacy: bool) -> Optional[Tuple[str, str]]:
    # v5: "/left-pad/1.3.0_peer@2", v6: "/left-pad@1.3.0(peer@2)", v9: "left-pad@1.3.0"
    match = (_PNPM_V5_KEY if legacy else _PNPM_KEY).match(key)
    if not match:
        return None
    return match.group(1), match.group(2)


def pnpm_versions(content: bytes, package: str) -> Set[str]:
    """Resolved versions of a package in a pnpm-lock.yaml."""
    try:
        data = yaml.safe_load(_decode(content))
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid pnpm lockfile YAML: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("pnpm lockfile root is not a mapping")

    packages = data.get("packages") or {}
    if not isinstance(packages, dict):
        raise ParseError("pnpm lockfile 'packages' is not a mapping")
    legacy = str(data.get("lockfileVersion", "")).startswith("5")

    found: Set[str] = set()
    for key, meta in packages.items():
        parsed = _pnpm_key_name_version(str(key), legacy)
        if parsed is None:
            continue
        name, version = parsed
        if isinstance(meta, dict) and meta.get("name"):
            name = meta["name"]
            version = str(meta.get("version", version))
        if name == package:
            found.add(version)
    return found


PARSERS: Dict[str, Callable[[bytes, str], Set[str]]] = {
    **{name: npm_versions for name in NPM_LOCKFILES},
    YARN_LOCKFILE: yarn_versions,
    PNPM_LOCKFILE: pnpm_versions,
}


def resolve_versions(filename: str, content: bytes, package: str) -> List[str]:
    """Every distinct resolved version of a package, in comparator order.

    The parser is chosen by file name; anything not recognised is read as an
    npm lockfile.

    Raises:
        ParseError: If the content cannot be parsed
    """
    parser = PARSERS.get(PurePosixPath(filename).name, npm_versions)
    return sort_versions(parser(content, package))
