"""On-disk cache of fetched file content.

Each entry is a small JSON document named after the SHA-256 of its key, so
the same command run twice resolves to the same files. Content is stored
base64-encoded next to the key fields and status, which keeps entries
readable with any text tool.
"""
import base64
import binascii
import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
from repoaudit.domain.cache_interface import ICacheStore
from repoaudit.domain.models import CacheEntry, FetchKey, FetchStatus, RepositoryRef


logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"
CACHEABLE_STATUSES = (FetchStatus.FOUND, FetchStatus.NOT_FOUND)


class FileCacheStore(ICacheStore):
    """Filesystem implementation of the fetch cache.

    Writes are atomic renames, so concurrent writers for one key leave the
    last complete document in place. Any storage problem degrades to a cache
    miss instead of failing the run.
    """

    def __init__(self, cache_dir: str):
        """Initialize the cache directory.

        Args:
            cache_dir: Directory holding cache entries; created on demand
        """
        self._cache_dir = Path(cache_dir)
        self._writable = True
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cache directory {self._cache_dir} unavailable, caching disabled: {e}")
            self._writable = False

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def path_for(self, key: FetchKey) -> Path:
        """Location of the entry for a key."""
        digest = hashlib.sha256(key.cache_token().encode("utf-8")).hexdigest()
        return self._cache_dir / f"{digest}{ENTRY_SUFFIX}"

    def get(self, key: FetchKey) -> Optional[CacheEntry]:
        """Read a cached entry.

        Args:
            key: Repository, file path and ref

        Returns:
            The cached entry, or None when absent, unreadable or corrupt
        """
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable cache entry {path.name}, treating as miss: {e}")
            return None

        try:
            entry = self._decode(raw)
        except (ValueError, KeyError, TypeError, AttributeError, binascii.Error) as e:
            logger.warning(f"Corrupt cache entry {path.name}, treating as miss: {e}")
            return None

        if entry.key != key:
            logger.warning(f"Cache entry {path.name} belongs to another key, treating as miss")
            return None
        return entry

    def put(self, entry: CacheEntry) -> None:
        """Persist an entry atomically.

        Only FOUND and NOT_FOUND results are cacheable.

        Args:
            entry: Entry to store
        """
        if entry.status not in CACHEABLE_STATUSES:
            raise ValueError(f"Refusing to cache a {entry.status.value} result")
        if not self._writable:
            return

        path = self.path_for(entry.key)
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self._cache_dir, prefix=".", suffix=TEMP_SUFFIX
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(self._encode(entry))
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning(f"Failed to write cache entry {path.name}: {e}")

    def clear(self) -> None:
        """Remove every cache entry."""
        removed = 0
        try:
            paths = list(self._cache_dir.glob(f"*{ENTRY_SUFFIX}")) + list(
                self._cache_dir.glob(f"*{TEMP_SUFFIX}")
            )
        except OSError as e:
            logger.warning(f"Failed to list cache directory {self._cache_dir}: {e}")
            return

        for path in paths:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove cache entry {path.name}: {e}")
        logger.info(f"Cleared {removed} cache entries from {self._cache_dir}")

    def stats(self) -> Dict[str, int]:
        """Count entries per status.

        Returns:
            Mapping with one count per status, ``corrupt`` and ``bytes``
        """
        counts = {status.value: 0 for status in CACHEABLE_STATUSES}
        counts["corrupt"] = 0
        counts["bytes"] = 0
        try:
            paths = sorted(self._cache_dir.glob(f"*{ENTRY_SUFFIX}"))
        except OSError:
            return counts

        for path in paths:
            try:
                entry = self._decode(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError):
                counts["corrupt"] += 1
                continue
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
            counts["bytes"] += len(entry.content or b"")
        return counts

    def close(self) -> None:
        """Nothing to release; entries are flushed on every put."""
        pass

    @staticmethod
    def _encode(entry: CacheEntry) -> str:
        document = {
            "owner": entry.key.repository.owner,
            "name": entry.key.repository.name,
            "path": entry.key.file_path,
            "ref": entry.key.ref,
            "status": entry.status.value,
            "fetched_at": entry.fetched_at.isoformat(),
            "content": (
                base64.b64encode(entry.content).decode("ascii")
                if entry.content is not None
                else None
            ),
        }
        return json.dumps(document, indent=2, sort_keys=True)

    @staticmethod
    def _decode(raw: str) -> CacheEntry:
        document = json.loads(raw)
        if not isinstance(document, dict):
            raise ValueError("Cache entry is not a JSON object")
        for field in ("owner", "name", "path", "fetched_at"):
            if not isinstance(document[field], str):
                raise ValueError(f"Cache entry field {field!r} is not a string")
        for field in ("ref", "content"):
            if document[field] is not None and not isinstance(document[field], str):
                raise ValueError(f"Cache entry field {field!r} is not a string or null")
        key = FetchKey(
            repository=RepositoryRef(owner=document["owner"], name=document["name"]),
            file_path=document["path"],
            ref=document["ref"],
        )
        status = FetchStatus(document["status"])
        if status not in CACHEABLE_STATUSES:
            raise ValueError(f"Unexpected cached status {status.value}")
        content = document["content"]
        return CacheEntry(
            key=key,
            status=status,
            fetched_at=datetime.fromisoformat(document["fetched_at"]),
            content=base64.b64decode(content, validate=True) if content is not None else None,
        )
