"""Tests for domain models."""
from datetime import datetime
import pytest
from repoaudit.domain.models import (
    CacheEntry,
    FailureReason,
    FetchKey,
    FetchResult,
    FetchStatus,
    RepositoryRef,
    VersionFound
)


def test_repository_ref_parse():
    """Test building a reference from an owner/name string."""
    repo = RepositoryRef.parse("facebook/react")
    
    assert repo.owner == "facebook"
    assert repo.name == "react"
    assert repo.full_name == "facebook/react"
    assert str(repo) == "facebook/react"


@pytest.mark.parametrize("value", ["react", "a/b/c", "/react", "facebook/", "face book/react", "", 42])
def test_repository_ref_parse_rejects_malformed(value):
    """Test that anything but owner/name is rejected."""
    with pytest.raises(ValueError):
        RepositoryRef.parse(value)


def test_repository_ref_equality_is_case_insensitive():
    """Test GitHub's case-insensitive naming."""
    upper = RepositoryRef("Acme", "App")
    lower = RepositoryRef("acme", "app")
    
    assert upper == lower
    assert hash(upper) == hash(lower)
    assert len({upper, lower}) == 1
    assert upper.full_name == "Acme/App"  # Original spelling kept


def test_repository_ref_is_immutable():
    """Test that references cannot be changed after creation."""
    repo = RepositoryRef("acme", "app")
    
    with pytest.raises(AttributeError):
        repo.name = "lib"


def test_fetch_key_cache_token_is_normalized():
    """Test that keys differing only in case share a cache token."""
    a = FetchKey(RepositoryRef("Acme", "App"), "package-lock.json")
    b = FetchKey(RepositoryRef("acme", "app"), "package-lock.json")
    c = FetchKey(RepositoryRef("acme", "app"), "package-lock.json", ref="main")
    
    assert a == b
    assert a.cache_token() == b.cache_token()
    assert a.cache_token() != c.cache_token()


def test_fetch_result_constructors():
    """Test the Found / NotFound / Error shapes."""
    assert FetchResult.found(b"x").status == FetchStatus.FOUND
    assert FetchResult.found(b"x").content == b"x"
    assert FetchResult.not_found().content is None
    
    error = FetchResult.error(FailureReason.SERVER_ERROR, "boom")
    assert error.status == FetchStatus.ERROR
    assert error.reason == FailureReason.SERVER_ERROR
    assert error.detail == "boom"


def test_version_found_lowest_version():
    """Test that version returns the first (lowest) resolved version."""
    outcome = VersionFound(RepositoryRef("acme", "app"), ("1.2.0", "1.10.0"))
    
    assert outcome.version == "1.2.0"


def test_cache_entry_creation():
    """Test creating a cache entry."""
    key = FetchKey(RepositoryRef("acme", "app"), "package-lock.json")
    entry = CacheEntry(
        key=key,
        status=FetchStatus.NOT_FOUND,
        fetched_at=datetime(2024, 1, 1, 12, 0, 0)
    )
    
    assert entry.key == key
    assert entry.content is None
