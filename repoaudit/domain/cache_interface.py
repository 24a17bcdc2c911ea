"""Cache interface (port) for fetched file content.

This is the port in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional
from repoaudit.domain.models import CacheEntry, FetchKey


class ICacheStore(ABC):
    """Abstract interface for the fetch cache."""
    
    @abstractmethod
    def get(self, key: FetchKey) -> Optional[CacheEntry]:
        """Look up a cached fetch.
        
        A cached NOT_FOUND entry is a hit like any other.
        
        Args:
            key: Repository, file path and ref
            
        Returns:
            The cached entry, or None on a miss
        """
        pass
    
    @abstractmethod
    def put(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one for the same key."""
        pass
    
    @abstractmethod
    def clear(self) -> None:
        """Drop every cached entry."""
        pass
    
    @abstractmethod
    def stats(self) -> Dict[str, int]:
        """Entry counts per status plus total cached bytes."""
        pass
    
    @abstractmethod
    def close(self) -> None:
        """Release any held resources."""
        pass
