"""GitHub API interface (port) for discovery and file retrieval.

This is the anti-corruption layer that shields the domain from GitHub API specifics.
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator
from repoaudit.domain.models import FetchKey, FetchResult, SearchPage


class IGitHubClient(ABC):
    """Abstract interface for GitHub API operations."""
    
    @abstractmethod
    async def verify_token(self) -> str:
        """Check that the access token is accepted.
        
        Returns:
            Login of the authenticated user
            
        Raises:
            AuthError: If the token is rejected
        """
        pass
    
    @abstractmethod
    def search_code(self, query: str, per_page: int = 100) -> AsyncIterator[SearchPage]:
        """Run a code search and yield result pages in API order.
        
        Args:
            query: Full search query, qualifiers included
            per_page: Results per page (max 100)
            
        Yields:
            SearchPage per page of results
        """
        pass
    
    @abstractmethod
    async def fetch_file(self, key: FetchKey) -> FetchResult:
        """Fetch one file from one repository.
        
        Returns:
            Found(bytes), NotFound or Error(reason)
            
        Raises:
            AuthError: If the token is rejected
        """
        pass
    
    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
