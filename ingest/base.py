"""
Base class for tracker loaders.

A loader knows which search types it serves, how a descriptor becomes a remote query,
and how to fetch and normalize the results of that query.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from aggregate.search import SearchDescriptor
from normalize.models import Bug
from storage.cache import canonical_key


class BugLoader(ABC):
    """Turns search descriptors into normalized bugs for one tracker."""

    source: str = ""
    search_types: Tuple[str, ...] = ()

    @abstractmethod
    def query_params(self, descriptor: SearchDescriptor) -> Dict[str, Any]:
        """Return the parameters sent to the tracker for this descriptor."""

    @abstractmethod
    def load(self, descriptor: SearchDescriptor) -> List[Bug]:
        """Fetch and normalize the bugs matched by the descriptor's remote query."""

    def cache_params(self, descriptor: SearchDescriptor) -> Dict[str, Any]:
        """The query as it identifies a cached batch. Defaults to query_params."""
        return self.query_params(descriptor)

    def cache_key(self, descriptor: SearchDescriptor) -> str:
        """Key identifying the remote query, so descriptors that only differ in local filters share a fetch."""
        return canonical_key({'source': self.source, 'query': self.cache_params(descriptor)})
