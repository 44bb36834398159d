"""
Aggregator: resolve a list of search descriptors into one deduplicated bug list.

For every descriptor, in order: fetch through the query cache (loading on a miss), apply the
descriptor's filters, then union all filtered batches by bug id. A bug's position is the
position of its first appearance; its value comes from the last batch that contained it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from aggregate.filters import filter_bugs
from aggregate.search import DescriptorLike, SearchDescriptor, as_descriptors
from errors import BugSearchError, UnsupportedSearchError
from normalize.models import Bug
from storage.cache import QueryCache, canonical_key

if TYPE_CHECKING:
    from ingest.base import BugLoader

logger = logging.getLogger(__name__)

KEY_MODES = ("query", "descriptor")


def descriptor_cache_key(descriptor: SearchDescriptor) -> str:
    """Key over the whole descriptor, filters included.

    Descriptors sharing a search but differing in local-only filters get distinct keys
    and therefore separate fetches.
    """
    return canonical_key(descriptor.to_dict())


def merge_bug_lists(bug_lists: Iterable[Iterable[Bug]]) -> List[Bug]:
    """Union bug lists by id: first appearance fixes the order, the last copy wins."""
    merged: Dict[str, Bug] = {}
    for bugs in bug_lists:
        for bug in bugs:
            merged[bug.id] = bug
    return list(merged.values())


@dataclass(frozen=True)
class BugListResult:
    """Outcome of resolving one named bug list: either bugs or the error that stopped it."""

    name: str
    bugs: Tuple[Bug, ...] = ()
    error: Optional[BugSearchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BugAggregator:
    """Resolves search descriptors through per-tracker loaders and a shared query cache.

    The cache lives as long as the aggregator; create one aggregator per dashboard
    session to scope cached results to it.
    """

    def __init__(self, loaders: Sequence['BugLoader'], cache: Optional[QueryCache] = None, key_mode: str = "query"):
        if key_mode not in KEY_MODES:
            raise ValueError(f"key_mode must be one of {KEY_MODES}, got {key_mode!r}")
        self.cache = cache if cache is not None else QueryCache()
        self.key_mode = key_mode
        self._loaders: Dict[str, 'BugLoader'] = {}
        for loader in loaders:
            for search_type in loader.search_types:
                self._loaders[search_type] = loader

    def loader_for(self, descriptor: SearchDescriptor) -> 'BugLoader':
        loader = self._loaders.get(descriptor.type)
        if loader is None:
            raise UnsupportedSearchError(descriptor.type)
        return loader

    def _cache_key(self, loader: 'BugLoader', descriptor: SearchDescriptor) -> str:
        if self.key_mode == "descriptor":
            return descriptor_cache_key(descriptor)
        return loader.cache_key(descriptor)

    def fetch(self, descriptor: SearchDescriptor) -> Tuple[Bug, ...]:
        """Return the unfiltered batch for a descriptor, loading it at most once per cache key."""
        loader = self.loader_for(descriptor)
        key = self._cache_key(loader, descriptor)
        return self.cache.get_or_load(key, lambda: loader.load(descriptor))

    def find_bugs(self, descriptors: Sequence[DescriptorLike]) -> List[Bug]:
        """Return the merged, deduplicated and filtered bugs for an ordered list of descriptors.

        Raises UnsupportedSearchError before fetching anything if any descriptor names an
        unknown search type, and propagates tracker errors (e.g. BugzillaError).
        """
        parsed = as_descriptors(descriptors)
        for descriptor in parsed:
            self.loader_for(descriptor)

        filtered = [filter_bugs(self.fetch(d), d.filters) for d in parsed]
        return merge_bug_lists(filtered)

    def _find_list(self, name: str, descriptors: Sequence[DescriptorLike]) -> BugListResult:
        try:
            return BugListResult(name=name, bugs=tuple(self.find_bugs(descriptors)))
        except BugSearchError as exc:
            logger.error("bug list %r failed: %s", name, exc)
            return BugListResult(name=name, error=exc)

    def find_bug_lists(self, named_lists: Mapping[str, Sequence[DescriptorLike]], max_workers: int = 4) -> List[BugListResult]:
        """Resolve several named lists concurrently; results keep the input order.

        Each list reports its own failure in its BugListResult instead of failing the others.
        """
        names = list(named_lists)
        if not names:
            return []
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = [pool.submit(self._find_list, name, named_lists[name]) for name in names]
            return [f.result() for f in futures]
