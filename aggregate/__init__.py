"""
Aggregate package: search descriptors, the filter pipeline and the multi-search merger.
"""

from .search import SearchDescriptor, SearchFilters
from .filters import filter_bugs
from .merger import BugAggregator, BugListResult, merge_bug_lists

__all__ = ["SearchDescriptor", "SearchFilters", "filter_bugs", "BugAggregator", "BugListResult", "merge_bug_lists"]
