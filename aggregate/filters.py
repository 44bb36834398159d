"""
Post-fetch filter pipeline.
Filters run on a batch taken out of the query cache, in a fixed order, each one skipped when unset.
"""
from typing import Iterable, List, Optional

from normalize.models import Bug
from aggregate.search import SearchFilters


def filter_bugs(bugs: Iterable[Bug], filters: Optional[SearchFilters]) -> List[Bug]:
    bugs = list(bugs)
    if filters is None:
        return bugs

    if filters.unprioritized is not None:
        bugs = [b for b in bugs if b.priority is None]
    if filters.priority is not None:
        # compared as strings so "1" and 1 match
        wanted = str(filters.priority)
        bugs = [b for b in bugs if str(b.priority) == wanted]
    if filters.custom_filter is not None:
        bugs = [b for b in bugs if filters.custom_filter(b)]
    if filters.assignees is not None:
        bugs = [b for b in bugs if b.assignee in filters.assignees]
    if filters.is_pull_request is not None:
        bugs = [b for b in bugs if b.is_pull_request == filters.is_pull_request]

    return bugs
