"""
Search descriptors: what to fetch (a typed search) and how to narrow it (SearchFilters).

Descriptors are usually written as JSON-like dicts::

    {"search": {"type": "bugzillaComponent", "product": "Toolkit", "component": "Telemetry"},
     "filters": {"priority": 1, "open": True}}

SearchDescriptor.from_dict turns that shape into the typed form used by the loaders.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Type, Union

from errors import InvalidSearchError, UnsupportedSearchError
from normalize.models import Bug

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GithubRepoSearch:
    type: ClassVar[str] = "githubRepo"
    user: str
    project: str


@dataclass(frozen=True)
class BugzillaComponentSearch:
    type: ClassVar[str] = "bugzillaComponent"
    product: str
    component: str


@dataclass(frozen=True)
class BugzillaAssigneesSearch:
    type: ClassVar[str] = "bugzillaAssignees"
    assignees: Tuple[str, ...]


@dataclass(frozen=True)
class BugzillaMentorsSearch:
    type: ClassVar[str] = "bugzillaMentors"
    mentors: Tuple[str, ...]


@dataclass(frozen=True)
class BugzillaWhiteboardSearch:
    type: ClassVar[str] = "bugzillaWhiteboard"
    whiteboard_content: str


Search = Union[GithubRepoSearch, BugzillaComponentSearch, BugzillaAssigneesSearch, BugzillaMentorsSearch, BugzillaWhiteboardSearch]

SEARCH_TYPES: Dict[str, Type] = {
    cls.type: cls
    for cls in (GithubRepoSearch, BugzillaComponentSearch, BugzillaAssigneesSearch, BugzillaMentorsSearch, BugzillaWhiteboardSearch)
}


def search_to_dict(search: Search) -> Dict[str, Any]:
    """Return the JSON form of a typed search, including its type name."""
    if isinstance(search, GithubRepoSearch):
        data = {'user': search.user, 'project': search.project}
    elif isinstance(search, BugzillaComponentSearch):
        data = {'product': search.product, 'component': search.component}
    elif isinstance(search, BugzillaAssigneesSearch):
        data = {'assignees': list(search.assignees)}
    elif isinstance(search, BugzillaMentorsSearch):
        data = {'mentors': list(search.mentors)}
    elif isinstance(search, BugzillaWhiteboardSearch):
        data = {'whiteboardContent': search.whiteboard_content}
    else:
        raise UnsupportedSearchError(getattr(search, 'type', None))
    data['type'] = search.type
    return data


def _string_list(search_type: str, name: str, value: Any) -> Tuple[str, ...]:
    # a bare string would otherwise split into characters
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise InvalidSearchError(f"{search_type} field {name!r} must be a list, got {type(value).__name__}")
    return tuple(value)


def parse_search(raw: Optional[Mapping[str, Any]]) -> Search:
    """Build a typed search out of its dict form.

    Raises UnsupportedSearchError when the type is missing or unknown, and
    InvalidSearchError when a required field is missing or malformed.
    """
    search_type = raw.get('type') if isinstance(raw, Mapping) else None
    if search_type not in SEARCH_TYPES:
        raise UnsupportedSearchError(search_type)
    try:
        if search_type == GithubRepoSearch.type:
            return GithubRepoSearch(user=raw['user'], project=raw['project'])
        if search_type == BugzillaComponentSearch.type:
            return BugzillaComponentSearch(product=raw['product'], component=raw['component'])
        if search_type == BugzillaAssigneesSearch.type:
            return BugzillaAssigneesSearch(assignees=_string_list(search_type, 'assignees', raw['assignees']))
        if search_type == BugzillaMentorsSearch.type:
            return BugzillaMentorsSearch(mentors=_string_list(search_type, 'mentors', raw['mentors']))
        content = raw.get('whiteboardContent', raw.get('whiteboard_content'))
        if content is None:
            raise KeyError('whiteboardContent')
        return BugzillaWhiteboardSearch(whiteboard_content=content)
    except KeyError as exc:
        raise InvalidSearchError(f"{search_type} search is missing field {exc.args[0]!r}") from exc


_RELATIVE_RE = re.compile(r"^-(\d+)([dhms])$")
_RELATIVE_UNITS = {'d': 'days', 'h': 'hours', 'm': 'minutes', 's': 'seconds'}

ChangeTime = Union[datetime, timedelta]


def parse_change_time(value: Union[None, str, datetime, timedelta]) -> Optional[ChangeTime]:
    """Accept a datetime, an ISO-8601 string, a timedelta or "-<n><d|h|m|s>" (that long ago).

    Relative values stay timedeltas; resolve_change_time turns them into a point in time
    when a query is sent. Naive datetimes are taken as UTC. Raises ValueError for anything else.
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, str):
        m = _RELATIVE_RE.match(value.strip())
        if m:
            return timedelta(**{_RELATIVE_UNITS[m.group(2)]: int(m.group(1))})
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if not isinstance(value, datetime):
        raise ValueError(f"unsupported change time {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def resolve_change_time(value: ChangeTime, now: Optional[datetime] = None) -> datetime:
    """Return the UTC point in time a change-time filter stands for."""
    if isinstance(value, timedelta):
        return (now or datetime.now(timezone.utc)) - value
    return value.astimezone(timezone.utc)


def format_change_time(value: ChangeTime) -> str:
    """Dict form of a change time: ISO-8601, or "-<n>d"/"-<n>s" for relative values."""
    if isinstance(value, timedelta):
        seconds = int(value.total_seconds())
        return f"-{seconds // 86400}d" if seconds % 86400 == 0 else f"-{seconds}s"
    return value.isoformat()


# dict key -> SearchFilters attribute
_FILTER_KEYS = {
    'open': 'open',
    'priority': 'priority',
    'unprioritized': 'unprioritized',
    'isAssigned': 'is_assigned',
    'is_assigned': 'is_assigned',
    'whiteboard': 'whiteboard',
    'notWhiteboard': 'not_whiteboard',
    'not_whiteboard': 'not_whiteboard',
    'lastChangeTime': 'last_change_time',
    'last_change_time': 'last_change_time',
    'customFilter': 'custom_filter',
    'custom_filter': 'custom_filter',
    'assignees': 'assignees',
    'isPullRequest': 'is_pull_request',
    'is_pull_request': 'is_pull_request',
}


@dataclass(frozen=True)
class SearchFilters:
    """Every filter a descriptor may carry. None means "not set".

    Some fields change the remote query (open, priority, is_assigned, whiteboard,
    not_whiteboard, last_change_time); others only narrow the fetched batch locally
    (unprioritized, priority, custom_filter, assignees, is_pull_request).

    A filter is applied whenever it is set, whatever its value: unprioritized=False
    still keeps only bugs without a priority.
    """

    open: Optional[bool] = None
    priority: Optional[Union[int, str]] = None
    unprioritized: Optional[bool] = None
    is_assigned: Optional[bool] = None
    whiteboard: Optional[str] = None
    not_whiteboard: Optional[str] = None
    last_change_time: Optional[ChangeTime] = None
    custom_filter: Optional[Callable[[Bug], bool]] = field(default=None, compare=False)
    assignees: Optional[Tuple[Optional[str], ...]] = None
    is_pull_request: Optional[bool] = None

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> 'SearchFilters':
        """Build filters from the dict form. Unknown keys are ignored.

        Raises InvalidSearchError for a malformed filters object or filter value.
        """
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise InvalidSearchError(f"filters must be an object, got {type(raw).__name__}")
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            attr = _FILTER_KEYS.get(key)
            if attr is None:
                logger.debug("ignoring unknown filter key %r", key)
                continue
            values[attr] = value
        if 'last_change_time' in values:
            try:
                values['last_change_time'] = parse_change_time(values['last_change_time'])
            except (TypeError, ValueError) as exc:
                raise InvalidSearchError(f"invalid lastChangeTime {values['last_change_time']!r}: {exc}") from exc
        if values.get('assignees') is not None:
            values['assignees'] = _string_list('filters', 'assignees', values['assignees'])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Return the set filters in dict form (camelCase keys)."""
        data: Dict[str, Any] = {}
        if self.open is not None:
            data['open'] = self.open
        if self.priority is not None:
            data['priority'] = self.priority
        if self.unprioritized is not None:
            data['unprioritized'] = self.unprioritized
        if self.is_assigned is not None:
            data['isAssigned'] = self.is_assigned
        if self.whiteboard is not None:
            data['whiteboard'] = self.whiteboard
        if self.not_whiteboard is not None:
            data['notWhiteboard'] = self.not_whiteboard
        if self.last_change_time is not None:
            data['lastChangeTime'] = format_change_time(self.last_change_time)
        if self.custom_filter is not None:
            data['customFilter'] = self.custom_filter
        if self.assignees is not None:
            data['assignees'] = list(self.assignees)
        if self.is_pull_request is not None:
            data['isPullRequest'] = self.is_pull_request
        return data


@dataclass(frozen=True)
class SearchDescriptor:
    """One search plus the filters applied to its results."""

    search: Search
    filters: SearchFilters = field(default_factory=SearchFilters)

    @property
    def type(self) -> str:
        return self.search.type

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> 'SearchDescriptor':
        if not isinstance(raw, Mapping):
            raise UnsupportedSearchError(None)
        return cls(search=parse_search(raw.get('search')), filters=SearchFilters.from_dict(raw.get('filters')))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'search': search_to_dict(self.search)}
        filters = self.filters.to_dict()
        if filters:
            data['filters'] = filters
        return data


DescriptorLike = Union[SearchDescriptor, Mapping[str, Any]]


def as_descriptor(value: DescriptorLike) -> SearchDescriptor:
    if isinstance(value, SearchDescriptor):
        return value
    return SearchDescriptor.from_dict(value)


def as_descriptors(values: Sequence[DescriptorLike]) -> Tuple[SearchDescriptor, ...]:
    """Parse a whole list up front, so an unsupported search fails before anything is fetched."""
    return tuple(as_descriptor(v) for v in values)
