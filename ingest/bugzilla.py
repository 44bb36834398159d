"""
Bugzilla REST client and loader.

Each Bugzilla search type maps to its own query; descriptor filters that Bugzilla can
evaluate server-side are translated into query parameters as well. Unlike GitHub,
a failing Bugzilla request is an error for the whole bug list.
"""

import logging
import os
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from aggregate.search import (
    BugzillaAssigneesSearch,
    BugzillaComponentSearch,
    BugzillaMentorsSearch,
    BugzillaWhiteboardSearch,
    SearchDescriptor,
    format_change_time,
    resolve_change_time,
)
from errors import BugzillaError, UnsupportedSearchError
from ingest.base import BugLoader
from normalize.models import Bug, UNASSIGNED_EMAIL
from normalize.util import normalize_bugzilla_bug
from storage.retry import perform_request_with_retries

logger = logging.getLogger(__name__)

DEFAULT_BUGZILLA_URL = os.getenv("BUGZILLA_URL", "https://bugzilla.mozilla.org")

# We don't want _all_ the fields.
INCLUDE_FIELDS = (
    "id",
    "summary",
    "whiteboard",
    "product",
    "component",
    "assigned_to",
    "cf_fx_points",
    "priority",
    "mentors",
    "resolution",
    "severity",
    "type",
    "flags",
)

OPEN_RESOLUTION = "---"
CLOSED_RESOLUTIONS = ["FIXED", "INVALID", "WONTFIX", "DUPLICATE", "WORKSFORME", "INCOMPLETE"]

SearchCallback = Callable[[Optional[Exception], Optional[List[Dict[str, Any]]]], None]


class BugzillaClient:
    """Minimal Bugzilla REST client (GET /rest/bug)."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or DEFAULT_BUGZILLA_URL).rstrip("/")
        self.headers = {"Accept": "application/json"}

    def show_bug_url(self) -> str:
        return f"{self.base_url}/show_bug.cgi?id={{id}}"

    def search_bugs(self, params: Dict[str, Any], callback: SearchCallback):
        """Run a bug search and report the outcome through callback(error, bugs).

        Exactly one of error and bugs is None.
        """
        res = perform_request_with_retries(f"{self.base_url}/rest/bug", headers=self.headers, params=params)
        status = res.get('status', 0)
        data = res.get('response')
        if status != 200 or not isinstance(data, dict) or data.get('error'):
            message = data.get('message') if isinstance(data, dict) else data
            callback(BugzillaError(f"bug search failed: {message}", status=status), None)
            return
        callback(None, data.get('bugs') or [])


def fetch_bugs(client: BugzillaClient, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Wrap the callback-style search into a single call that returns bugs or raises."""
    outcome: Dict[str, Any] = {}

    def _done(error, bugs):
        outcome['error'] = error
        outcome['bugs'] = bugs

    client.search_bugs(params, _done)
    if 'error' not in outcome:
        raise BugzillaError("bug search finished without reporting a result")
    error = outcome['error']
    if error is not None:
        if isinstance(error, BugzillaError):
            raise error
        raise BugzillaError(str(error)) from error
    return outcome['bugs']


def _search_params(search) -> Dict[str, Any]:
    if isinstance(search, BugzillaComponentSearch):
        return {"product": search.product, "component": search.component}
    if isinstance(search, BugzillaAssigneesSearch):
        return {"quicksearch": "assigned_to:" + ",".join(search.assignees)}
    if isinstance(search, BugzillaMentorsSearch):
        return {"emailtype1": "regexp", "email1": "|".join(search.mentors), "emailbug_mentor1": "1"}
    if isinstance(search, BugzillaWhiteboardSearch):
        return {"quicksearch": f'whiteboard:"{search.whiteboard_content}"'}
    raise UnsupportedSearchError(getattr(search, 'type', None))


def build_query(descriptor: SearchDescriptor, resolve_relative: bool = True) -> Dict[str, Any]:
    """Translate a descriptor into Bugzilla search parameters.

    A relative lastChangeTime is resolved against the current time unless
    resolve_relative is False, in which case it stays in its "-<n>d" form.
    Raises UnsupportedSearchError for searches Bugzilla does not handle.
    """
    params = _search_params(descriptor.search)
    filters = descriptor.filters

    if filters.priority is not None:
        params["priority"] = f"P{filters.priority}"
    if filters.open is not None:
        params["resolution"] = OPEN_RESOLUTION if filters.open else list(CLOSED_RESOLUTIONS)
    if filters.is_assigned is not None:
        params["emailtype2"] = "notequals" if filters.is_assigned else "equals"
        params["email2"] = UNASSIGNED_EMAIL
        params["emailassigned_to2"] = "1"
    if filters.whiteboard is not None:
        params["whiteboard"] = filters.whiteboard
    if filters.not_whiteboard is not None:
        params["whiteboard"] = filters.not_whiteboard
        params["status_whiteboard_type"] = "notregexp"
    if filters.last_change_time is not None:
        if resolve_relative or not isinstance(filters.last_change_time, timedelta):
            params["last_change_time"] = resolve_change_time(filters.last_change_time).strftime("%Y-%m-%dT%H:%M:%SZ")
        else:
            params["last_change_time"] = format_change_time(filters.last_change_time)

    params["include_fields"] = ",".join(INCLUDE_FIELDS)
    return params


class BugzillaLoader(BugLoader):
    source = "bugzilla"
    search_types = (
        BugzillaComponentSearch.type,
        BugzillaAssigneesSearch.type,
        BugzillaMentorsSearch.type,
        BugzillaWhiteboardSearch.type,
    )

    def __init__(self, client: BugzillaClient):
        self.client = client

    def query_params(self, descriptor: SearchDescriptor) -> Dict[str, Any]:
        return build_query(descriptor)

    def cache_params(self, descriptor: SearchDescriptor) -> Dict[str, Any]:
        # relative change times would otherwise give a new key every second
        return build_query(descriptor, resolve_relative=False)

    def load(self, descriptor: SearchDescriptor) -> List[Bug]:
        params = self.query_params(descriptor)
        logger.debug("loading Bugzilla bugs %s", params)
        raw_bugs = fetch_bugs(self.client, params)
        show_bug_url = self.client.show_bug_url()
        return [normalize_bugzilla_bug(raw, show_bug_url) for raw in raw_bugs]
