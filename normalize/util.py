"""
Normalization utility helpers.
Small helpers to turn raw tracker payloads into normalize.models.Bug entities.
"""
import re
from typing import Dict, Any, Iterable, List, Optional
from normalize.models import Bug, BugSource, Flag, UNASSIGNED_EMAIL, NEEDINFO_FLAG_TYPE

PRIORITY_LABEL_RE = re.compile(r"^priority:[0-9]$")

# Bugzilla's "no value" markers for custom fields and priority.
BUGZILLA_EMPTY_POINTS = "---"
BUGZILLA_EMPTY_PRIORITY = "--"

DEFAULT_SHOW_BUG_URL = "https://bugzilla.mozilla.org/show_bug.cgi?id={id}"


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def priority_from_labels(labels: Iterable[str]) -> Optional[int]:
    """Return the digit of the first ``priority:<digit>`` label, or None."""
    for name in labels:
        if PRIORITY_LABEL_RE.match(name):
            return int(name.split(":")[1])
    return None


def github_whiteboard(labels: Iterable[str]) -> str:
    """Build a Bugzilla-like whiteboard string out of GitHub labels, minus priority labels."""
    return " ".join(f"[{name}]" for name in labels if not PRIORITY_LABEL_RE.match(name))


def normalize_flag(raw: Dict[str, Any]) -> Flag:
    return Flag(
        id=raw.get('id'),
        type_id=raw.get('type_id'),
        name=raw.get('name') or '',
        status=raw.get('status') or '',
        setter=raw.get('setter'),
        requestee=raw.get('requestee'),
        creation_date=raw.get('creation_date'),
    )


def find_needinfo(flags: Optional[Iterable[Dict[str, Any]]]) -> Optional[Flag]:
    """Return the first needinfo flag in a raw flags list, or None."""
    for raw in flags or []:
        if isinstance(raw, dict) and raw.get('type_id') == NEEDINFO_FLAG_TYPE:
            return normalize_flag(raw)
    return None


def normalize_github_issue(raw: Dict[str, Any], project: str) -> Bug:
    """Create a normalized Bug from a raw GitHub issue (or pull request) dict.

    Pull requests have no assignee most of the time, so their author stands in for it,
    and they get a synthetic "pr" label.
    """
    is_pull_request = 'pull_request' in raw

    assignee = (raw.get('assignee') or {}).get('login')
    if not assignee and is_pull_request:
        assignee = (raw.get('user') or {}).get('login')

    labels: List[str] = [label.get('name') for label in raw.get('labels') or [] if label.get('name')]
    if is_pull_request:
        labels.append('pr')

    return Bug(
        id=f"gh:{raw['id']}",
        source=BugSource.GITHUB,
        title=raw.get('title') or '',
        url=raw.get('html_url') or '',
        assignee=assignee or None,
        priority=priority_from_labels(labels),
        points=None,
        whiteboard=github_whiteboard(labels),
        labels=tuple(labels),
        project=project,
        is_pull_request=is_pull_request,
        last_change_date=raw.get('updated_at'),
    )


def _bugzilla_points(value: Any) -> Optional[int]:
    if value is None or value == BUGZILLA_EMPTY_POINTS:
        return None
    return _parse_int(value)


def _bugzilla_priority(value: Any) -> Optional[int]:
    # priorities look like "P1".."P5"
    if not value or value == BUGZILLA_EMPTY_PRIORITY:
        return None
    return _parse_int(str(value)[1:])


def normalize_bugzilla_bug(raw: Dict[str, Any], show_bug_url: str = DEFAULT_SHOW_BUG_URL) -> Bug:
    """Create a normalized Bug from a raw Bugzilla REST bug dict.

    Only the fields requested through include_fields are read.
    """
    assigned_to = raw.get('assigned_to')
    return Bug(
        id=f"bz:{raw['id']}",
        source=BugSource.BUGZILLA,
        title=raw.get('summary') or '',
        url=show_bug_url.format(id=raw['id']),
        assignee=None if assigned_to in (None, UNASSIGNED_EMAIL) else assigned_to,
        priority=_bugzilla_priority(raw.get('priority')),
        points=_bugzilla_points(raw.get('cf_fx_points')),
        whiteboard=raw.get('whiteboard') or '',
        project=raw.get('component') or '',
        product=raw.get('product') or '',
        mentors=tuple(raw.get('mentors') or ()),
        resolution=raw.get('resolution') or '',
        severity=raw.get('severity'),
        type=raw.get('type'),
        needinfo=find_needinfo(raw.get('flags')),
    )
