"""
Unified data model for bugs loaded from Bugzilla and GitHub.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Bugzilla's placeholder account for bugs nobody has taken.
UNASSIGNED_EMAIL = "nobody@mozilla.org"

# "needinfo" is flag type 800 on bugzilla.mozilla.org.
NEEDINFO_FLAG_TYPE = 800


class BugSource(Enum):
    """Tracker a bug was loaded from."""

    GITHUB = "github"
    BUGZILLA = "bugzilla"


@dataclass(frozen=True)
class Flag:
    """A Bugzilla flag attached to a bug."""

    id: Optional[int]
    type_id: Optional[int]
    name: str = ""
    status: str = ""
    setter: Optional[str] = None
    requestee: Optional[str] = None
    creation_date: Optional[str] = None


@dataclass(frozen=True)
class Bug:
    """
    Normalized bug entity.

    One value type for both trackers, tagged by ``source``. Fields that only one
    tracker provides keep their neutral default on the other variant, so callers
    can read any field without checking the source first.
    """

    id: str  # "gh:<id>" or "bz:<id>"
    source: BugSource
    title: str
    url: str
    assignee: Optional[str] = None
    priority: Optional[int] = None
    points: Optional[int] = None
    whiteboard: str = ""
    labels: Tuple[str, ...] = ()
    project: str = ""  # GitHub repo or Bugzilla component
    product: str = ""
    is_pull_request: bool = False
    mentors: Tuple[str, ...] = ()
    resolution: str = ""
    severity: Optional[str] = None
    type: Optional[str] = None
    needinfo: Optional[Flag] = None
    last_change_date: Optional[str] = None

    @property
    def is_assigned(self) -> bool:
        if self.assignee is None:
            return False
        if self.source is BugSource.BUGZILLA:
            return self.assignee != UNASSIGNED_EMAIL
        return True

    @property
    def has_priority(self) -> bool:
        return self.priority is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        data = asdict(self)
        data['source'] = self.source.value
        data['labels'] = list(self.labels)
        data['mentors'] = list(self.mentors)
        data['is_assigned'] = self.is_assigned
        return data
