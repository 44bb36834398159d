"""
Report renderer: format bug lists as plain text, Markdown, CSV or JSON.
Every format starts with a 1-based "index" column followed by the requested bug fields.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence
from normalize.models import Bug
import io
import csv
import json

DEFAULT_COLUMNS = ("assignee", "title", "project", "whiteboard")
TITLE_MAX_LENGTH = 100


def alias(email: Optional[str], aliases: Optional[Mapping[str, str]] = None) -> str:
    """Return a short display name for an account."""
    if email is None:
        return ""
    if aliases and email in aliases:
        return aliases[email]
    return email


def format_field(bug: Bug, field: str, index: int = 0, aliases: Optional[Mapping[str, str]] = None) -> str:
    """Return the display string of one bug field."""
    if field == "index":
        return str(index)
    value = getattr(bug, field, None)
    if field == "assignee":
        # some teams mark ownership in the whiteboard instead of the assignee field
        if not bug.is_assigned and "[assigned]" in bug.whiteboard:
            return "assigned"
        return alias(value, aliases)
    if field == "title":
        return value if len(value) <= TITLE_MAX_LENGTH else value[:TITLE_MAX_LENGTH] + " ..."
    if field == "points":
        return "" if value is None else str(value)
    if field == "priority":
        return "-" if value is None else str(value)
    if field == "mentors":
        return ", ".join(alias(m, aliases) for m in value)
    if field == "labels":
        return ", ".join(value)
    if field == "needinfo":
        return "" if value is None else (value.requestee or "needinfo")
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _assignee_sort_key(bug: Bug):
    # unassigned bugs last
    return (bug.assignee is None, (bug.assignee or "").lower())


def sort_bugs(bugs: Sequence[Bug], sort_column: Optional[str] = None) -> List[Bug]:
    """Sort by assignee (default) or by most recent change first."""
    if sort_column in ("last_change_date", "last_change_time"):
        return sorted(bugs, key=lambda b: b.last_change_date or "", reverse=True)
    return sorted(bugs, key=_assignee_sort_key)


def _rows(bugs: Sequence[Bug], columns: Sequence[str], aliases) -> List[List[str]]:
    return [[str(i)] + [format_field(b, c, i, aliases) for c in columns] for i, b in enumerate(bugs, start=1)]


def render_text(bugs: Sequence[Bug], columns: Sequence[str] = DEFAULT_COLUMNS, title: str = "", aliases=None) -> str:
    """Render an aligned plain-text table."""
    header = ["#"] + list(columns)
    rows = _rows(bugs, columns, aliases)
    widths = [max(len(r[i]) for r in [header] + rows) for i in range(len(header))]
    lines = []
    if title:
        lines.append(f"{title} ({len(bugs)} bugs)")
    lines.append("  ".join(h.ljust(w) for h, w in zip(header, widths)).rstrip())
    lines.extend("  ".join(c.ljust(w) for c, w in zip(r, widths)).rstrip() for r in rows)
    return "\n".join(lines)


def render_markdown(bugs: Sequence[Bug], columns: Sequence[str] = DEFAULT_COLUMNS, title: str = "", aliases=None) -> str:
    """Render a Markdown table; the index cell links to the bug."""
    md = []
    if title:
        md.append(f"## {title}\n")
        md.append(f"_{len(bugs)} bugs_\n")
    md.append("| # | " + " | ".join(columns) + " |")
    md.append("|---|" + "---|" * len(columns))
    for row, bug in zip(_rows(bugs, columns, aliases), bugs):
        cells = [c.replace("|", "\\|") for c in row[1:]]
        md.append(f"| [{row[0]}]({bug.url}) | " + " | ".join(cells) + " |")
    return "\n".join(md)


def render_csv(bugs: Sequence[Bug], columns: Sequence[str] = DEFAULT_COLUMNS, aliases=None) -> str:
    """Render CSV with a header row and a url column."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["index"] + list(columns) + ["url"])
    for row, bug in zip(_rows(bugs, columns, aliases), bugs):
        writer.writerow(row + [bug.url])
    return output.getvalue()


def render_json(bugs: Sequence[Bug]) -> str:
    """Export full bug records, each with its index."""
    serializable: List[Dict[str, Any]] = []
    for i, bug in enumerate(bugs, start=1):
        data = bug.to_dict()
        data['index'] = i
        serializable.append(data)
    return json.dumps(serializable, indent=2, default=str)


def render(bugs: Sequence[Bug], fmt: str = 'text', columns: Optional[Sequence[str]] = None, title: str = "", aliases=None) -> str:
    """Main render function for one bug list."""
    columns = list(columns or DEFAULT_COLUMNS)
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(bugs, columns, title, aliases)
    if fmt_l == 'csv':
        return render_csv(bugs, columns, aliases)
    if fmt_l in ('json', 'js'):
        return render_json(bugs)
    return render_text(bugs, columns, title, aliases)


def render_lists(
    results,
    fmt: str = 'text',
    columns: Optional[Sequence[str]] = None,
    aliases=None,
    sort_column: Optional[str] = None,
    list_columns: Optional[Mapping[str, Sequence[str]]] = None,
) -> str:
    """Render several BugListResult objects one after the other.

    JSON output is a single object keyed by list name; failed lists carry their error message.
    list_columns overrides the columns of individual lists by name.
    """
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('json', 'js'):
        payload = {}
        for res in results:
            bugs = sort_bugs(res.bugs, sort_column)
            payload[res.name] = {'bugs': json.loads(render_json(bugs)), 'error': str(res.error) if res.error else None}
        return json.dumps(payload, indent=2)

    sections = []
    for res in results:
        if res.error is not None:
            sections.append(f"{res.name}: failed to load ({res.error})")
            continue
        cols = (list_columns or {}).get(res.name) or columns
        sections.append(render(sort_bugs(res.bugs, sort_column), fmt=fmt_l, columns=cols, title=res.name, aliases=aliases))
    return "\n\n".join(sections)
