"""
CLI entry point for bugdash. Wires the pipeline: searches file -> aggregate -> render
"""

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from aggregate.merger import BugAggregator
from ingest.bugzilla import BugzillaClient, BugzillaLoader
from ingest.github import GitHubClient, GitHubLoader
from report.renderer import render_lists
from storage.retry import configure_retry

DEFAULT_LIST_NAME = "bugs"


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _load_json_file(path: str, description: str):
    """Attempt to load a JSON file and return the parsed object or None on failure."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print(f"Failed to read {description} {path}: {e}")
        return None


def parse_searches_file(data: Any, default_name: str = DEFAULT_LIST_NAME) -> Tuple[Dict[str, List[Dict[str, Any]]], Dict[str, List[str]]]:
    """Split a searches file into (searches by list name, columns by list name).

    Accepted shapes:
      - a list of descriptors (one list called default_name)
      - {"<list name>": [descriptors...]}
      - {"<list name>": {"columns": [...], "searches": [descriptors...]}}
    """
    if isinstance(data, list):
        return {default_name: data}, {}
    if not isinstance(data, dict):
        raise ValueError("searches file must contain a list of searches or an object of named lists")

    searches: Dict[str, List[Dict[str, Any]]] = {}
    columns: Dict[str, List[str]] = {}
    for name, entry in data.items():
        if isinstance(entry, list):
            searches[name] = entry
        elif isinstance(entry, dict) and isinstance(entry.get('searches'), list):
            searches[name] = entry['searches']
            if entry.get('columns'):
                columns[name] = list(entry['columns'])
        else:
            raise ValueError(f"bug list {name!r} must be a list of searches or an object with a 'searches' list")
    return searches, columns


def build_aggregator(args) -> BugAggregator:
    """Create clients and loaders from CLI args and return a fresh aggregator."""
    github = GitHubClient(token=args.github_token, base_url=args.github_api_url or None)
    bugzilla = BugzillaClient(base_url=args.bugzilla_url or None)
    return BugAggregator([GitHubLoader(github), BugzillaLoader(bugzilla)], key_mode=args.cache_key_mode)


def _select_lists(searches: Dict[str, List[Dict[str, Any]]], selected: Optional[List[str]]) -> Dict[str, List[Dict[str, Any]]]:
    if not selected:
        return searches
    missing = [name for name in selected if name not in searches]
    if missing:
        raise ValueError(f"unknown bug list(s): {', '.join(missing)}; available: {', '.join(searches)}")
    return {name: searches[name] for name in selected}


def write_output(rendered: str, args):
    """Write output to file or stdout."""
    out_path = args.out_file.strip()
    if not out_path:
        print(rendered)
        return
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' is safe for CSV on Windows and harmless for other formats
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(rendered)
    print(f"Wrote bug lists to {out_path}")


def run_pipeline(args, aggregator: BugAggregator) -> Tuple[int, str]:
    """Load searches, resolve every list and render. Returns (exit status, rendered output)."""
    data = _load_json_file(args.searches, 'searches file')
    if data is None:
        return 1, ""
    try:
        searches, list_columns = parse_searches_file(data)
        searches = _select_lists(searches, args.list)
    except ValueError as e:
        print(f"Invalid searches file {args.searches}: {e}")
        return 1, ""

    aliases = None
    if args.aliases:
        aliases = _load_json_file(args.aliases, 'aliases file')
        if not isinstance(aliases, dict):
            if aliases is not None:
                print(f"Invalid aliases file {args.aliases}: expected an object of email -> name")
            return 1, ""

    results = aggregator.find_bug_lists(searches, max_workers=args.workers)
    columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else None
    rendered = render_lists(results, fmt=args.output, columns=columns, aliases=aliases, sort_column=args.sort, list_columns=None if columns else list_columns)
    status = 0 if all(r.ok for r in results) else 2
    return status, rendered


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Aggregate Bugzilla and GitHub bugs into deduplicated lists")
    parser.add_argument("--searches", type=str, required=True, help="Path to JSON file with search descriptors (a list, or named lists)")
    parser.add_argument("--list", action="append", default=None, help="Only resolve this named list (repeatable)")
    parser.add_argument("--output", type=str, default="text", help="Output format (text, md, csv, json)")
    parser.add_argument("--out-file", type=str, default="", help="Write output to this file instead of stdout")
    parser.add_argument("--columns", type=str, default="", help="Comma separated bug fields to show (overrides per-list columns)")
    parser.add_argument("--sort", type=str, default=None, help="Sort column: assignee (default) or last_change_date")
    parser.add_argument("--aliases", type=str, default="", help="Path to JSON object mapping account emails to short display names")
    parser.add_argument("--workers", type=int, default=4, help="Number of bug lists resolved concurrently")
    parser.add_argument("--github_token", type=str, default=None, help="GitHub token (or set GITHUB_TOKEN env var)")
    parser.add_argument("--github-api-url", type=str, default="", help="GitHub API base URL (or set GITHUB_API_URL env var)")
    parser.add_argument("--bugzilla-url", type=str, default="", help="Bugzilla base URL (or set BUGZILLA_URL env var)")
    parser.add_argument("--cache-key-mode", choices=("query", "descriptor"), default="query", help="Share fetches per remote query (default) or per full descriptor")
    parser.add_argument("--cache-info", action="store_true", help="Print query cache statistics after resolving the lists")
    # request knobs: environment variables BUGDASH_MAX_RETRIES, BUGDASH_BACKOFF_BASE,
    # BUGDASH_BACKOFF_JITTER, BUGDASH_MAX_BACKOFF, BUGDASH_TIMEOUT set the defaults.
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per HTTP request (overrides BUGDASH_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides BUGDASH_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides BUGDASH_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides BUGDASH_MAX_BACKOFF env)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds (overrides BUGDASH_TIMEOUT env)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    configure_retry(
        max_retries=args.max_retries,
        backoff_base=args.backoff_base,
        backoff_jitter=args.backoff_jitter,
        max_backoff=args.max_backoff,
        timeout=args.timeout,
    )

    aggregator = build_aggregator(args)
    status, rendered = run_pipeline(args, aggregator)
    if rendered:
        write_output(rendered, args)
    if args.cache_info:
        stats = aggregator.cache.stats()
        stats['generated_at'] = datetime.now(timezone.utc).isoformat()
        _print_json(stats)
    return status


if __name__ == "__main__":
    raise SystemExit(main())
