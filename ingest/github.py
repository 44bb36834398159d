"""
GitHub issues client and loader.
A failure to reach GitHub must not break a bug list, so the loader turns every error into an empty batch.
"""
import logging
import os
from typing import List, Dict, Any, Optional

from aggregate.search import GithubRepoSearch, SearchDescriptor
from errors import GitHubError
from ingest.base import BugLoader
from normalize.models import Bug
from normalize.util import normalize_github_issue
from storage.retry import perform_request_with_retries

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")


class GitHubClient:
    """Minimal GitHub REST client for listing repository issues."""

    def __init__(self, token: Optional[str] = None, base_url: Optional[str] = None, per_page: int = 100):
        self.token = token if token is not None else os.getenv("GITHUB_TOKEN", "")
        self.base_url = (base_url or DEFAULT_API_URL).rstrip("/")
        self.per_page = per_page
        self.headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    def list_issues(self, user: str, project: str, state: str = "open") -> List[Dict[str, Any]]:
        """Return one page of issues (pull requests included) for user/project.

        Raises GitHubError when the request fails or the body is not a list.
        """
        url = f"{self.base_url}/repos/{user}/{project}/issues"
        params = {"state": state, "per_page": self.per_page}
        res = perform_request_with_retries(url, headers=self.headers, params=params)
        status = res.get('status', 0)
        data = res.get('response')
        if status != 200:
            message = data.get('message') if isinstance(data, dict) else data
            raise GitHubError(f"listing issues for {user}/{project} failed: {message}", status=status)
        if not isinstance(data, list):
            raise GitHubError(f"unexpected issues payload for {user}/{project}: {type(data).__name__}", status=status)
        return data


class GitHubLoader(BugLoader):
    source = "github"
    search_types = (GithubRepoSearch.type,)

    def __init__(self, client: GitHubClient):
        self.client = client

    def query_params(self, descriptor: SearchDescriptor) -> Dict[str, Any]:
        search = descriptor.search
        return {
            "user": search.user,
            "project": search.project,
            "state": "open" if descriptor.filters.open else "closed",
        }

    def load(self, descriptor: SearchDescriptor) -> List[Bug]:
        query = self.query_params(descriptor)
        logger.debug("loading GitHub issues %s/%s (state=%s)", query['user'], query['project'], query['state'])
        try:
            items = self.client.list_issues(query['user'], query['project'], state=query['state'])
            return [normalize_github_issue(item, query['project']) for item in items]
        except Exception:
            logger.warning("Failed to fetch data from GitHub for %s/%s", query['user'], query['project'], exc_info=True)
            return []
