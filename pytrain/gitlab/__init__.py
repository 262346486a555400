"""GitLab REST client."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import httpx
import yaml

from ..errors import AuthError, GitLabError
from .types import GitLabProject, MergeRequest, MergeRequestState

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_SCP_RE = re.compile(r'^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>[^/].*)$')

def find_gitlab_token(host: str = "gitlab.com") -> Optional[str]:
    """Find a GitLab token from GITLAB_TOKEN or the glab CLI config."""
    token = os.environ.get("GITLAB_TOKEN")
    if token:
        return token

    config_path = Path.home() / ".config" / "glab-cli" / "config.yml"
    try:
        if config_path.exists():
            with open(config_path, "r") as f:
                glab_config = yaml.safe_load(f) or {}
            hosts: Dict[str, Any] = glab_config.get("hosts") or {}
            host_config = hosts.get(host) or {}
            token = host_config.get("token")
            if isinstance(token, str) and token:
                return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading glab CLI config: {e}")
    return None

def project_path_from_remote(remote_url: str) -> Optional[str]:
    """`group/sub/project` from an SSH, scp-style or HTTPS remote URL."""
    url = remote_url.strip()
    if "://" in url:
        path = urlparse(url).path
    else:
        match = _SCP_RE.match(url)
        if not match:
            return None
        path = match.group("path")
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[:-4]
    if "/" not in path:
        return None
    return path

def host_of(base_url: str) -> str:
    return urlparse(base_url).hostname or base_url

class GitLabClient:
    """Thin client over the GitLab v4 API for merge requests."""

    def __init__(self, base_url: str, token: Optional[str], project_id: Optional[str] = None,
                 http: Optional[httpx.Client] = None, timeout: float = DEFAULT_TIMEOUT):
        if not token:
            raise AuthError(
                "No GitLab token found",
                hint="Set GITLAB_TOKEN or log in with `glab auth login`")
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.http = http or httpx.Client(timeout=timeout)
        self.headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/api/v4{path}"
        logger.debug(f"> GitLab {method} {path}")
        try:
            response = self.http.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            raise GitLabError(f"GitLab request {method} {path} failed: {e}") from e
        if response.is_error:
            raise GitLabError(
                f"GitLab {method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code)
        return response.json()

    def _project_path(self) -> str:
        if not self.project_id:
            raise GitLabError("GitLab project is not known",
                              hint="Set repo.gitlab_project_id or GITLAB_PROJECT_ID")
        return f"/projects/{quote(str(self.project_id), safe='')}"

    def detect_project(self, remote_url: str) -> GitLabProject:
        """Resolve the project behind `remote_url` and remember its id."""
        path = project_path_from_remote(remote_url)
        if path is None:
            raise GitLabError(f"Cannot derive a GitLab project from remote URL {remote_url}",
                              hint="Set repo.gitlab_project_id in .train.yaml")
        project = GitLabProject.model_validate(
            self._request("GET", f"/projects/{quote(path, safe='')}"))
        self.project_id = str(project.id)
        logger.debug(f"Using GitLab project {project.path_with_namespace} ({project.id})")
        return project

    def create_merge_request(self, source_branch: str, target_branch: str, title: str,
                             description: Optional[str] = None) -> MergeRequest:
        payload = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            "description": description,
        }
        data = self._request("POST", f"{self._project_path()}/merge_requests", json=payload)
        return MergeRequest.model_validate(data)

    def get_merge_request(self, iid: int) -> MergeRequest:
        data = self._request("GET", f"{self._project_path()}/merge_requests/{iid}")
        return MergeRequest.model_validate(data)

    def update_merge_request(self, iid: int, title: Optional[str] = None,
                             description: Optional[str] = None,
                             target_branch: Optional[str] = None) -> MergeRequest:
        payload: Dict[str, str] = {}
        if title is not None:
            payload["title"] = title
        if description is not None:
            payload["description"] = description
        if target_branch is not None:
            payload["target_branch"] = target_branch
        data = self._request("PUT", f"{self._project_path()}/merge_requests/{iid}", json=payload)
        return MergeRequest.model_validate(data)

__all__ = [
    "GitLabClient", "GitLabProject", "MergeRequest", "MergeRequestState",
    "find_gitlab_token", "project_path_from_remote", "host_of",
]
