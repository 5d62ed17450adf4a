from __future__ import annotations

import json
import os
import shlex
import subprocess
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Iterator, Optional, Protocol

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.service_account

from gcpbindings.config import IntegrationConfig


CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
PERMISSION_DENIED = 403


class ApiError(RuntimeError):
    def __init__(self, message: str, *, code: Optional[int] = None, status: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.status = status
        self.reason = reason

    @property
    def is_permission_denied(self) -> bool:
        return self.code == PERMISSION_DENIED or self.status == "PERMISSION_DENIED"


class CredentialError(RuntimeError):
    """No usable Cloud Asset credentials were found."""


def run_text(cmd: list[str]) -> str:
    try:
        out = subprocess.check_output(cmd, text=True, stderr=subprocess.DEVNULL)
    except subprocess.CalledProcessError as exc:
        raise RuntimeError(f"Command failed: {shlex.join(cmd)}\n{exc.output}") from exc
    return out.strip()


def _refreshed_token(creds) -> Optional[str]:
    creds.refresh(google.auth.transport.requests.Request())
    return getattr(creds, "token", None) or None


def _load_service_account_info(sa_json: str) -> dict:
    # Either a key file path or the key itself.
    try:
        if os.path.exists(sa_json):
            with open(sa_json, "r", encoding="utf-8") as f:
                return json.load(f)
        return json.loads(sa_json)
    except ValueError as exc:
        raise CredentialError("Service account key is neither a readable JSON key file nor inline key JSON.") from exc


def _token_from_service_account(sa_json: str) -> str:
    info = _load_service_account_info(sa_json)
    try:
        creds = google.oauth2.service_account.Credentials.from_service_account_info(info, scopes=[CLOUD_PLATFORM_SCOPE])
        token = _refreshed_token(creds)
    except (ValueError, google.auth.exceptions.GoogleAuthError) as exc:
        raise CredentialError(f"Service account key was rejected: {exc}") from exc
    if not token:
        raise CredentialError("Service account key produced no access token.")
    return token


def _token_from_gcloud() -> Optional[str]:
    try:
        return run_text(["gcloud", "auth", "print-access-token"]) or None
    except (RuntimeError, OSError):
        return None


def _token_from_application_default() -> Optional[str]:
    try:
        creds, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        return _refreshed_token(creds)
    except google.auth.exceptions.GoogleAuthError:
        return None


def get_access_token(config: IntegrationConfig) -> str:
    """
    Access token for the Cloud Asset and Resource Manager calls. A service
    account key wins; otherwise the active gcloud account, then Application
    Default Credentials.
    """
    if config.sa_json:
        return _token_from_service_account(config.sa_json)
    token = _token_from_gcloud() or _token_from_application_default()
    if not token:
        raise CredentialError(
            f"No credentials available to search IAM policies in {config.scope}. "
            "Set --sa-json or GCP_SA_JSON to a service account key, or log in with gcloud."
        )
    return token


def http_json(
    url: str,
    *,
    token: str,
    quota_project: Optional[str] = None,
    method: str = "GET",
    body: Optional[dict] = None,
    timeout: int = 60,
    retries: int = 4,
) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if quota_project:
        headers["X-Goog-User-Project"] = quota_project

    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"

    for attempt in range(retries + 1):
        req = urllib.request.Request(url, headers=headers, method=method, data=data)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            try:
                err_json = json.loads(raw) if raw else {}
            except ValueError:
                err_json = {"raw": raw}

            error = err_json.get("error", {}) if isinstance(err_json.get("error"), dict) else {}
            status = error.get("status")
            message = error.get("message") or raw or str(exc)
            reason = None
            for detail in error.get("details", []) or []:
                if isinstance(detail, dict) and detail.get("@type", "").endswith("ErrorInfo"):
                    reason = detail.get("reason")
                    break

            # Backoff on transient errors.
            if exc.code in (429, 500, 502, 503, 504) and attempt < retries:
                time.sleep(min(8, 0.5 * (2**attempt)))
                continue

            raise ApiError(
                f"{exc.code} {status or ''} {reason or ''}: {message}".strip(),
                code=exc.code,
                status=status,
                reason=reason,
            ) from exc
        except (urllib.error.URLError, ConnectionResetError, TimeoutError) as exc:
            if attempt < retries:
                time.sleep(min(8, 0.5 * (2**attempt)))
                continue
            raise ApiError(f"Network error: {exc}") from exc


class PolicySearchSource(Protocol):
    def search(self, scope: str, page_token: Optional[str] = None, query: Optional[str] = None) -> dict:
        ...


def iter_pages(source: PolicySearchSource, scope: str, *, page_token: Optional[str] = None, query: Optional[str] = None) -> Iterator[dict]:
    """
    Yield every page of a policy search in arrival order.

    `page_token` resumes a previous, interrupted search.
    """
    while True:
        page = source.search(scope, page_token, query) or {}
        yield page
        page_token = page.get("nextPageToken")
        if not page_token:
            break


class CloudAssetClient:
    """Thin client for the Cloud Asset Inventory IAM policy search."""

    base_url = "https://cloudasset.googleapis.com/v1"

    def __init__(self, *, token: str, quota_project: Optional[str] = None, page_size: int = 500) -> None:
        self.token = token
        self.quota_project = quota_project
        self.page_size = page_size

    def search(self, scope: str, page_token: Optional[str] = None, query: Optional[str] = None) -> dict:
        params = {"pageSize": str(self.page_size)}
        if query:
            params["query"] = query
        if page_token:
            params["pageToken"] = page_token
        url = f"{self.base_url}/{scope}:searchAllIamPolicies?{urllib.parse.urlencode(params)}"
        try:
            return http_json(url, token=self.token, quota_project=self.quota_project)
        except ApiError as exc:
            message = str(exc).lower()
            if self.quota_project is not None and "service_disabled" in message:
                raise ApiError(
                    f"Cloud Asset API appears disabled for quota project `{self.quota_project}`. "
                    f"Enable `cloudasset.googleapis.com` in that quota project (or change --quota-project).",
                    code=exc.code,
                    status=exc.status,
                    reason=exc.reason,
                ) from exc
            # If the API does require a quota project (common with user creds), retry using
            # the analyzed project as the quota project.
            if self.quota_project is None and "requires a quota project" in message:
                quota_guess = scope.split("/", 1)[1] if scope.startswith("projects/") else None
                return http_json(url, token=self.token, quota_project=quota_guess)
            raise


class ResourceManagerClient:
    base_url = "https://cloudresourcemanager.googleapis.com/v3"

    def __init__(self, *, token: str, quota_project: Optional[str] = None) -> None:
        self.token = token
        self.quota_project = quota_project

    def get_project(self, project_id: str) -> dict:
        return http_json(f"{self.base_url}/projects/{project_id}", token=self.token, quota_project=self.quota_project)

    def list_projects_in_organization(self, organization_id: str) -> list[dict]:
        projects: list[dict] = []
        page_token: Optional[str] = None
        while True:
            params = {"pageSize": "500", "parent": f"organizations/{organization_id}"}
            if page_token:
                params["pageToken"] = page_token
            url = f"{self.base_url}/projects?{urllib.parse.urlencode(params)}"
            data = http_json(url, token=self.token, quota_project=self.quota_project)
            for proj in data.get("projects", []) or []:
                if isinstance(proj, dict) and proj.get("state") == "ACTIVE" and proj.get("projectId"):
                    projects.append(proj)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return projects


def list_enabled_apis(project_id: str) -> set[str]:
    # Output is one API name per line.
    try:
        out = run_text(["gcloud", "services", "list", "--enabled", "--project", project_id, "--format=value(config.name)"])
    except (RuntimeError, OSError):
        return set()
    return {line.strip() for line in out.splitlines() if line.strip()}


def get_enabled_service_names(config: IntegrationConfig) -> set[str]:
    project_id = config.effective_quota_project
    if not project_id:
        return set()
    return list_enabled_apis(project_id)
