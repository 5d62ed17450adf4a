from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


MAX_PAGE_SIZE = 500  # searchAllIamPolicies upper bound
DEFAULT_CATALOG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "managed_roles.yaml")


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _str(value: Optional[str], env_name: str) -> Optional[str]:
    value = (value or os.getenv(env_name) or "").strip()
    return value or None


@dataclass(frozen=True)
class IntegrationConfig:
    project_id: Optional[str] = None
    organization_id: Optional[str] = None
    quota_project: Optional[str] = None
    sa_json: Optional[str] = None
    page_size: int = MAX_PAGE_SIZE
    catalog_path: str = DEFAULT_CATALOG_PATH

    def __post_init__(self) -> None:
        if bool(self.project_id) == bool(self.organization_id):
            raise ValueError("Exactly one of project_id or organization_id must be set.")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE} (got {self.page_size}).")

    @property
    def scope(self) -> str:
        if self.organization_id:
            return f"organizations/{self.organization_id}"
        return f"projects/{self.project_id}"

    @property
    def effective_quota_project(self) -> Optional[str]:
        return self.quota_project or self.project_id

    @classmethod
    def from_args(cls, args) -> "IntegrationConfig":
        project_id = (getattr(args, "project", None) or "").strip() or None
        organization_id = (getattr(args, "organization", None) or "").strip() or None
        # Environment only fills the scope when none was given on the command line.
        if not project_id and not organization_id:
            project_id = _str(None, "GCP_PROJECT_ID")
            organization_id = None if project_id else _str(None, "GCP_ORGANIZATION_ID")
        return cls(
            project_id=project_id,
            organization_id=organization_id,
            quota_project=_str(getattr(args, "quota_project", None), "GCP_QUOTA_PROJECT"),
            sa_json=_str(getattr(args, "sa_json", None), "GCP_SA_JSON"),
            page_size=getattr(args, "page_size", None) or _int("GCP_PAGE_SIZE", MAX_PAGE_SIZE),
            catalog_path=getattr(args, "catalog", None) or DEFAULT_CATALOG_PATH,
        )
