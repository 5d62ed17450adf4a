import pytest

from gcpbindings.catalog import RoleCatalog
from gcpbindings.client import ApiError
from gcpbindings.store import GraphStore


CATALOG = {
    "roles/owner": {"title": "Owner", "includedPermissions": ["resourcemanager.projects.setIamPolicy", "storage.buckets.delete"]},
    "roles/editor": {"title": "Editor", "includedPermissions": ["storage.buckets.create", "compute.instances.create"]},
    "roles/viewer": {"title": "Viewer", "includedPermissions": ["resourcemanager.projects.get", "storage.buckets.list"]},
    "roles/browser": {"title": "Browser", "includedPermissions": ["resourcemanager.projects.get"]},
    "roles/storage.objectViewer": {"title": "Storage Object Viewer", "includedPermissions": ["p1", "p2"]},
}


class FakeSearchSource:
    """Serves pre-built pages keyed by page token; optionally fails on a token."""

    def __init__(self, pages, *, fail_on=None, error=None):
        self.pages = pages
        self.fail_on = fail_on
        self.error = error
        self.calls = []

    def search(self, scope, page_token=None, query=None):
        self.calls.append((scope, page_token, query))
        index = int(page_token) if page_token else 0
        if self.fail_on is not None and index == self.fail_on:
            raise self.error
        page = {"results": self.pages[index]}
        if index + 1 < len(self.pages):
            page["nextPageToken"] = str(index + 1)
        return page


def policy_result(resource, bindings, project=None):
    out = {"resource": resource, "policy": {"bindings": bindings}}
    if project:
        out["project"] = project
    return out


def permission_denied():
    return ApiError("403 PERMISSION_DENIED : denied", code=403, status="PERMISSION_DENIED")


@pytest.fixture
def store():
    return GraphStore()


@pytest.fixture
def catalog():
    return RoleCatalog.from_dict(CATALOG)


@pytest.fixture
def notify():
    events = []

    def _notify(*, step_id, permission):
        events.append({"stepId": step_id, "permission": permission})

    _notify.events = events
    return _notify
