import pytest

from conftest import FakeSearchSource, permission_denied, policy_result
from gcpbindings.bindings import (
    SEARCH_PERMISSION,
    STEP_IAM_BINDINGS,
    BindingIngestor,
    binding_condition,
    build_binding_key,
)
from gcpbindings.client import ApiError
from gcpbindings.graph import BINDING_ENTITY_TYPE, get_raw_data
from gcpbindings.resources import PROJECT_NAME_TO_ID
from gcpbindings.roles import PermissionResolver, create_role_entity
from gcpbindings.store import GraphStore


BUCKET = "//storage.googleapis.com/projects/_/buckets/my-bucket"
PROJECT = "//cloudresourcemanager.googleapis.com/projects/123"

VIEWER = {"role": "roles/viewer", "members": ["user:b@x.com", "user:a@x.com"]}
VIEWER_REORDERED = {"role": "roles/viewer", "members": ["user:a@x.com", "user:b@x.com"]}
EDITOR = {"role": "roles/editor", "members": ["group:devs@x.com"]}
CONDITIONAL = {
    "role": "roles/storage.objectViewer",
    "members": ["user:a@x.com"],
    "condition": {"title": "expires", "description": "temp", "expression": "request.time < timestamp('2030-01-01T00:00:00Z')"},
}

TWO_PAGES = [
    [policy_result(BUCKET, [VIEWER, EDITOR], project="projects/123")],
    [policy_result(BUCKET, [VIEWER_REORDERED, CONDITIONAL], project="projects/123"), policy_result(PROJECT, [EDITOR])],
]


def _ingestor(store, catalog, source, notify=None):
    kwargs = {"notify": notify} if notify else {}
    return BindingIngestor(source=source, store=store, permissions=PermissionResolver(store, catalog), **kwargs)


def test_binding_key_ignores_member_order():
    k1 = build_binding_key(binding=VIEWER, resource=BUCKET, project_name="projects/123")
    k2 = build_binding_key(binding=VIEWER_REORDERED, resource=BUCKET, project_name="projects/123")
    assert k1 == k2
    assert k1 == f"{BUCKET}|roles/viewer|projects/123|user:a@x.com,user:b@x.com"


def test_binding_key_distinguishes_resource_project_and_condition():
    base = build_binding_key(binding=VIEWER, resource=BUCKET, project_name="projects/123")
    assert build_binding_key(binding=VIEWER, resource=PROJECT, project_name="projects/123") != base
    assert build_binding_key(binding=VIEWER, resource=BUCKET, project_name=None) != base

    conditional = dict(VIEWER, condition={"expression": "resource.name.startsWith('x')"})
    key = build_binding_key(binding=conditional, resource=BUCKET, project_name="projects/123")
    assert key != base
    assert key.endswith("|resource.name.startsWith('x')")


def test_binding_condition():
    assert binding_condition({"role": "roles/viewer"}) is None
    assert binding_condition({"condition": {}}) is None
    assert binding_condition(CONDITIONAL)["title"] == "expires"


def test_ingest_deduplicates_across_pages(store, catalog):
    result = _ingestor(store, catalog, FakeSearchSource(TWO_PAGES)).ingest("projects/p")

    assert result.count == 4
    assert len(result.duplicates) == 1
    assert result.duplicates[0] == build_binding_key(binding=VIEWER, resource=BUCKET, project_name="projects/123")
    assert len(list(store.iterate_entities(BINDING_ENTITY_TYPE))) == 4


def test_ingest_is_idempotent_and_order_independent(catalog):
    first, second = GraphStore(), GraphStore()
    _ingestor(first, catalog, FakeSearchSource(TWO_PAGES)).ingest("projects/p")
    result = _ingestor(second, catalog, FakeSearchSource(list(reversed(TWO_PAGES)))).ingest("projects/p")

    assert {e["_key"] for e in first.collected_entities} == {e["_key"] for e in second.collected_entities}
    assert len(result.duplicates) == 1


def test_ingest_denormalizes_catalog_permissions(store, catalog):
    source = FakeSearchSource([[policy_result(BUCKET, [CONDITIONAL])]])
    _ingestor(store, catalog, source).ingest("projects/p")

    (binding,) = store.iterate_entities(BINDING_ENTITY_TYPE)
    assert sorted(binding["permissions"]) == ["p1", "p2"]
    assert binding["conditionExpression"].startswith("request.time")
    assert get_raw_data(binding) == CONDITIONAL


def test_ingest_prefers_stored_role_permissions(store, catalog):
    store.add_entity(
        create_role_entity(
            name="projects/p/roles/custom",
            title="Custom",
            included_permissions=["custom.a", "custom.b"],
            custom=True,
        )
    )
    binding = {"role": "projects/p/roles/custom", "members": ["user:a@x.com"]}
    _ingestor(store, catalog, FakeSearchSource([[policy_result(BUCKET, [binding])]])).ingest("projects/p")

    (entity,) = store.iterate_entities(BINDING_ENTITY_TYPE)
    assert entity["permissions"] == ["custom.a", "custom.b"]


def test_ingest_unknown_role_and_missing_role_have_no_permissions(store, catalog):
    bindings = [{"role": "roles/unknown.role", "members": ["user:a@x.com"]}, {"members": ["user:c@x.com"]}]
    _ingestor(store, catalog, FakeSearchSource([[policy_result(BUCKET, bindings)]])).ingest("projects/p")

    assert [e["permissions"] for e in store.iterate_entities(BINDING_ENTITY_TYPE)] == [[], []]


def test_ingest_resolves_project_id_from_name(store, catalog):
    store.set_data(PROJECT_NAME_TO_ID, {"projects/123": "my-proj"})
    _ingestor(store, catalog, FakeSearchSource([[policy_result(BUCKET, [EDITOR], project="projects/123")]])).ingest("projects/p")

    (entity,) = store.iterate_entities(BINDING_ENTITY_TYPE)
    assert entity["projectName"] == "projects/123"
    assert entity["projectId"] == "my-proj"


def test_ingest_permission_denied_is_not_fatal(store, catalog, notify, capsys):
    source = FakeSearchSource(TWO_PAGES, fail_on=1, error=permission_denied())
    result = _ingestor(store, catalog, source, notify).ingest("projects/p")

    assert result.missing_permission is True
    assert result.count == 2
    assert notify.events == [{"stepId": STEP_IAM_BINDINGS, "permission": SEARCH_PERMISSION}]
    assert "Error iterating all IAM policies" in capsys.readouterr().err


def test_ingest_other_errors_propagate(store, catalog, notify):
    source = FakeSearchSource(TWO_PAGES, fail_on=0, error=ApiError("500 INTERNAL", code=500))
    with pytest.raises(ApiError):
        _ingestor(store, catalog, source, notify).ingest("projects/p")
    assert notify.events == []


def test_ingest_resumes_from_page_token(store, catalog):
    source = FakeSearchSource(TWO_PAGES)
    result = _ingestor(store, catalog, source).ingest("projects/p", page_token="1")

    assert source.calls == [("projects/p", "1", None)]
    assert result.count == 3
    assert result.duplicates == []
