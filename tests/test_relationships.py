import pytest

from gcpbindings.bindings import create_binding_entity
from gcpbindings.graph import RelationshipClass
from gcpbindings.members import PrincipalResolver
from gcpbindings.relationships import RelationshipBuilder
from gcpbindings.resources import ResourceTargetResolver
from gcpbindings.roles import RoleResolver


BUCKET = "//storage.googleapis.com/projects/_/buckets/my-bucket"
SQL = "//sqladmin.googleapis.com/projects/p/instances/db"
PROJECT = "//cloudresourcemanager.googleapis.com/projects/my-proj"


def _add_binding(store, key, role, resource, members, condition=None):
    binding = {"role": role, "members": members}
    if condition:
        binding["condition"] = condition
    return store.add_entity(
        create_binding_entity(
            _key=key,
            binding=binding,
            resource=resource,
            project_name="projects/123",
            project_id="my-proj",
            permissions=[],
        )
    )


def _builder(store, catalog, enabled_services=()):
    resources = ResourceTargetResolver(store, enabled_services=enabled_services)
    return RelationshipBuilder(
        store=store,
        catalog=catalog,
        roles=RoleResolver(store, catalog, resources),
        principals=PrincipalResolver(store),
        resources=resources,
    )


def test_role_relationship_direct_when_role_exists(store, catalog):
    _add_binding(store, "b1", "roles/viewer", PROJECT, ["user:a@x.com"])
    builder = _builder(store, catalog)
    builder.roles.create_basic_roles_for_bindings()

    assert builder.build_role_relationships() == 1
    (rel,) = store.direct_relationships
    assert rel["_class"] == RelationshipClass.USES
    assert rel["_type"] == "google_iam_binding_uses_role"
    assert (rel["_fromEntityKey"], rel["_toEntityKey"]) == ("b1", "my-proj/roles/viewer")


def test_role_relationship_mapped_with_target_creation(store, catalog):
    _add_binding(store, "b1", "roles/storage.objectViewer", BUCKET, ["user:a@x.com"])

    assert _builder(store, catalog).build_role_relationships() == 1
    (rel,) = store.mapped_relationships.values()
    mapping = rel["_mapping"]
    assert mapping["skipTargetCreation"] is False
    assert mapping["targetFilterKeys"] == [["_type", "_key"]]
    assert mapping["sourceEntityKey"] == "b1"
    target = mapping["targetEntity"]
    assert target["_key"] == "roles/storage.objectViewer"
    assert target["_type"] == "google_iam_role"
    assert target["permissions"] == "p1,p2"
    assert target["custom"] is False
    assert "_rawData" not in target


def test_principal_relationships_are_deduplicated(store, catalog):
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["user:a@x.com", "user:A@x.com", "group:g@x.com"])

    assert _builder(store, catalog).build_principal_relationships() == 2
    types = sorted(r["_type"] for r in store.mapped_relationships.values())
    assert types == ["google_iam_binding_assigned_group", "google_iam_binding_assigned_user"]
    for rel in store.mapped_relationships.values():
        assert rel["_class"] == RelationshipClass.ASSIGNED
        assert rel["_mapping"]["targetFilterKeys"] == [["_type", "email"]]
        assert rel["_mapping"]["relationshipDirection"] == "FORWARD"
        assert rel["projectId"] == "my-proj"


def test_principal_relationship_direct_for_known_service_account(store, catalog):
    store.add_entity({"_key": "sa@p.iam.gserviceaccount.com", "_type": "google_iam_service_account"})
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["serviceAccount:sa@p.iam.gserviceaccount.com"])

    _builder(store, catalog).build_principal_relationships()
    (rel,) = store.direct_relationships
    assert rel["_type"] == "google_iam_binding_assigned_service_account"
    assert (rel["_fromEntityKey"], rel["_toEntityKey"]) == ("b1", "sa@p.iam.gserviceaccount.com")


def test_principal_relationship_carries_condition(store, catalog):
    condition = {"title": "t", "description": "d", "expression": "request.time < timestamp('2030-01-01T00:00:00Z')"}
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["allUsers"], condition=condition)

    _builder(store, catalog).build_principal_relationships()
    (rel,) = store.mapped_relationships.values()
    assert rel["conditionTitle"] == "t"
    assert rel["conditionExpression"] == condition["expression"]
    assert rel["_mapping"]["targetEntity"]["_type"] == "everyone"


def test_deleted_principals_never_create_targets(store, catalog):
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["deleted:user:gone@x.com?uid=9"])

    _builder(store, catalog).build_principal_relationships()
    (rel,) = store.mapped_relationships.values()
    assert rel["_mapping"]["skipTargetCreation"] is True
    assert rel["_mapping"]["targetEntity"]["deleted"] is True


def test_malformed_members_are_skipped(store, catalog, capsys):
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["robot:r2d2", "user:a@x.com"])

    assert _builder(store, catalog).build_principal_relationships() == 1
    assert "Unable to parse binding member" in capsys.readouterr().err


def test_resource_relationship_direct_when_resource_known(store, catalog):
    store.add_entity({"_key": "my-bucket", "_type": "google_storage_bucket"})
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["user:a@x.com"])

    assert _builder(store, catalog, {"storage.googleapis.com"}).build_resource_relationships() == 1
    (rel,) = store.direct_relationships
    assert rel["_class"] == RelationshipClass.ALLOWS
    assert rel["_toEntityKey"] == "my-bucket"


def test_resource_relationship_mapped_without_target_creation(store, catalog):
    store.add_entity({"_key": "my-bucket", "_type": "google_storage_bucket"})
    _add_binding(store, "b1", "roles/viewer", BUCKET, ["user:a@x.com"])

    # storage is not enabled, so the stored bucket is not looked up
    _builder(store, catalog, {"compute.googleapis.com"}).build_resource_relationships()
    (rel,) = store.mapped_relationships.values()
    mapping = rel["_mapping"]
    assert mapping["skipTargetCreation"] is True
    assert mapping["targetFilterKeys"] == [["_type", "_key"]]
    assert mapping["targetEntity"] == {"_type": "google_storage_bucket", "_key": "my-bucket", "resourceIdentifier": BUCKET}


def test_resource_relationship_ambiguous_kind_filters_on_key_only(store, catalog):
    _add_binding(store, "b1", "roles/viewer", SQL, ["user:a@x.com"])

    _builder(store, catalog, {"sqladmin.googleapis.com"}).build_resource_relationships()
    (rel,) = store.mapped_relationships.values()
    mapping = rel["_mapping"]
    assert mapping["targetFilterKeys"] == [["_key"]]
    assert "_type" not in mapping["targetEntity"]
    assert rel["_type"] == "google_iam_binding_allows_cloud_resource"


def test_relationship_keys_do_not_collide_across_passes(store, catalog):
    _add_binding(store, "b1", "roles/storage.objectViewer", BUCKET, ["user:a@x.com"])
    builder = _builder(store, catalog)

    builder.build_role_relationships()
    builder.build_principal_relationships()
    builder.build_resource_relationships()
    keys = [r["_key"] for r in store.collected_relationships]
    assert len(keys) == 3
    assert len(set(keys)) == 3


@pytest.mark.parametrize("role", [None, ""])
def test_binding_without_role_gets_no_role_relationship(store, catalog, role, capsys):
    _add_binding(store, "b1", role, BUCKET, ["user:a@x.com"])
    builder = _builder(store, catalog)

    assert builder.build_role_relationships() == 0
    assert builder.build_principal_relationships() == 1
    assert "Binding does not have an associated role" in capsys.readouterr().err


def test_truncated_resource_identifiers_do_not_stop_the_pass(store, catalog, capsys):
    _add_binding(store, "b1", "roles/viewer", "//bigquery.googleapis.com/projects/p/datasets", ["user:a@x.com"])
    _add_binding(store, "b2", "roles/viewer", BUCKET, ["user:a@x.com"])
    builder = _builder(store, catalog)

    assert builder.roles.create_basic_roles_for_bindings() == 1
    assert builder.build_resource_relationships() == 1
    (rel,) = store.mapped_relationships.values()
    assert rel["_mapping"]["sourceEntityKey"] == "b2"
    assert "Unable to parse resource identifier" in capsys.readouterr().err


def test_unscoped_basic_role_maps_to_bare_role(store, catalog, capsys):
    _add_binding(store, "b1", "roles/viewer", "//example.googleapis.com/projects/p/widgets/w", ["user:a@x.com"])
    builder = _builder(store, catalog)

    assert builder.roles.create_basic_roles_for_bindings() == 0
    assert builder.build_role_relationships() == 1
    (rel,) = store.mapped_relationships.values()
    assert rel["_class"] == RelationshipClass.USES
    assert rel["_mapping"]["skipTargetCreation"] is False
    target = rel["_mapping"]["targetEntity"]
    assert target["_key"] == "roles/viewer"
    assert target["permissions"] == ",".join(catalog.permissions_for("roles/viewer"))
    assert "Unable to scope basic role" in capsys.readouterr().err
