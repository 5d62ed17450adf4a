from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from gcpbindings import console
from gcpbindings.store import Entity, GraphStore


MULTIPLE_TYPES_FOR_RESOURCE_KIND = "MULTIPLE_TYPES"
PROJECT_NAME_TO_ID = "project_name_to_id"

KeyBuilder = Callable[[list[str], GraphStore], Optional[str]]


def _path_key(rest: list[str], store: GraphStore) -> str:
    return "/".join(rest)


def _last_segment_key(rest: list[str], store: GraphStore) -> str:
    return rest[-1]


def _project_key(rest: list[str], store: GraphStore) -> str:
    # Asset names may carry the project number instead of the project id.
    project = rest[1]
    mapping = store.get_data(PROJECT_NAME_TO_ID) or {}
    return mapping.get(f"projects/{project}", project)


def _dataset_key(rest: list[str], store: GraphStore) -> Optional[str]:
    # projects/<project>/datasets/<dataset>
    if len(rest) < 4:
        return None
    return f"{rest[1]}:{rest[3]}"


@dataclass(frozen=True)
class ResourceKind:
    types: tuple[str, ...]
    key_builder: KeyBuilder = _path_key

    @property
    def type(self) -> str:
        return self.types[0] if len(self.types) == 1 else MULTIPLE_TYPES_FOR_RESOURCE_KIND


# "<service>/<collection>" -> graph type(s). More than one type means the kind
# alone cannot tell which entity type the resource is.
RESOURCE_KINDS: dict[str, ResourceKind] = {
    "cloudresourcemanager.googleapis.com/organizations": ResourceKind(("google_cloud_organization",)),
    "cloudresourcemanager.googleapis.com/folders": ResourceKind(("google_cloud_folder",)),
    "cloudresourcemanager.googleapis.com/projects": ResourceKind(("google_cloud_project",), _project_key),
    "iam.googleapis.com/serviceAccounts": ResourceKind(("google_iam_service_account",), _last_segment_key),
    "iam.googleapis.com/roles": ResourceKind(("google_iam_role",)),
    "storage.googleapis.com/buckets": ResourceKind(("google_storage_bucket",), _last_segment_key),
    "compute.googleapis.com/instances": ResourceKind(("google_compute_instance",)),
    "compute.googleapis.com/disks": ResourceKind(("google_compute_disk",)),
    "compute.googleapis.com/images": ResourceKind(("google_compute_image",)),
    "compute.googleapis.com/subnetworks": ResourceKind(("google_compute_subnetwork",)),
    "compute.googleapis.com/addresses": ResourceKind(("google_compute_address", "google_compute_global_address")),
    "compute.googleapis.com/forwardingRules": ResourceKind(
        ("google_compute_forwarding_rule", "google_compute_global_forwarding_rule")
    ),
    "compute.googleapis.com/backendServices": ResourceKind(
        ("google_compute_backend_service", "google_compute_region_backend_service")
    ),
    "sqladmin.googleapis.com/instances": ResourceKind(
        ("google_sql_mysql_instance", "google_sql_postgres_instance", "google_sql_sql_server_instance")
    ),
    "bigquery.googleapis.com/datasets": ResourceKind(("google_bigquery_dataset",), _dataset_key),
    "bigquery.googleapis.com/tables": ResourceKind(("google_bigquery_table",)),
    "cloudkms.googleapis.com/keyRings": ResourceKind(("google_kms_key_ring",)),
    "cloudkms.googleapis.com/cryptoKeys": ResourceKind(("google_kms_crypto_key",)),
    "pubsub.googleapis.com/topics": ResourceKind(("google_pubsub_topic",)),
    "pubsub.googleapis.com/subscriptions": ResourceKind(("google_pubsub_subscription",)),
    "secretmanager.googleapis.com/secrets": ResourceKind(("google_secret_manager_secret",)),
    "run.googleapis.com/services": ResourceKind(("google_cloud_run_service",)),
    "cloudfunctions.googleapis.com/functions": ResourceKind(("google_cloud_function",)),
    "spanner.googleapis.com/instances": ResourceKind(("google_spanner_instance",)),
    "spanner.googleapis.com/databases": ResourceKind(("google_spanner_database",)),
    "container.googleapis.com/clusters": ResourceKind(("google_container_cluster",)),
}


@dataclass(frozen=True)
class TypeAndKey:
    type: str
    key: str

    @property
    def ambiguous(self) -> bool:
        return self.type == MULTIPLE_TYPES_FOR_RESOURCE_KIND


@dataclass(frozen=True)
class ResourceTarget:
    identifier: str
    service: str
    type: str
    key: str
    entity: Optional[Entity] = None

    @property
    def ambiguous(self) -> bool:
        return self.type == MULTIPLE_TYPES_FOR_RESOURCE_KIND


def split_resource_identifier(identifier: str) -> Optional[tuple[str, list[str]]]:
    """
    Split `//<service>/<collection>/<id>/...` into the service and the
    remaining path segments. None when there are too few segments or the
    path ends in a collection with no id.
    """
    if not isinstance(identifier, str):
        return None
    parts = identifier.split("/")
    if len(parts) < 5 or parts[0] or parts[1] or not parts[2]:
        return None
    rest = parts[3:]
    if len(rest) % 2 or any(not p for p in rest):
        return None
    return parts[2], rest


def get_service_from_resource_identifier(identifier: str) -> Optional[str]:
    parts = identifier.split("/") if isinstance(identifier, str) else []
    return parts[2] if len(parts) > 2 and parts[2] else None


def resource_kind_for(service: str, rest: list[str]) -> str:
    # rest alternates collection/id and ends with an id
    return f"{service}/{rest[-2]}"


class ResourceTargetResolver:
    def __init__(self, store: GraphStore, *, enabled_services: Iterable[str] = ()) -> None:
        self.store = store
        self.enabled_services = frozenset(enabled_services)

    def type_and_key(self, identifier: str) -> Optional[TypeAndKey]:
        split = split_resource_identifier(identifier)
        if split is None:
            console.warn("Unable to parse resource identifier.", resource=identifier)
            return None
        service, rest = split
        kind_name = resource_kind_for(service, rest)
        kind = RESOURCE_KINDS.get(kind_name)
        if kind is None:
            console.warn("No graph type known for resource kind.", kind=kind_name, resource=identifier)
            return None
        key = kind.key_builder(rest, self.store)
        if not key:
            console.warn("Unable to parse resource identifier.", kind=kind_name, resource=identifier)
            return None
        return TypeAndKey(type=kind.type, key=key)

    def resolve(self, identifier: str) -> Optional[ResourceTarget]:
        type_and_key = self.type_and_key(identifier)
        if type_and_key is None:
            return None
        service = get_service_from_resource_identifier(identifier) or ""
        # A disabled service cannot have ingested entities.
        entity = self.store.find_entity(type_and_key.key) if service in self.enabled_services else None
        return ResourceTarget(
            identifier=identifier,
            service=service,
            type=type_and_key.type,
            key=type_and_key.key,
            entity=entity,
        )
