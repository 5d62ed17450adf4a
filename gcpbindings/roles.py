from __future__ import annotations

from typing import Optional

from gcpbindings import console
from gcpbindings.catalog import RoleCatalog
from gcpbindings.graph import BINDING_ENTITY_TYPE, ROLE_ENTITY_CLASS, ROLE_ENTITY_TYPE
from gcpbindings.resources import ResourceTargetResolver
from gcpbindings.store import Entity, GraphStore


# Basic roles exist at every level of the resource hierarchy:
# https://cloud.google.com/iam/docs/understanding-roles#basic
BASIC_ROLES = ("roles/owner", "roles/editor", "roles/viewer", "roles/browser")


def is_basic_role(role: Optional[str]) -> bool:
    return role in BASIC_ROLES


def create_role_entity(
    *,
    name: str,
    title: str,
    included_permissions: list[str],
    custom: bool,
    key: Optional[str] = None,
) -> Entity:
    return {
        "_key": key or name,
        "_type": ROLE_ENTITY_TYPE,
        "_class": ROLE_ENTITY_CLASS,
        "name": name,
        "displayName": title,
        "title": title,
        "permissions": ",".join(included_permissions),
        "custom": custom,
        "basic": is_basic_role(name),
        "_rawData": [{"name": "default", "rawData": {"name": name, "title": title, "includedPermissions": list(included_permissions)}}],
    }


class PermissionResolver:
    def __init__(self, store: GraphStore, catalog: RoleCatalog) -> None:
        self.store = store
        self.catalog = catalog

    def resolve(self, role: Optional[str]) -> list[str]:
        if not role:
            return []
        role_entity = self.store.find_entity(role)
        if role_entity:
            return [p for p in (role_entity.get("permissions") or "").split(",") if p]
        return self.catalog.permissions_for(role)


class RoleResolver:
    def __init__(self, store: GraphStore, catalog: RoleCatalog, resources: ResourceTargetResolver) -> None:
        self.store = store
        self.catalog = catalog
        self.resources = resources

    def role_key(self, binding: Entity) -> Optional[str]:
        """
        Key of the role entity a binding uses. Basic roles are keyed by the
        resource they are attached to, e.g. `my-project/roles/editor`.
        """
        role = binding.get("role")
        if not role:
            return None
        if not is_basic_role(role):
            return role
        type_and_key = self.resources.type_and_key(binding.get("resource"))
        if type_and_key is None:
            console.warn("Unable to scope basic role.", role=role, binding=binding.get("_key"))
            return None
        return f"{type_and_key.key}/{role}"

    def find_or_create_role_entity(self, *, role_name: str, role_key: str) -> Optional[Entity]:
        existing = self.store.find_entity(role_key)
        if existing or not is_basic_role(role_name):
            return existing
        return self.store.add_entity(
            create_role_entity(
                name=role_name,
                title=self.catalog.title_for(role_name),
                included_permissions=self.catalog.permissions_for(role_name),
                custom=False,
                key=role_key,
            )
        )

    def create_basic_roles_for_bindings(self) -> int:
        created = 0
        for binding in self.store.iterate_entities(BINDING_ENTITY_TYPE):
            role = binding.get("role")
            if not is_basic_role(role):
                continue
            role_key = self.role_key(binding)
            if role_key is None or self.store.has_entity(role_key):
                continue
            self.find_or_create_role_entity(role_name=role, role_key=role_key)
            created += 1
        console.info("Created IAM basic role entities", numBasicRoles=created)
        return created
