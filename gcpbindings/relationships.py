from __future__ import annotations

from typing import Optional

from gcpbindings import console
from gcpbindings.bindings import binding_condition
from gcpbindings.catalog import RoleCatalog
from gcpbindings.graph import (
    BINDING_ENTITY_TYPE,
    ROLE_ENTITY_TYPE,
    RelationshipClass,
    create_direct_relationship,
    create_mapped_relationship,
    generate_relationship_type,
    get_raw_data,
)
from gcpbindings.members import PRINCIPAL_KINDS, PrincipalResolver, ResolvedPrincipal
from gcpbindings.resources import ResourceTargetResolver
from gcpbindings.roles import RoleResolver, create_role_entity
from gcpbindings.store import Entity, GraphStore, Relationship


ANY_RESOURCE_TYPE = "google_cloud_resource"


def _condition_properties(binding: Entity) -> dict:
    condition = binding_condition(get_raw_data(binding) or {}) or {}
    return {
        "conditionTitle": condition.get("title"),
        "conditionDescription": condition.get("description"),
        "conditionExpression": condition.get("expression"),
    }


class RelationshipBuilder:
    """
    Connects stored binding entities to their role, principals and resource.
    Each `build_*` method is one full pass over the bindings and returns the
    number of relationships added.
    """

    def __init__(
        self,
        *,
        store: GraphStore,
        catalog: RoleCatalog,
        roles: RoleResolver,
        principals: PrincipalResolver,
        resources: ResourceTargetResolver,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.roles = roles
        self.principals = principals
        self.resources = resources

    # binding -USES-> role

    def build_role_relationships(self) -> int:
        added = 0
        for binding in self.store.iterate_entities(BINDING_ENTITY_TYPE):
            role = binding.get("role")
            if not role:
                continue
            role_key = self.roles.role_key(binding)
            # An unscoped basic role falls back to the bare role name below.
            role_entity = self.store.find_entity(role_key) if role_key else None
            if role_entity:
                rel = create_direct_relationship(
                    _class=RelationshipClass.USES,
                    from_entity=binding,
                    to_entity=role_entity,
                )
            else:
                rel = self._mapped_role_relationship(binding, role)
            self.store.add_relationship(rel)
            added += 1
        console.info("Created IAM binding role relationships", numRelationships=added)
        return added

    def _mapped_role_relationship(self, binding: Entity, role: str) -> Relationship:
        target_role = create_role_entity(
            name=role,
            title=role,
            included_permissions=self.catalog.permissions_for(role),
            custom=False,
        )
        # Remotely created placeholder roles are never cleaned up, so repeated
        # runs can leave duplicate role entities behind.
        return create_mapped_relationship(
            _class=RelationshipClass.USES,
            _type=generate_relationship_type(RelationshipClass.USES, BINDING_ENTITY_TYPE, ROLE_ENTITY_TYPE),
            source_entity_key=binding["_key"],
            target_entity=target_role,
            target_filter_keys=[["_type", "_key"]],
            skip_target_creation=False,
        )

    # binding -ASSIGNED-> principal

    def build_principal_relationships(self) -> int:
        added = 0
        seen: set[str] = set()
        for binding in self.store.iterate_entities(BINDING_ENTITY_TYPE):
            if not binding.get("role"):
                console.warn("Binding does not have an associated role.", binding=binding["_key"])
            properties = _condition_properties(binding)
            properties["projectId"] = binding.get("projectId")

            for member in binding.get("members") or []:
                resolved = self.principals.resolve(member)
                if resolved is None:
                    console.warn("Unable to parse binding member; skipping.", member=member, binding=binding["_key"])
                    continue
                rel = self._principal_relationship(binding, resolved, properties)
                if rel is None or rel["_key"] in seen:
                    continue
                self.store.add_relationship(rel)
                seen.add(rel["_key"])
                added += 1
        console.info("Created IAM binding principal relationships", numRelationships=added)
        return added

    def _principal_relationship(self, binding: Entity, resolved: ResolvedPrincipal, properties: dict) -> Optional[Relationship]:
        principal = resolved.principal
        kind = PRINCIPAL_KINDS.get(principal.kind)
        if kind is None:
            console.warn("No relationship defined for principal kind.", kind=principal.kind)
            return None

        if resolved.entity is not None:
            return create_direct_relationship(
                _class=kind._class, from_entity=binding, to_entity=resolved.entity, properties=properties
            )

        target = {
            "_type": kind.target_type,
            "_key": principal.key,
            "displayName": principal.identifier,
            "email": principal.identifier if principal.email_domain else None,
            "domain": principal.email_domain or (principal.identifier if principal.kind == "domain" else None),
            "member": principal.member,
            "deleted": principal.deleted or None,
            "uid": principal.uid,
        }
        return create_mapped_relationship(
            _class=kind._class,
            _type=generate_relationship_type(kind._class, BINDING_ENTITY_TYPE, kind.target_type),
            source_entity_key=binding["_key"],
            target_entity=target,
            target_filter_keys=[list(keys) for keys in kind.target_filter_keys],
            # Never materialize a placeholder for a principal that no longer exists.
            skip_target_creation=principal.deleted or not kind.create_target,
            properties=properties,
        )

    # binding -ALLOWS-> resource

    def build_resource_relationships(self) -> int:
        added = 0
        for binding in self.store.iterate_entities(BINDING_ENTITY_TYPE):
            target = self.resources.resolve(binding.get("resource"))
            if target is None:
                continue
            if target.entity is not None:
                rel = create_direct_relationship(
                    _class=RelationshipClass.ALLOWS,
                    from_entity=binding,
                    to_entity=target.entity,
                )
            else:
                target_type = ANY_RESOURCE_TYPE if target.ambiguous else target.type
                # Resources nothing has ingested never get a placeholder entity.
                rel = create_mapped_relationship(
                    _class=RelationshipClass.ALLOWS,
                    _type=generate_relationship_type(RelationshipClass.ALLOWS, BINDING_ENTITY_TYPE, target_type),
                    source_entity_key=binding["_key"],
                    target_entity={
                        "_type": None if target.ambiguous else target.type,
                        "_key": target.key,
                        "resourceIdentifier": target.identifier,
                    },
                    target_filter_keys=[["_key"] if target.ambiguous else ["_type", "_key"]],
                    skip_target_creation=True,
                )
            self.store.add_relationship(rel)
            added += 1
        console.info("Created IAM binding resource relationships", numRelationships=added)
        return added
