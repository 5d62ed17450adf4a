from __future__ import annotations

from typing import Any, Optional

from gcpbindings.store import Entity, Relationship


BINDING_ENTITY_TYPE = "google_iam_binding"
BINDING_ENTITY_CLASS = ["AccessPolicy"]
ROLE_ENTITY_TYPE = "google_iam_role"
ROLE_ENTITY_CLASS = ["AccessRole"]
PROJECT_ENTITY_TYPE = "google_cloud_project"
PROJECT_ENTITY_CLASS = ["Account"]


class RelationshipClass:
    USES = "USES"
    ASSIGNED = "ASSIGNED"
    ALLOWS = "ALLOWS"


class RelationshipDirection:
    FORWARD = "FORWARD"
    REVERSE = "REVERSE"


def generate_relationship_type(_class: str, from_type: str, to_type: str) -> str:
    # google_iam_binding + USES + google_iam_role -> google_iam_binding_uses_role
    to_parts = to_type.split("_")
    from_parts = from_type.split("_")
    i = 0
    while i < min(len(from_parts), len(to_parts)) - 1 and from_parts[i] == to_parts[i]:
        i += 1
    suffix = "_".join(to_parts[i:])
    return f"{from_type}_{_class.lower()}_{suffix}"


def relationship_key(from_key: str, _class: str, to_key: str) -> str:
    return f"{from_key}|{_class.lower()}|{to_key}"


def create_direct_relationship(
    *,
    _class: str,
    from_entity: Entity,
    to_entity: Entity,
    properties: Optional[dict[str, Any]] = None,
) -> Relationship:
    rel: Relationship = {
        "_key": relationship_key(from_entity["_key"], _class, to_entity["_key"]),
        "_type": generate_relationship_type(_class, from_entity["_type"], to_entity["_type"]),
        "_class": _class,
        "_fromEntityKey": from_entity["_key"],
        "_toEntityKey": to_entity["_key"],
        "displayName": _class,
    }
    if properties:
        rel.update({k: v for k, v in properties.items() if v is not None})
    return rel


def create_mapped_relationship(
    *,
    _class: str,
    _type: str,
    source_entity_key: str,
    target_entity: dict[str, Any],
    target_filter_keys: list[list[str]],
    skip_target_creation: bool,
    relationship_direction: str = RelationshipDirection.FORWARD,
    properties: Optional[dict[str, Any]] = None,
) -> Relationship:
    """
    Build a relationship whose target is described by filter keys instead
    of a stored entity. `targetFilterKeys` lists the target properties the
    downstream mapper matches on; `skipTargetCreation` controls whether it
    may create a placeholder target when nothing matches.

    Mapper-created targets are never cleaned up on re-ingestion, so repeated
    runs can accumulate duplicate placeholder entities.
    """
    target_key = target_entity.get("_key")
    if not target_key:
        raise ValueError("Mapped relationship target is missing `_key`.")
    target_entity = {k: v for k, v in target_entity.items() if v is not None and k != "_rawData"}
    rel: Relationship = {
        "_key": relationship_key(source_entity_key, _class, target_key),
        "_type": _type,
        "_class": _class,
        "displayName": _class,
        "_mapping": {
            "relationshipDirection": relationship_direction,
            "sourceEntityKey": source_entity_key,
            "targetFilterKeys": target_filter_keys,
            "skipTargetCreation": skip_target_creation,
            "targetEntity": target_entity,
        },
    }
    if properties:
        rel.update({k: v for k, v in properties.items() if v is not None})
    return rel


def get_raw_data(entity: Entity, name: str = "default") -> Optional[dict]:
    for item in entity.get("_rawData") or []:
        if isinstance(item, dict) and item.get("name") == name:
            return item.get("rawData")
    return None
