from __future__ import annotations

from typing import Any, Iterator, Optional

import networkx as nx


Entity = dict[str, Any]
Relationship = dict[str, Any]


class DuplicateKeyError(KeyError):
    """Raised when an entity or relationship `_key` was already stored."""


class GraphStore:
    """
    In-memory entity/relationship store for one collection run.

    - Entities are graph nodes keyed by `_key`.
    - Direct relationships are edges between two stored entities.
    - Mapped relationships have no local target, so they are kept apart and
      resolved downstream from their `_mapping`.
    - Adding a key twice raises `DuplicateKeyError`; nothing is overwritten.
    """

    def __init__(self) -> None:
        self.graph = nx.MultiDiGraph()
        self.mapped_relationships: dict[str, Relationship] = {}
        self._relationship_keys: set[str] = set()
        self._data: dict[str, Any] = {}

    # Entities

    def add_entity(self, entity: Entity) -> Entity:
        key = entity.get("_key")
        if not key:
            raise ValueError("Entity is missing `_key`.")
        if key in self.graph:
            raise DuplicateKeyError(f"Duplicate entity _key: {key}")
        self.graph.add_node(key, entity=entity)
        return entity

    def find_entity(self, key: Optional[str]) -> Optional[Entity]:
        if not key or key not in self.graph:
            return None
        return self.graph.nodes[key]["entity"]

    def has_entity(self, key: str) -> bool:
        return key in self.graph

    def iterate_entities(self, _type: Optional[str] = None) -> Iterator[Entity]:
        # Snapshot the keys so passes may add entities while iterating.
        keys = [k for k, e in self.graph.nodes(data="entity") if _type is None or e.get("_type") == _type]
        for key in keys:
            yield self.graph.nodes[key]["entity"]

    # Relationships

    def add_relationship(self, relationship: Relationship) -> Relationship:
        key = relationship.get("_key")
        if not key:
            raise ValueError("Relationship is missing `_key`.")
        if key in self._relationship_keys:
            raise DuplicateKeyError(f"Duplicate relationship _key: {key}")

        if "_mapping" in relationship:
            self.mapped_relationships[key] = relationship
        else:
            from_key = relationship["_fromEntityKey"]
            to_key = relationship["_toEntityKey"]
            for k in (from_key, to_key):
                if k not in self.graph:
                    raise KeyError(f"Relationship {key} references unknown entity {k}")
            self.graph.add_edge(from_key, to_key, key=key, relationship=relationship)
        self._relationship_keys.add(key)
        return relationship

    def has_relationship(self, key: str) -> bool:
        return key in self._relationship_keys

    # Job data shared between steps (e.g. project name -> project id).

    def set_data(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    # Views

    @property
    def collected_entities(self) -> list[Entity]:
        return [e for _, e in self.graph.nodes(data="entity")]

    @property
    def direct_relationships(self) -> list[Relationship]:
        return [r for _, _, r in self.graph.edges(data="relationship")]

    @property
    def collected_relationships(self) -> list[Relationship]:
        return self.direct_relationships + list(self.mapped_relationships.values())

    def export_json(self) -> dict:
        return {
            "entities": [{k: v for k, v in e.items() if k != "_rawData"} for e in self.collected_entities],
            "relationships": self.direct_relationships,
            "mapped_relationships": list(self.mapped_relationships.values()),
        }
