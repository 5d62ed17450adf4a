from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

import yaml

from gcpbindings.config import DEFAULT_CATALOG_PATH


@dataclass(frozen=True)
class ManagedRole:
    name: str
    title: str
    permissions: tuple[str, ...] = field(default_factory=tuple)


def _load_yaml(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML mapping in {path}")
    return data


class RoleCatalog:
    """Read-only mapping of managed role name -> title and permissions."""

    def __init__(self, roles: Mapping[str, ManagedRole]) -> None:
        self._roles = MappingProxyType(dict(roles))

    @classmethod
    def from_dict(cls, data: Mapping[str, dict], *, source: str = "<dict>") -> "RoleCatalog":
        roles: dict[str, ManagedRole] = {}
        for name, entry in data.items():
            if not isinstance(name, str) or not name.startswith("roles/"):
                raise ValueError(f"{source}: invalid role name {name!r} (expected `roles/...`)")
            entry = entry or {}
            if not isinstance(entry, dict):
                raise ValueError(f"{source}:{name} must be a mapping")
            perms = entry.get("includedPermissions") or []
            if not isinstance(perms, list):
                raise ValueError(f"{source}:{name}.includedPermissions must be a list")
            roles[name] = ManagedRole(
                name=name,
                title=str(entry.get("title") or name),
                permissions=tuple(p.strip() for p in perms if isinstance(p, str) and p.strip()),
            )
        return cls(roles)

    @classmethod
    def load(cls, path: str = DEFAULT_CATALOG_PATH) -> "RoleCatalog":
        return cls.from_dict(_load_yaml(path), source=path)

    def get(self, role_name: str) -> Optional[ManagedRole]:
        return self._roles.get(role_name)

    def permissions_for(self, role_name: str) -> list[str]:
        role = self._roles.get(role_name)
        return list(role.permissions) if role else []

    def title_for(self, role_name: str) -> str:
        role = self._roles.get(role_name)
        return role.title if role else role_name

    def __contains__(self, role_name: object) -> bool:
        return role_name in self._roles

    def __len__(self) -> int:
        return len(self._roles)
