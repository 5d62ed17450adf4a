from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from gcpbindings.graph import RelationshipClass
from gcpbindings.store import Entity, GraphStore


EMAIL_KINDS = ("user", "group", "serviceAccount")
CONVENIENCE_KINDS = ("projectOwner", "projectEditor", "projectViewer")
PREFIXED_KINDS = EMAIL_KINDS + ("domain",) + CONVENIENCE_KINDS
PUBLIC_MEMBERS = ("allUsers", "allAuthenticatedUsers")
DELETED_PREFIX = "deleted:"


@dataclass(frozen=True)
class Principal:
    member: str
    kind: str
    identifier: str
    deleted: bool = False
    uid: Optional[str] = None
    email_domain: Optional[str] = None

    @property
    def key(self) -> str:
        # projectOwner:p and projectViewer:p share an identifier.
        if self.kind in CONVENIENCE_KINDS:
            return f"{self.kind}:{self.identifier}"
        return self.identifier


@dataclass(frozen=True)
class PrincipalKind:
    target_type: str
    _class: str = RelationshipClass.ASSIGNED
    target_filter_keys: tuple[tuple[str, ...], ...] = (("_type", "_key"),)
    create_target: bool = True


PRINCIPAL_KINDS: dict[str, PrincipalKind] = {
    "user": PrincipalKind("google_user", target_filter_keys=(("_type", "email"),)),
    "group": PrincipalKind("google_group", target_filter_keys=(("_type", "email"),)),
    "serviceAccount": PrincipalKind("google_iam_service_account", target_filter_keys=(("_type", "email"),)),
    "domain": PrincipalKind("google_domain"),
    "allUsers": PrincipalKind("everyone"),
    "allAuthenticatedUsers": PrincipalKind("google_cloud_authenticated_users"),
    "projectOwner": PrincipalKind("google_cloud_project_convenience_group"),
    "projectEditor": PrincipalKind("google_cloud_project_convenience_group"),
    "projectViewer": PrincipalKind("google_cloud_project_convenience_group"),
    "principal": PrincipalKind("google_iam_workload_identity_principal", target_filter_keys=(("_key",),)),
    "principalSet": PrincipalKind("google_iam_workload_identity_principal", target_filter_keys=(("_key",),)),
}


def parse_member(member: str) -> Optional[Principal]:
    """
    Parse an IAM policy member string, e.g. `user:a@x.com`,
    `deleted:serviceAccount:sa@p.iam.gserviceaccount.com?uid=123`,
    `projectOwner:my-project` or `allUsers`.

    Returns None for anything unrecognized.
    """
    if not isinstance(member, str):
        return None
    member = member.strip()
    if not member:
        return None

    if member in PUBLIC_MEMBERS:
        return Principal(member=member, kind=member, identifier=member)
    if member.startswith("principal://"):
        return Principal(member=member, kind="principal", identifier=member)
    if member.startswith("principalSet://"):
        return Principal(member=member, kind="principalSet", identifier=member)

    if member.startswith(DELETED_PREFIX):
        inner, _, uid = member[len(DELETED_PREFIX):].partition("?uid=")
        parsed = parse_member(inner)
        if parsed is None or parsed.kind not in EMAIL_KINDS:
            return None
        return Principal(
            member=member,
            kind=parsed.kind,
            identifier=parsed.identifier,
            deleted=True,
            uid=uid or None,
            email_domain=parsed.email_domain,
        )

    kind, sep, payload = member.partition(":")
    payload = payload.strip()
    if not sep or kind not in PREFIXED_KINDS or not payload:
        return None

    email_domain = None
    if kind in EMAIL_KINDS:
        if "@" not in payload:
            return None
        payload = payload.lower()
        email_domain = payload.split("@", 1)[1]
    elif kind == "domain":
        payload = payload.lower()
    return Principal(member=member, kind=kind, identifier=payload, email_domain=email_domain)


@dataclass(frozen=True)
class ResolvedPrincipal:
    principal: Principal
    entity: Optional[Entity] = None

    @property
    def resolved(self) -> bool:
        return self.entity is not None


class PrincipalResolver:
    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def resolve(self, member: str) -> Optional[ResolvedPrincipal]:
        principal = parse_member(member)
        if principal is None:
            return None
        entity = None if principal.deleted else self.store.find_entity(principal.key)
        return ResolvedPrincipal(principal=principal, entity=entity)
