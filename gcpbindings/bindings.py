from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from gcpbindings import console
from gcpbindings.client import ApiError, PolicySearchSource, iter_pages
from gcpbindings.events import MissingPermissionNotifier, warn_missing_permission
from gcpbindings.graph import BINDING_ENTITY_CLASS, BINDING_ENTITY_TYPE
from gcpbindings.resources import PROJECT_NAME_TO_ID
from gcpbindings.roles import PermissionResolver
from gcpbindings.store import Entity, GraphStore


STEP_IAM_BINDINGS = "fetch-iam-bindings"
SEARCH_PERMISSION = "cloudasset.assets.searchAllIamPolicies"


def binding_condition(binding: dict) -> Optional[dict]:
    cond = binding.get("condition")
    if not isinstance(cond, dict):
        return None
    out = {
        "title": cond.get("title"),
        "description": cond.get("description"),
        "expression": cond.get("expression"),
    }
    if not any(out.values()):
        return None
    return out


def build_binding_key(*, binding: dict, resource: str, project_name: Optional[str]) -> str:
    """
    Identity of a binding on a resource. Member order is not significant;
    two bindings that only differ in member order share a key.
    """
    members = sorted(m for m in binding.get("members") or [] if isinstance(m, str))
    values = [resource or "", binding.get("role") or "", project_name or "", ",".join(members)]
    condition = binding_condition(binding)
    if condition and condition.get("expression"):
        values.append(condition["expression"])
    return "|".join(values)


def create_binding_entity(
    *,
    _key: str,
    binding: dict,
    resource: str,
    project_name: Optional[str],
    project_id: Optional[str],
    permissions: list[str],
) -> Entity:
    condition = binding_condition(binding) or {}
    role = binding.get("role")
    entity: Entity = {
        "_key": _key,
        "_type": BINDING_ENTITY_TYPE,
        "_class": BINDING_ENTITY_CLASS,
        "displayName": role or _key,
        "resource": resource,
        "projectName": project_name,
        "projectId": project_id,
        "role": role,
        "members": [m for m in binding.get("members") or [] if isinstance(m, str)],
        "permissions": permissions,
        "conditionTitle": condition.get("title"),
        "conditionDescription": condition.get("description"),
        "conditionExpression": condition.get("expression"),
        "_rawData": [{"name": "default", "rawData": binding}],
    }
    return {k: v for k, v in entity.items() if v is not None}


@dataclass
class IngestResult:
    count: int = 0
    duplicates: list[str] = field(default_factory=list)
    missing_permission: bool = False


class BindingIngestor:
    def __init__(
        self,
        *,
        source: PolicySearchSource,
        store: GraphStore,
        permissions: PermissionResolver,
        notify: MissingPermissionNotifier = warn_missing_permission,
    ) -> None:
        self.source = source
        self.store = store
        self.permissions = permissions
        self.notify = notify

    def _project_id_from_name(self, project_name: str) -> Optional[str]:
        # The resource identifier may hold a project number, so the id comes
        # from the projects collected earlier in the run.
        mapping = self.store.get_data(PROJECT_NAME_TO_ID) or {}
        return mapping.get(project_name)

    def ingest(self, scope: str, *, page_token: Optional[str] = None, query: Optional[str] = None) -> IngestResult:
        result = IngestResult()
        seen: set[str] = set()

        try:
            for page in iter_pages(self.source, scope, page_token=page_token, query=query):
                for policy_result in page.get("results", []) or []:
                    self._ingest_policy_result(policy_result, seen, result)
        except ApiError as exc:
            if not exc.is_permission_denied:
                raise
            console.info("Error iterating all IAM policies", scope=scope, err=exc)
            self.notify(step_id=STEP_IAM_BINDINGS, permission=SEARCH_PERMISSION)
            result.missing_permission = True
            return result

        console.ok("Created IAM binding entities", numIamBindings=result.count)
        if result.duplicates:
            console.info("Found duplicate IAM binding graph keys", numDuplicates=len(result.duplicates))
        return result

    def _ingest_policy_result(self, policy_result: dict, seen: set[str], result: IngestResult) -> None:
        resource = policy_result.get("resource")
        project_name = policy_result.get("project") or None
        policy = policy_result.get("policy") or {}

        for binding in policy.get("bindings", []) or []:
            if not isinstance(binding, dict):
                continue
            _key = build_binding_key(binding=binding, resource=resource, project_name=project_name)
            if _key in seen:
                result.duplicates.append(_key)
                continue

            project_id = self._project_id_from_name(project_name) if project_name else None

            # Permissions are denormalized onto the binding so a query does
            # not need to branch through the role to reach them.
            self.store.add_entity(
                create_binding_entity(
                    _key=_key,
                    binding=binding,
                    resource=resource,
                    project_name=project_name,
                    project_id=project_id,
                    permissions=self.permissions.resolve(binding.get("role")),
                )
            )
            seen.add(_key)
            result.count += 1
