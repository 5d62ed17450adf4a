from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from tqdm import tqdm

from gcpbindings.bindings import STEP_IAM_BINDINGS, BindingIngestor
from gcpbindings.catalog import RoleCatalog
from gcpbindings.client import PolicySearchSource
from gcpbindings.events import MissingPermissionEvents, MissingPermissionNotifier
from gcpbindings.members import PrincipalResolver
from gcpbindings.relationships import RelationshipBuilder
from gcpbindings.resources import ResourceTargetResolver
from gcpbindings.roles import PermissionResolver, RoleResolver
from gcpbindings.store import GraphStore


STEP_CREATE_BASIC_ROLES = "create-basic-roles"
STEP_CREATE_BINDING_PRINCIPAL_RELATIONSHIPS = "create-binding-principal-relationships"
STEP_CREATE_BINDING_ROLE_RELATIONSHIPS = "create-binding-role-relationships"
STEP_CREATE_BINDING_ANY_RESOURCE_RELATIONSHIPS = "create-binding-any-resource-relationships"


@dataclass
class StepContext:
    scope: str
    store: GraphStore
    ingestor: BindingIngestor
    roles: RoleResolver
    relationships: RelationshipBuilder
    events: MissingPermissionEvents = field(default_factory=MissingPermissionEvents)
    # Search query, e.g. `resource:projects/p` to read only the scope's own policy.
    query: Optional[str] = None
    results: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        scope: str,
        source: PolicySearchSource,
        catalog: RoleCatalog,
        store: Optional[GraphStore] = None,
        enabled_services: frozenset[str] = frozenset(),
        notify: Optional[MissingPermissionNotifier] = None,
        query: Optional[str] = None,
    ) -> "StepContext":
        store = store if store is not None else GraphStore()
        events = MissingPermissionEvents()
        resources = ResourceTargetResolver(store, enabled_services=enabled_services)
        roles = RoleResolver(store, catalog, resources)
        return cls(
            scope=scope,
            store=store,
            ingestor=BindingIngestor(
                source=source,
                store=store,
                permissions=PermissionResolver(store, catalog),
                notify=notify or events.publish,
            ),
            roles=roles,
            relationships=RelationshipBuilder(
                store=store,
                catalog=catalog,
                roles=roles,
                principals=PrincipalResolver(store),
                resources=resources,
            ),
            events=events,
            query=query,
        )


@dataclass(frozen=True)
class Step:
    id: str
    name: str
    handler: Callable[[StepContext], Any]
    depends_on: tuple[str, ...] = ()


STEPS: tuple[Step, ...] = (
    Step(STEP_IAM_BINDINGS, "IAM Bindings", lambda ctx: ctx.ingestor.ingest(ctx.scope, query=ctx.query)),
    Step(
        STEP_CREATE_BASIC_ROLES,
        "IAM Basic Roles",
        lambda ctx: ctx.roles.create_basic_roles_for_bindings(),
        (STEP_IAM_BINDINGS,),
    ),
    Step(
        STEP_CREATE_BINDING_PRINCIPAL_RELATIONSHIPS,
        "IAM Binding Principal Relationships",
        lambda ctx: ctx.relationships.build_principal_relationships(),
        (STEP_IAM_BINDINGS, STEP_CREATE_BASIC_ROLES),
    ),
    Step(
        STEP_CREATE_BINDING_ROLE_RELATIONSHIPS,
        "IAM Binding IAM Role Relationships",
        lambda ctx: ctx.relationships.build_role_relationships(),
        (STEP_IAM_BINDINGS, STEP_CREATE_BASIC_ROLES),
    ),
    Step(
        STEP_CREATE_BINDING_ANY_RESOURCE_RELATIONSHIPS,
        "Role Binding to Any Resource Relationships",
        lambda ctx: ctx.relationships.build_resource_relationships(),
        (STEP_IAM_BINDINGS,),
    ),
)


def run_steps(context: StepContext, steps: tuple[Step, ...] = STEPS, *, progress: bool = False) -> dict[str, Any]:
    """
    Run steps in order; every step sees the complete output of the steps
    before it. Errors propagate and stop the run.
    """
    done: set[str] = set()
    bar = tqdm(total=len(steps), desc="steps", unit="step", leave=False, disable=not progress)
    try:
        for step in steps:
            missing = [d for d in step.depends_on if d not in done]
            if missing:
                raise ValueError(f"Step `{step.id}` runs before its dependencies: {', '.join(missing)}")
            bar.set_postfix_str(step.id, refresh=True)
            context.results[step.id] = step.handler(context)
            done.add(step.id)
            bar.update(1)
    finally:
        bar.close()
    return context.results
