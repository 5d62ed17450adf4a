from __future__ import annotations

from gcpbindings import console
from gcpbindings.client import ApiError, ResourceManagerClient
from gcpbindings.config import IntegrationConfig
from gcpbindings.events import MissingPermissionNotifier, warn_missing_permission
from gcpbindings.graph import PROJECT_ENTITY_CLASS, PROJECT_ENTITY_TYPE
from gcpbindings.resources import PROJECT_NAME_TO_ID
from gcpbindings.store import Entity, GraphStore


STEP_PROJECTS = "fetch-projects"


def create_project_entity(project: dict) -> Entity:
    name = project.get("name") or ""
    project_id = project["projectId"]
    entity: Entity = {
        "_key": project_id,
        "_type": PROJECT_ENTITY_TYPE,
        "_class": PROJECT_ENTITY_CLASS,
        "name": name,
        "displayName": project.get("displayName") or project_id,
        "projectId": project_id,
        "projectNumber": name.split("/", 1)[1] if name.startswith("projects/") else None,
        "parent": project.get("parent"),
        "state": project.get("state"),
        "_rawData": [{"name": "default", "rawData": project}],
    }
    return {k: v for k, v in entity.items() if v is not None}


def seed_projects(store: GraphStore, projects: list[dict]) -> int:
    """
    Store project entities and record `projects/<number|id>` -> project id,
    which bindings and resource keys use to translate project numbers.
    """
    mapping: dict[str, str] = dict(store.get_data(PROJECT_NAME_TO_ID) or {})
    added = 0
    for project in projects:
        project_id = project.get("projectId") if isinstance(project, dict) else None
        if not project_id:
            continue
        if project.get("name"):
            mapping[project["name"]] = project_id
        mapping[f"projects/{project_id}"] = project_id
        if not store.has_entity(project_id):
            store.add_entity(create_project_entity(project))
            added += 1
    store.set_data(PROJECT_NAME_TO_ID, mapping)
    return added


def fetch_projects(
    client: ResourceManagerClient,
    config: IntegrationConfig,
    *,
    notify: MissingPermissionNotifier = warn_missing_permission,
) -> list[dict]:
    try:
        if config.organization_id:
            return client.list_projects_in_organization(config.organization_id)
        return [client.get_project(config.project_id)]
    except ApiError as exc:
        if not exc.is_permission_denied:
            raise
        console.info("Error fetching projects", scope=config.scope, err=exc)
        permission = "resourcemanager.projects.list" if config.organization_id else "resourcemanager.projects.get"
        notify(step_id=STEP_PROJECTS, permission=permission)
        return []
