#!/usr/bin/env python3

import argparse
import sys

from gcpbindings import console
from gcpbindings.catalog import RoleCatalog
from gcpbindings.client import (
    ApiError,
    CloudAssetClient,
    CredentialError,
    ResourceManagerClient,
    get_access_token,
    get_enabled_service_names,
)
from gcpbindings.config import MAX_PAGE_SIZE, IntegrationConfig
from gcpbindings.projects import fetch_projects, seed_projects
from gcpbindings.report import atomic_write_json, build_report
from gcpbindings.steps import StepContext, run_steps


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Build a graph of GCP IAM bindings, roles, principals and resources from Cloud Asset Inventory."
    )
    scope_group = ap.add_mutually_exclusive_group()
    scope_group.add_argument("--project", help="Project ID to search (env: GCP_PROJECT_ID).")
    scope_group.add_argument("--organization", help="Organization ID to search, e.g. 1234567890 (env: GCP_ORGANIZATION_ID).")
    ap.add_argument(
        "--sa-json",
        help="Service Account JSON credentials (path to key file or raw JSON string). If omitted, uses gcloud creds or ADC/metadata.",
    )
    ap.add_argument(
        "--quota-project",
        help="Project ID used for API quota/billing (X-Goog-User-Project). Defaults to the searched project.",
    )
    ap.add_argument("--page-size", type=int, help=f"Page size for IAM policy search (default: {MAX_PAGE_SIZE}).")
    ap.add_argument("--catalog", help="YAML file with managed role permissions (default: bundled managed_roles.yaml).")
    ap.add_argument(
        "--scope-resource-only",
        action="store_true",
        help="Only read the IAM policy set on the scope resource itself, not on resources below it.",
    )
    ap.add_argument("--out-json", help="Write the report and graph to this path.")
    ap.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    return ap


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        config = IntegrationConfig.from_args(args)
    except ValueError as exc:
        console.err(f"Invalid configuration: {exc}")
        return 2

    try:
        catalog = RoleCatalog.load(config.catalog_path)
    except (OSError, ValueError) as exc:
        console.err(f"Unable to load role catalog `{config.catalog_path}`: {exc}")
        return 2

    try:
        token = get_access_token(config)
    except CredentialError as exc:
        console.err(f"Authentication error: {exc}")
        return 2

    quota_project = config.effective_quota_project
    context = StepContext.build(
        scope=config.scope,
        source=CloudAssetClient(token=token, quota_project=quota_project, page_size=config.page_size),
        catalog=catalog,
        enabled_services=frozenset(get_enabled_service_names(config)),
        query=f"resource:{config.scope}" if args.scope_resource_only else None,
    )

    try:
        projects = fetch_projects(
            ResourceManagerClient(token=token, quota_project=quota_project), config, notify=context.events.publish
        )
        seed_projects(context.store, projects)
        console.info(f"Scanning {config.scope}", projects=len(projects), roles_in_catalog=len(catalog))
        results = run_steps(context, progress=not args.no_progress)
    except ApiError as exc:
        console.err(f"API error while scanning {config.scope}: {exc}")
        return 1

    report = build_report(scope=config.scope, results=results, store=context.store, events=list(context.events))
    summary = report["summary"]
    console.ok(
        f"{summary['bindings']} bindings ({summary['duplicate_bindings']} duplicates), "
        f"{summary['roles']} roles, {summary['direct_relationships']} direct and "
        f"{summary['mapped_relationships']} mapped relationships"
    )
    for event in context.events:
        console.warn(f"Missing permission `{event.permission}` in step `{event.step_id}`")

    if args.out_json:
        atomic_write_json(args.out_json, report)
        console.ok(f"Wrote {args.out_json}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
