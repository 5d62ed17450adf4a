from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Optional

from gcpbindings.bindings import STEP_IAM_BINDINGS, IngestResult
from gcpbindings.events import MissingPermissionEvent
from gcpbindings.graph import ROLE_ENTITY_TYPE
from gcpbindings.store import GraphStore


SCHEMA_VERSION = 1
TOOL_NAME = "GCP IAM Binding Graph"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def atomic_write_json(path: str, obj: Any) -> None:
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=False, default=str)
        f.write("\n")
    os.replace(tmp_path, path)


def build_summary(results: dict[str, Any], store: GraphStore) -> dict:
    ingest = results.get(STEP_IAM_BINDINGS)
    if not isinstance(ingest, IngestResult):
        ingest = IngestResult()
    return {
        "bindings": ingest.count,
        "duplicate_bindings": len(ingest.duplicates),
        "roles": sum(1 for _ in store.iterate_entities(ROLE_ENTITY_TYPE)),
        "direct_relationships": len(store.direct_relationships),
        "mapped_relationships": len(store.mapped_relationships),
    }


def build_report(
    *,
    scope: str,
    results: dict[str, Any],
    store: GraphStore,
    events: Optional[list[MissingPermissionEvent]] = None,
    include_graph: bool = True,
) -> dict:
    report = {
        "tool": TOOL_NAME,
        "schema_version": SCHEMA_VERSION,
        "provider": "gcp",
        "scope": scope,
        "generated_at": utc_now_iso(),
        "summary": build_summary(results, store),
        "missing_permissions": [e.to_dict() for e in events or []],
    }
    if include_graph:
        report["graph"] = store.export_json()
    return report
