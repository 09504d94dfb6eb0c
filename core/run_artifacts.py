"""Run artifact helpers for operational reporting."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any


def build_failure_manifest(failures: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Group failed entities by kind so a rerun can be targeted."""
    entities: dict[str, list[Any]] = {}
    batches = 0
    for failure in failures:
        batches += 1
        for kind, identity in failure.get("entities", []):
            entities.setdefault(kind, []).append(identity)
    return {
        "failed_batches": batches,
        "failed_entities": {kind: ids for kind, ids in sorted(entities.items())},
    }


def write_run_report(
    report: dict[str, Any],
    run_id: str,
    output_dir: str = "output/run_reports",
    failures: Iterable[Mapping[str, Any]] = (),
) -> str:
    """Write a JSON run report and return its path."""
    os.makedirs(output_dir, exist_ok=True)
    payload = dict(report)
    payload.setdefault("run_id", run_id)
    payload.setdefault("timestamp_utc", datetime.now(timezone.utc).isoformat())
    failures = list(failures)
    payload["failures"] = failures
    payload["manifest"] = build_failure_manifest(failures)
    path = os.path.join(output_dir, f"clone-{run_id}.json")
    with open(path, "w", encoding="utf-8") as f:
        # Source identities are ints or element-id strings depending on dialect.
        json.dump(payload, f, indent=2, sort_keys=True, default=str)
    return path
