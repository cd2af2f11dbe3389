"""Shared versioned contracts for budget-import machine outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from budget_import.models import BatchResult

CONTRACT_VERSIONS = {
    "budget_import.preview": "1.0.0",
    "budget_import.import_result": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    tool: str,
    command: str,
    input_path: Optional[Path],
    status: str = "ok",
    output_path: Optional[Path] = None,
    metrics: Optional[dict[str, Any]] = None,
    warnings: Optional[list[str]] = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path) if input_path else None,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def result_status(result: BatchResult) -> str:
    if result.fatal_error is not None:
        return "failed"
    if result.cancelled:
        return "cancelled"
    if result.invalid_rows:
        return "partial"
    return "ok"


def build_import_payload(
    result: BatchResult,
    *,
    tool: str,
    input_path: Optional[Path],
    output_path: Optional[Path] = None,
) -> dict[str, Any]:
    """The ``budget_import.import_result`` document: run summary plus the result."""
    payload = build_run_summary(
        tool=tool,
        command="import",
        input_path=input_path,
        status=result_status(result),
        output_path=output_path,
        metrics={
            "total_rows":   result.total_rows,
            "valid_rows":   result.valid_rows,
            "invalid_rows": result.invalid_rows,
            "warning_rows": result.warning_rows,
            "success_rate": result.success_rate(),
            "warning_rate": result.warning_rate(),
        },
        warnings=result.warnings,
    )
    payload["contract"] = build_contract("budget_import.import_result")
    payload["schema_version"] = payload["contract"]["version"]
    payload["result"] = result.to_dict()
    return payload


def build_preview_payload(preview: dict[str, Any], *, tool: str, input_path: Optional[Path]) -> dict[str, Any]:
    payload = build_run_summary(
        tool=tool,
        command="preview",
        input_path=input_path,
        status="ok" if preview.get("can_process") else "needs_review",
        metrics={
            "total_rows":       preview.get("total_rows", 0),
            "mapped_columns":   sum(1 for item in preview.get("mappings", []) if item["canonical_field"] != "unknown"),
            "unmapped_columns": len(preview.get("unmapped_columns", [])),
        },
        warnings=preview.get("warnings", []),
    )
    payload["contract"] = build_contract("budget_import.preview")
    payload["schema_version"] = payload["contract"]["version"]
    payload["preview"] = preview
    return payload
