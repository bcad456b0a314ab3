"""Utility helpers for serialising diagnostic reports."""
from __future__ import annotations

from collections.abc import Mapping, Sequence

from .models import Report, Severity


def _sanitize_payload(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize_payload(item) for item in value]
    return str(value)


def serialize_report(report: Report) -> dict[str, object]:
    """Convert a diagnostic report into a JSON-serialisable mapping."""
    totals = {
        severity.value: int(report.summary.totals.get(severity, 0))
        for severity in Severity
    }
    summary_payload = {
        "status": report.summary.status.value,
        "exit_code": report.summary.exit_code,
        "totals": totals,
    }
    findings_payload: list[dict[str, object]] = []
    for finding in report.findings:
        finding_payload: dict[str, object] = {
            "probe": finding.probe,
            "severity": finding.severity.value,
            "message": finding.message,
        }
        if finding.duration_ms is not None:
            finding_payload["duration_ms"] = finding.duration_ms
        if finding.remediation is not None:
            finding_payload["remediation"] = {
                "category": finding.remediation.category.value,
                "text": finding.remediation.text,
            }
        if finding.data:
            finding_payload["data"] = _sanitize_payload(finding.data)
        findings_payload.append(finding_payload)

    recommendations_payload = [
        {"category": item.category.value, "text": item.text}
        for item in report.recommendations
    ]
    metadata_payload = _sanitize_payload(report.metadata) if report.metadata else {}
    return {
        "summary": summary_payload,
        "findings": findings_payload,
        "recommendations": recommendations_payload,
        "metadata": metadata_payload,
    }
