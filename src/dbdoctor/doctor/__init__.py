"""Connectivity diagnostic pipeline."""

from __future__ import annotations

from .classifier import classify, classify_failure, recommendation_for
from .descriptor import ConnectionDescriptor, ParseFailure, parse_connection_string
from .engine import DiagnosticRunner, RunnerState, RunnerStateError, run_diagnostics
from .models import (
    DEFAULT_POOLING_PARAMS,
    Finding,
    OverallStatus,
    ProbeContext,
    ProbeDefinition,
    ProbePolicy,
    Recommendation,
    RemediationCategory,
    Report,
    ReportSummary,
    Severity,
    aggregate_findings,
    build_report,
    collect_recommendations,
)
from .probes import collect_probes
from .utils import serialize_report

__all__ = [
    "ConnectionDescriptor",
    "DEFAULT_POOLING_PARAMS",
    "DiagnosticRunner",
    "Finding",
    "OverallStatus",
    "ParseFailure",
    "ProbeContext",
    "ProbeDefinition",
    "ProbePolicy",
    "Recommendation",
    "RemediationCategory",
    "Report",
    "ReportSummary",
    "RunnerState",
    "RunnerStateError",
    "Severity",
    "aggregate_findings",
    "build_report",
    "classify",
    "classify_failure",
    "collect_probes",
    "collect_recommendations",
    "parse_connection_string",
    "recommendation_for",
    "run_diagnostics",
    "serialize_report",
]
