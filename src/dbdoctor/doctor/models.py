"""Data models and helpers for diagnostic probes."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..exit_codes import ExitCode

if TYPE_CHECKING:
    from .descriptor import ConnectionDescriptor
    from .store import StoreConnection


DESCRIPTOR_PROBE_ID = "descriptor"
CONNECTED = "connected"


class Severity(str, Enum):
    """Outcome recorded by a single finding."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the severity represents a failure."""
        return self is Severity.ERROR

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the severity represents a warning."""
        return self is Severity.WARNING


class RemediationCategory(str, Enum):
    """Buckets used to group actionable advice."""

    CONFIGURATION = "configuration"
    CREDENTIALS = "credentials"
    NETWORK = "network"
    MISSING_RESOURCE = "missing-resource"
    POOLING = "pooling"
    CAPACITY = "capacity"
    STABILITY = "stability"
    UNKNOWN = "unknown"


class OverallStatus(str, Enum):
    """Health verdict derived from the worst finding severity."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_severity(cls, severity: Severity) -> OverallStatus:
        """Translate the worst observed severity into an overall status."""
        if severity is Severity.ERROR:
            return cls.UNHEALTHY
        if severity is Severity.WARNING:
            return cls.DEGRADED
        return cls.HEALTHY


@dataclass(slots=True, frozen=True)
class Recommendation:
    """Human-actionable advice tied to a remediation category."""

    category: RemediationCategory
    text: str


DEFAULT_POOLING_PARAMS: tuple[str, ...] = ("connection_limit", "pool_timeout", "pgbouncer")


@dataclass(slots=True, frozen=True)
class ProbePolicy:
    """Runtime tunables for executing diagnostic probes."""

    stability_repetitions: int = 3
    stability_delay_ms: int = 1000
    query_timeout: float = 30.0
    capacity_warn_threshold: float = 0.8
    capacity_error_threshold: float | None = None
    fail_on_degraded: bool = True
    pooling_params: tuple[str, ...] = DEFAULT_POOLING_PARAMS


@dataclass(slots=True, frozen=True)
class Finding:
    """One observation emitted by a probe."""

    probe: str
    severity: Severity
    message: str
    duration_ms: int | None = None
    remediation: Recommendation | None = None
    data: Mapping[str, Any] | None = None

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the finding represents a failure."""
        return self.severity.is_failure

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the finding represents a warning."""
        return self.severity.is_warning


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """Execution context provided to probes."""

    descriptor: ConnectionDescriptor
    connection: StoreConnection | None
    policy: ProbePolicy
    prior: Sequence[Finding] = ()
    connect_error: str | None = None
    connect_ms: int | None = None
    sleep: Callable[[float], None] | None = None


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """Metadata + callable for a probe.

    ``requires`` lists the capability tags earlier probes must have
    established; ``provides`` lists the tags this probe establishes when its
    finding is not an error.
    """

    id: str
    run: Callable[[ProbeContext], Finding]
    requires: frozenset[str] = field(default_factory=frozenset)
    provides: frozenset[str] = field(default_factory=frozenset)


@dataclass(slots=True, frozen=True)
class ReportSummary:
    """Aggregated summary derived from findings."""

    status: OverallStatus
    exit_code: int
    totals: Mapping[Severity, int]


@dataclass(slots=True, frozen=True)
class Report:
    """Complete report for a diagnostic run."""

    findings: Sequence[Finding]
    recommendations: Sequence[Recommendation]
    summary: ReportSummary
    metadata: Mapping[str, Any] | None = None

    @property
    def status(self) -> OverallStatus:
        """Return the overall status of the run."""
        return self.summary.status

    @property
    def exit_code(self) -> int:
        """Return the process exit code for the run."""
        return self.summary.exit_code


SEVERITY_ORDER: Mapping[Severity, int] = {
    Severity.OK: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


def aggregate_findings(
    findings: Iterable[Finding],
    *,
    fail_on_degraded: bool = True,
) -> ReportSummary:
    """Compute overall status + exit code from the worst finding severity."""
    totals: dict[Severity, int] = {
        Severity.OK: 0,
        Severity.WARNING: 0,
        Severity.ERROR: 0,
    }
    worst = Severity.OK
    fatal = False
    for finding in findings:
        totals[finding.severity] += 1
        if SEVERITY_ORDER[finding.severity] > SEVERITY_ORDER[worst]:
            worst = finding.severity
        if finding.probe == DESCRIPTOR_PROBE_ID and finding.is_failure:
            fatal = True

    status = OverallStatus.from_severity(worst)
    if fatal:
        exit_code = ExitCode.CONFIGURATION
    elif status is OverallStatus.UNHEALTHY:
        exit_code = ExitCode.UNHEALTHY
    elif status is OverallStatus.DEGRADED and fail_on_degraded:
        exit_code = ExitCode.DEGRADED
    else:
        exit_code = ExitCode.OK
    return ReportSummary(status=status, exit_code=int(exit_code), totals=totals)


def collect_recommendations(findings: Iterable[Finding]) -> tuple[Recommendation, ...]:
    """Return remediation advice deduplicated by category + text, first seen first."""
    seen: dict[Recommendation, None] = {}
    for finding in findings:
        if finding.remediation is not None and finding.severity is not Severity.OK:
            seen.setdefault(finding.remediation, None)
    return tuple(seen)


def build_report(
    findings: Sequence[Finding],
    *,
    fail_on_degraded: bool = True,
    metadata: Mapping[str, Any] | None = None,
) -> Report:
    """Create a full Report from findings."""
    summary = aggregate_findings(findings, fail_on_degraded=fail_on_degraded)
    return Report(
        findings=tuple(findings),
        recommendations=collect_recommendations(findings),
        summary=summary,
        metadata=metadata,
    )
