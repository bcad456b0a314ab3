"""Probe execution harness for ``dbdoctor check``."""

from __future__ import annotations

import time
import traceback
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from . import store
from .classifier import recommendation_for
from .descriptor import ConnectionDescriptor, ParseFailure, parse_connection_string
from .models import (
    DESCRIPTOR_PROBE_ID,
    Finding,
    ProbeContext,
    ProbeDefinition,
    ProbePolicy,
    RemediationCategory,
    Report,
    Severity,
    build_report,
)
from .probes import collect_probes
from .store import StoreConnection

if TYPE_CHECKING:
    from ..logging import OperationScope

Connector = Callable[[ConnectionDescriptor, float], StoreConnection]


class RunnerState(str, Enum):
    """Lifecycle states of a single diagnostic run."""

    INIT = "init"
    PARSING_DESCRIPTOR = "parsing-descriptor"
    CONNECTING = "connecting"
    RUNNING_PROBES = "running-probes"
    FINALIZING = "finalizing"
    DONE = "done"


_TRANSITIONS: Mapping[RunnerState, frozenset[RunnerState]] = {
    RunnerState.INIT: frozenset({RunnerState.PARSING_DESCRIPTOR}),
    RunnerState.PARSING_DESCRIPTOR: frozenset({RunnerState.CONNECTING, RunnerState.FINALIZING}),
    RunnerState.CONNECTING: frozenset({RunnerState.RUNNING_PROBES}),
    RunnerState.RUNNING_PROBES: frozenset({RunnerState.FINALIZING}),
    RunnerState.FINALIZING: frozenset({RunnerState.DONE}),
    RunnerState.DONE: frozenset(),
}

_STEP_STATUS = {
    Severity.OK: "success",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
}


class RunnerStateError(RuntimeError):
    """Raised when the runner is driven through an invalid transition."""


@dataclass(slots=True)
class _Session:
    """Outcome of opening the store connection."""

    connection: StoreConnection | None
    error: str | None
    duration_ms: int


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _coerce_finding(
    probe: ProbeDefinition,
    finding: Finding,
    duration_ms: int,
) -> Finding:
    coerced = finding
    if finding.probe != probe.id:
        coerced = replace(coerced, probe=probe.id)
    if finding.duration_ms is None:
        coerced = replace(coerced, duration_ms=duration_ms)
    if finding.severity is Severity.OK and finding.remediation is not None:
        coerced = replace(coerced, remediation=None)
    return coerced


def _unexpected_failure(
    probe: ProbeDefinition,
    exc: Exception,
    duration_ms: int,
) -> Finding:
    message = f"Probe '{probe.id}' raised an unexpected error: {exc}"
    data = {
        "exception": repr(exc),
        "traceback": traceback.format_exc(),
    }
    return Finding(
        probe=probe.id,
        severity=Severity.ERROR,
        message=message,
        duration_ms=duration_ms,
        remediation=recommendation_for(RemediationCategory.UNKNOWN),
        data=data,
    )


def _run_single_probe(
    probe: ProbeDefinition,
    context: ProbeContext,
) -> Finding:
    start = time.perf_counter()
    try:
        finding = probe.run(context)
    except Exception as exc:
        return _unexpected_failure(probe, exc, _duration_ms(start))
    return _coerce_finding(probe, finding, _duration_ms(start))


def descriptor_failure(failure: ParseFailure) -> Finding:
    """Convert a descriptor parse failure into the run's single fatal finding."""
    return Finding(
        probe=DESCRIPTOR_PROBE_ID,
        severity=Severity.ERROR,
        message=f"{failure.message} {failure.hint}",
        remediation=recommendation_for(failure.category),
        data={"category": failure.category.value},
    )


class DiagnosticRunner:
    """Coordinator that owns the connection and accumulates the report."""

    def __init__(
        self,
        policy: ProbePolicy | None = None,
        *,
        connector: Connector | None = None,
        probes: Sequence[ProbeDefinition] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Store the policy and collaborators used for a run."""
        self._policy = policy or ProbePolicy()
        self._connector = connector
        self._probes = tuple(probes) if probes is not None else tuple(collect_probes())
        self._sleep = sleep
        self._state = RunnerState.INIT
        self._history: list[RunnerState] = [RunnerState.INIT]

    @property
    def policy(self) -> ProbePolicy:
        """Return the policy applied to probes."""
        return self._policy

    @property
    def state(self) -> RunnerState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def history(self) -> tuple[RunnerState, ...]:
        """Return every state visited so far, in order."""
        return tuple(self._history)

    def _transition(self, target: RunnerState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RunnerStateError(
                f"Invalid runner transition {self._state.value} -> {target.value}."
            )
        self._state = target
        self._history.append(target)

    def run(
        self,
        connection_string: str | None,
        *,
        op: OperationScope | None = None,
    ) -> Report:
        """Run the full pipeline once and return its report."""
        if self._state is not RunnerState.INIT:
            raise RunnerStateError("DiagnosticRunner instances run exactly once.")

        start = time.perf_counter()
        findings: list[Finding] = []
        skipped: list[str] = []
        self._transition(RunnerState.PARSING_DESCRIPTOR)
        parsed = parse_connection_string(
            connection_string,
            pooling_keys=self._policy.pooling_params,
        )

        if isinstance(parsed, ParseFailure):
            findings.append(descriptor_failure(parsed))
            skipped.extend(probe.id for probe in self._probes)
            if op is not None:
                op.add_step(DESCRIPTOR_PROBE_ID, status="error", detail=parsed.message)
            self._transition(RunnerState.FINALIZING)
            return self._finalize(findings, None, skipped, start)

        if op is not None:
            op.add_step(DESCRIPTOR_PROBE_ID, status="success", detail=parsed.masked_url())
        self._transition(RunnerState.CONNECTING)
        with self._session(parsed, op) as session:
            self._transition(RunnerState.RUNNING_PROBES)
            self._run_probes(parsed, session, findings, skipped, op)
            self._transition(RunnerState.FINALIZING)
        return self._finalize(findings, parsed, skipped, start)

    @contextmanager
    def _session(
        self,
        descriptor: ConnectionDescriptor,
        op: OperationScope | None,
    ) -> Iterator[_Session]:
        connector = self._connector or store.connect
        start = time.perf_counter()
        connection: StoreConnection | None = None
        error: str | None = None
        try:
            connection = connector(descriptor, self._policy.query_timeout)
        except Exception as exc:
            error = str(exc).strip() or exc.__class__.__name__
        session = _Session(connection=connection, error=error, duration_ms=_duration_ms(start))
        try:
            yield session
        finally:
            if connection is not None:
                self._release(connection, op)

    def _release(self, connection: StoreConnection, op: OperationScope | None) -> None:
        try:
            connection.close()
        except Exception as exc:
            if op is not None:
                detail = str(exc).strip() or exc.__class__.__name__
                op.add_step("connection.close", status="error", detail=detail)
            return
        if op is not None:
            op.add_step("connection.close", status="success")

    def _run_probes(
        self,
        descriptor: ConnectionDescriptor,
        session: _Session,
        findings: list[Finding],
        skipped: list[str],
        op: OperationScope | None,
    ) -> None:
        established: set[str] = set()
        for probe in self._probes:
            if not probe.requires <= established:
                skipped.append(probe.id)
                if op is not None:
                    missing = ", ".join(sorted(probe.requires - established))
                    op.add_step(f"probe.{probe.id}", status="skipped", detail=f"requires {missing}")
                continue
            context = ProbeContext(
                descriptor=descriptor,
                connection=session.connection,
                policy=self._policy,
                prior=tuple(findings),
                connect_error=session.error,
                connect_ms=session.duration_ms,
                sleep=self._sleep,
            )
            finding = _run_single_probe(probe, context)
            findings.append(finding)
            if not finding.is_failure:
                established.update(probe.provides)
            if op is not None:
                op.add_step(
                    f"probe.{probe.id}",
                    status=_STEP_STATUS[finding.severity],
                    detail=finding.message,
                )

    def _finalize(
        self,
        findings: Sequence[Finding],
        descriptor: ConnectionDescriptor | None,
        skipped: Sequence[str],
        start: float,
    ) -> Report:
        metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "probe_count": len(findings),
            "requested_probes": len(self._probes),
            "skipped_probes": list(skipped),
            "policy": asdict(self._policy),
            "descriptor": descriptor.to_dict() if descriptor is not None else None,
        }
        self._transition(RunnerState.DONE)
        metadata["states"] = [state.value for state in self._history]
        return build_report(
            findings,
            fail_on_degraded=self._policy.fail_on_degraded,
            metadata=metadata,
        )


def run_diagnostics(
    connection_string: str | None,
    policy: ProbePolicy | None = None,
    *,
    connector: Connector | None = None,
    op: OperationScope | None = None,
) -> Report:
    """Convenience wrapper: run a fresh :class:`DiagnosticRunner` once."""
    runner = DiagnosticRunner(policy, connector=connector)
    return runner.run(connection_string, op=op)


__all__ = [
    "Connector",
    "DiagnosticRunner",
    "RunnerState",
    "RunnerStateError",
    "descriptor_failure",
    "run_diagnostics",
]
