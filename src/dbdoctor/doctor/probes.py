"""Probe registration entry point for ``dbdoctor check``."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from .classifier import classify, recommendation_for
from .models import (
    CONNECTED,
    Finding,
    ProbeContext,
    ProbeDefinition,
    RemediationCategory,
    Severity,
)
from .store import StoreError

ENVIRONMENT_PROBE_ID = "environment"
CONNECTIVITY_PROBE_ID = "connectivity"
STABILITY_PROBE_ID = "stability"
METADATA_PROBE_ID = "metadata"
RESOURCES_PROBE_ID = "resources"

CONNECTIVITY_QUERY = "SELECT 1 AS test"
STABILITY_QUERY = "SELECT %s AS test"
METADATA_QUERY = """
    SELECT
        current_database() AS database,
        current_user AS "user",
        version() AS version,
        now() AS current_time
"""
RESOURCES_QUERY = """
    SELECT
        (SELECT count(*) FROM pg_stat_activity) AS active_connections,
        (SELECT setting FROM pg_settings WHERE name = 'max_connections') AS max_connections
"""
CONNECTION_STATES_QUERY = """
    SELECT
        count(*) AS total_connections,
        count(*) FILTER (WHERE state = 'active') AS active_connections,
        count(*) FILTER (WHERE state = 'idle') AS idle_connections
    FROM pg_stat_activity
    WHERE datname = current_database()
"""


def collect_probes() -> Sequence[ProbeDefinition]:
    """Return the probes in execution order.

    Later probes depend on the capabilities earlier probes establish, so the
    order is part of the contract.
    """
    return (
        _make_probe(ENVIRONMENT_PROBE_ID, _environment_probe),
        _make_probe(
            CONNECTIVITY_PROBE_ID,
            _connectivity_probe,
            provides=(CONNECTED,),
        ),
        _make_probe(STABILITY_PROBE_ID, _stability_probe, requires=(CONNECTED,)),
        _make_probe(METADATA_PROBE_ID, _metadata_probe, requires=(CONNECTED,)),
        _make_probe(RESOURCES_PROBE_ID, _resources_probe, requires=(CONNECTED,)),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    handler: Callable[[ProbeContext], Finding],
    *,
    requires: Iterable[str] = (),
    provides: Iterable[str] = (),
) -> ProbeDefinition:
    return ProbeDefinition(
        id=probe_id,
        run=handler,
        requires=frozenset(requires),
        provides=frozenset(provides),
    )


def _ok(probe_id: str, message: str, **kwargs: Any) -> Finding:
    return Finding(probe=probe_id, severity=Severity.OK, message=message, **kwargs)


def _warn(
    probe_id: str,
    message: str,
    category: RemediationCategory | None = None,
    **kwargs: Any,
) -> Finding:
    remediation = recommendation_for(category) if category is not None else None
    return Finding(
        probe=probe_id,
        severity=Severity.WARNING,
        message=message,
        remediation=remediation,
        **kwargs,
    )


def _error(
    probe_id: str,
    message: str,
    category: RemediationCategory,
    **kwargs: Any,
) -> Finding:
    return Finding(
        probe=probe_id,
        severity=Severity.ERROR,
        message=message,
        remediation=recommendation_for(category),
        **kwargs,
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _require_connection(context: ProbeContext) -> Any:
    if context.connection is None:
        raise StoreError(context.connect_error or "No open connection.")
    return context.connection


def _as_int(value: object, label: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{label} is not numeric: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"{label} is not numeric: {value!r}") from exc


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def _environment_probe(context: ProbeContext) -> Finding:
    descriptor = context.descriptor
    policy = context.policy
    data: dict[str, object] = descriptor.to_dict()
    notes: list[str] = []
    category: RemediationCategory | None = None

    if policy.pooling_params and not descriptor.pooling_params:
        notes.append(
            "No connection pooling parameters set "
            f"(expected one of: {', '.join(policy.pooling_params)})"
        )
        category = RemediationCategory.POOLING
    if descriptor.port is None:
        notes.append(f"Port not specified; clients will default to {descriptor.effective_port}")
        category = category or RemediationCategory.CONFIGURATION
    if not descriptor.database:
        notes.append("Database name not specified; the server will use the user's default")
        category = category or RemediationCategory.CONFIGURATION

    if notes:
        data["notes"] = notes
        return _warn(ENVIRONMENT_PROBE_ID, "; ".join(notes) + ".", category, data=data)

    return _ok(
        ENVIRONMENT_PROBE_ID,
        f"Connection string targets {descriptor.host}:{descriptor.effective_port}/"
        f"{descriptor.database} (ssl={descriptor.ssl_mode or 'not specified'}).",
        data=data,
    )


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


def _connectivity_probe(context: ProbeContext) -> Finding:
    connect_ms = context.connect_ms or 0
    if context.connection is None:
        message = context.connect_error or "Connection could not be opened."
        return _error(
            CONNECTIVITY_PROBE_ID,
            f"Basic connection failed: {message}",
            classify(message),
            duration_ms=connect_ms,
            data={"error": message},
        )

    start = time.perf_counter()
    try:
        context.connection.fetch_one(CONNECTIVITY_QUERY)
    except StoreError as exc:
        return _error(
            CONNECTIVITY_PROBE_ID,
            f"Basic connection failed: {exc}",
            classify(str(exc)),
            duration_ms=connect_ms + _elapsed_ms(start),
            data={"error": str(exc)},
        )
    query_ms = _elapsed_ms(start)
    total_ms = connect_ms + query_ms
    return _ok(
        CONNECTIVITY_PROBE_ID,
        f"Basic connection successful ({total_ms}ms).",
        duration_ms=total_ms,
        data={"connect_ms": connect_ms, "query_ms": query_ms},
    )


# ---------------------------------------------------------------------------
# Stability
# ---------------------------------------------------------------------------


def _stability_probe(context: ProbeContext) -> Finding:
    connection = _require_connection(context)
    policy = context.policy
    repetitions = max(1, policy.stability_repetitions)
    delay_seconds = max(0, policy.stability_delay_ms) / 1000.0
    sleep = context.sleep or time.sleep
    latencies: list[int] = []

    for attempt in range(1, repetitions + 1):
        start = time.perf_counter()
        try:
            connection.fetch_one(STABILITY_QUERY, (attempt,))
        except StoreError as exc:
            return _error(
                STABILITY_PROBE_ID,
                f"Connection stability test failed on query {attempt}/{repetitions}: {exc}",
                RemediationCategory.STABILITY,
                data={"latencies_ms": latencies, "failed_attempt": attempt, "error": str(exc)},
            )
        latencies.append(_elapsed_ms(start))
        if attempt < repetitions and delay_seconds:
            sleep(delay_seconds)

    return _ok(
        STABILITY_PROBE_ID,
        f"Connection stable over {len(latencies)} queries "
        f"(min={min(latencies)}ms, max={max(latencies)}ms).",
        data={
            "latencies_ms": latencies,
            "count": len(latencies),
            "min_ms": min(latencies),
            "max_ms": max(latencies),
            "delay_ms": policy.stability_delay_ms,
        },
    )


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _server_version(raw: object) -> str:
    text = str(raw or "").strip()
    parts = text.split()
    if len(parts) > 1 and parts[0].lower() == "postgresql":
        return parts[1]
    return text or "unknown"


def _metadata_probe(context: ProbeContext) -> Finding:
    connection = _require_connection(context)
    try:
        row = connection.fetch_one(METADATA_QUERY)
    except StoreError as exc:
        return _warn(
            METADATA_PROBE_ID,
            f"Could not get database info: {exc}",
            data={"error": str(exc)},
        )
    if not row:
        return _warn(METADATA_PROBE_ID, "Could not get database info: no rows returned.")

    info: Mapping[str, object] = {
        "database": row.get("database"),
        "user": row.get("user"),
        "version": _server_version(row.get("version")),
        "server_time": str(row.get("current_time")),
    }
    return _ok(
        METADATA_PROBE_ID,
        f"Connected to '{info['database']}' as '{info['user']}' "
        f"(PostgreSQL {info['version']}).",
        data=dict(info),
    )


# ---------------------------------------------------------------------------
# Resource pressure
# ---------------------------------------------------------------------------


def _connection_states(connection: Any) -> dict[str, object]:
    try:
        row = connection.fetch_one(CONNECTION_STATES_QUERY)
    except StoreError as exc:
        return {"error": str(exc)}
    if not row:
        return {}
    keys = ("total_connections", "active_connections", "idle_connections")
    return {key: row.get(key) for key in keys}


def _resources_probe(context: ProbeContext) -> Finding:
    connection = _require_connection(context)
    policy = context.policy
    try:
        row = connection.fetch_one(RESOURCES_QUERY)
        if not row:
            raise ValueError("no rows returned")
        active = _as_int(row.get("active_connections"), "active_connections")
        maximum = _as_int(row.get("max_connections"), "max_connections")
    except (StoreError, ValueError) as exc:
        return _warn(
            RESOURCES_PROBE_ID,
            f"Could not check connection limits: {exc}",
            data={"error": str(exc)},
        )
    if maximum <= 0:
        return _warn(
            RESOURCES_PROBE_ID,
            f"Could not check connection limits: max_connections={maximum}.",
            data={"active_connections": active, "max_connections": maximum},
        )

    utilization = active / maximum
    data: dict[str, object] = {
        "active_connections": active,
        "max_connections": maximum,
        "utilization": round(utilization, 4),
        "warn_threshold": policy.capacity_warn_threshold,
        "database_connections": _connection_states(connection),
    }
    usage = f"{active}/{maximum} connections in use ({utilization:.0%})"

    error_threshold = policy.capacity_error_threshold
    if error_threshold is not None and active > maximum * error_threshold:
        data["error_threshold"] = error_threshold
        return _error(
            RESOURCES_PROBE_ID,
            f"Critical connection usage detected: {usage}.",
            RemediationCategory.CAPACITY,
            data=data,
        )
    if active > maximum * policy.capacity_warn_threshold:
        return _warn(
            RESOURCES_PROBE_ID,
            f"High connection usage detected: {usage}.",
            RemediationCategory.CAPACITY,
            data=data,
        )
    return _ok(RESOURCES_PROBE_ID, f"Connection usage within limits: {usage}.", data=data)


__all__ = [
    "CONNECTIVITY_PROBE_ID",
    "ENVIRONMENT_PROBE_ID",
    "METADATA_PROBE_ID",
    "RESOURCES_PROBE_ID",
    "STABILITY_PROBE_ID",
    "collect_probes",
]
