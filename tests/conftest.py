"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pytest

from dbdoctor.doctor import probes as doctor_probes
from dbdoctor.doctor.store import StoreError

HEALTHY_RESPONSES: dict[str, object] = {
    doctor_probes.CONNECTIVITY_QUERY: {"test": 1},
    doctor_probes.STABILITY_QUERY: {"test": 1},
    doctor_probes.METADATA_QUERY: {
        "database": "app",
        "user": "app_user",
        "version": "PostgreSQL 16.2 on x86_64-pc-linux-gnu",
        "current_time": "2026-10-18 12:00:00+00",
    },
    doctor_probes.RESOURCES_QUERY: {"active_connections": 5, "max_connections": "100"},
    doctor_probes.CONNECTION_STATES_QUERY: {
        "total_connections": 3,
        "active_connections": 1,
        "idle_connections": 2,
    },
}


class FakeConnection:
    """In-memory stand-in for :class:`dbdoctor.doctor.store.StoreConnection`.

    ``responses`` maps SQL text to a row, ``None``, an exception to raise, or a
    list of those consumed one call at a time.
    """

    def __init__(self, responses: Mapping[str, object] | None = None) -> None:
        self.responses: dict[str, object] = dict(HEALTHY_RESPONSES)
        self.responses.update(responses or {})
        self.calls: list[tuple[str, tuple[object, ...] | None]] = []
        self.closed = False
        self.close_error: Exception | None = None

    def fetch_one(
        self,
        sql: str,
        params: Sequence[object] | None = None,
    ) -> Mapping[str, Any] | None:
        self.calls.append((sql, tuple(params) if params is not None else None))
        response = self.responses.get(sql)
        if isinstance(response, list):
            response = response.pop(0) if response else HEALTHY_RESPONSES.get(sql)
        if isinstance(response, Exception):
            raise response
        return response  # type: ignore[return-value]

    def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error

    def queries(self, sql: str) -> list[tuple[object, ...] | None]:
        return [params for query, params in self.calls if query == sql]


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    """Return a factory building fake connections with healthy defaults."""

    def factory(responses: Mapping[str, object] | None = None) -> FakeConnection:
        return FakeConnection(responses)

    return factory


@pytest.fixture
def connector_for() -> Callable[[object], Callable[..., object]]:
    """Return a helper that wraps a connection (or exception) as a connector."""

    def factory(outcome: object) -> Callable[..., object]:
        def connector(descriptor: object, timeout: float) -> object:
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        return connector

    return factory


@pytest.fixture
def store_error() -> type[StoreError]:
    """Expose the store error type to tests that script failures."""
    return StoreError
