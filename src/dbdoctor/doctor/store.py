"""Thin read-only adapter over the PostgreSQL driver used by probes."""
from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import psycopg2
import psycopg2.extras

from .descriptor import ConnectionDescriptor
from .models import DEFAULT_POOLING_PARAMS

APPLICATION_NAME = "dbdoctor"


class StoreError(RuntimeError):
    """Raised when a store round-trip or connection attempt fails."""


class StoreConnection(Protocol):
    """Minimal connection surface the probes rely upon."""

    def fetch_one(
        self,
        sql: str,
        params: Sequence[object] | None = None,
    ) -> Mapping[str, Any] | None:
        """Execute *sql* and return the first row as a mapping."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...


class PsycopgConnection:
    """psycopg2-backed :class:`StoreConnection`."""

    def __init__(self, raw: Any) -> None:
        """Wrap an open psycopg2 connection."""
        self._raw = raw

    def fetch_one(
        self,
        sql: str,
        params: Sequence[object] | None = None,
    ) -> Mapping[str, Any] | None:
        """Execute *sql* with bound *params* and return the first row."""
        try:
            with self._raw.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(sql, tuple(params) if params is not None else None)
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            raise StoreError(_error_message(exc)) from exc
        return dict(row) if row is not None else None

    def close(self) -> None:
        """Close the connection, surfacing driver errors as :class:`StoreError`."""
        if self._raw.closed:
            return
        try:
            self._raw.close()
        except psycopg2.Error as exc:  # pragma: no cover - driver owns detail
            raise StoreError(_error_message(exc)) from exc


def connect_kwargs(descriptor: ConnectionDescriptor, timeout: float) -> dict[str, object]:
    """Translate a descriptor into psycopg2 keyword arguments.

    Query parameters are forwarded as libpq options, except pooling keys
    such as ``pgbouncer`` which libpq rejects. ``connect_timeout``,
    ``options`` and ``application_name`` fall back to dbdoctor's defaults
    only when the URL leaves them unset.
    """
    kwargs: dict[str, object] = {
        "host": descriptor.host,
        "port": descriptor.effective_port,
    }
    if descriptor.database:
        kwargs["dbname"] = descriptor.database
    if descriptor.user:
        kwargs["user"] = descriptor.user
    if descriptor.password is not None:
        kwargs["password"] = descriptor.password
    pooling_keys = descriptor.pooling_params | frozenset(DEFAULT_POOLING_PARAMS)
    for key, value in descriptor.params.items():
        if key not in pooling_keys:
            kwargs[key] = value
    kwargs.setdefault("connect_timeout", max(1, math.ceil(timeout)))
    kwargs.setdefault("options", f"-c statement_timeout={max(1, int(timeout * 1000))}")
    kwargs.setdefault("application_name", APPLICATION_NAME)
    return kwargs


def connect(descriptor: ConnectionDescriptor, timeout: float) -> PsycopgConnection:
    """Open a read-only autocommit session described by *descriptor*."""
    try:
        raw = psycopg2.connect(**connect_kwargs(descriptor, timeout))
    except psycopg2.Error as exc:
        raise StoreError(_error_message(exc)) from exc
    try:
        raw.set_session(readonly=True, autocommit=True)
    except psycopg2.Error as exc:
        raw.close()
        raise StoreError(_error_message(exc)) from exc
    return PsycopgConnection(raw)


def _error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


__all__ = [
    "APPLICATION_NAME",
    "PsycopgConnection",
    "StoreConnection",
    "StoreError",
    "connect",
    "connect_kwargs",
]
