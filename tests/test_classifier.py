"""Tests for failure classification."""

from __future__ import annotations

import pytest

from dbdoctor.doctor import RemediationCategory, classify, classify_failure, recommendation_for
from dbdoctor.doctor.classifier import RECOMMENDATIONS


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('FATAL:  password authentication failed for user "app"', RemediationCategory.CREDENTIALS),
        ("permission denied for database app", RemediationCategory.CREDENTIALS),
        ("could not connect to server: Connection refused", RemediationCategory.NETWORK),
        ('could not translate host name "nope" to address', RemediationCategory.NETWORK),
        ("TIMEOUT expired", RemediationCategory.NETWORK),
        ("Network is unreachable", RemediationCategory.NETWORK),
        ("No route to host", RemediationCategory.NETWORK),
        ("connection timed out", RemediationCategory.NETWORK),
        (
            'connection to server at "db" (10.0.0.1), port 5432 failed: '
            'FATAL:  database "mydb" does not exist',
            RemediationCategory.MISSING_RESOURCE,
        ),
        (
            'connection to server at "db" (10.0.0.1), port 5432 failed: '
            "Connection refused",
            RemediationCategory.NETWORK,
        ),
        ("server closed the connection unexpectedly", RemediationCategory.UNKNOWN),
        ('FATAL:  database "missing" does not exist', RemediationCategory.MISSING_RESOURCE),
        ("something entirely unexpected", RemediationCategory.UNKNOWN),
        ("", RemediationCategory.UNKNOWN),
    ],
)
def test_classify_maps_messages_to_categories(
    message: str,
    expected: RemediationCategory,
) -> None:
    """Substring rules are matched case-insensitively."""
    assert classify(message) is expected


def test_credentials_take_priority_over_network_wording() -> None:
    """Auth failures wrapped in transport wording still classify as credentials."""
    message = (
        'connection to server at "db" (10.0.0.1), port 5432 failed: '
        'FATAL:  password authentication failed for user "app"'
    )

    assert classify(message) is RemediationCategory.CREDENTIALS


def test_every_category_has_a_recommendation() -> None:
    """Each remediation category resolves to non-empty advice."""
    for category in RemediationCategory:
        recommendation = recommendation_for(category)
        assert recommendation.category is category
        assert recommendation.text == RECOMMENDATIONS[category]
        assert recommendation.text


def test_classify_failure_returns_network_advice() -> None:
    """The combined helper returns the canonical recommendation."""
    recommendation = classify_failure("Connection refused")

    assert recommendation.category is RemediationCategory.NETWORK
    assert recommendation.text == "Check network connectivity and firewall settings"


def test_classify_is_idempotent() -> None:
    """Repeated classification of the same message is stable."""
    message = "could not connect to server: password authentication failed"

    assert {classify(message) for _ in range(3)} == {RemediationCategory.CREDENTIALS}
