"""Unit tests for readiness conditions."""

from __future__ import annotations

import pytest
from conftest import make_resource

from temporal_e2e.fixtures.conditions import (
    Condition,
    all_of,
    any_of,
    deployment_available,
    field_non_empty,
    get_field,
    pod_ready,
    resource_ready,
    resources_found,
    secret_ref_issued,
    status_condition_match,
)


def _with_conditions(*conditions: dict[str, str]) -> dict[str, object]:
    return make_resource("test", kind="TemporalCluster", conditions=list(conditions))


class TestStatusConditions:
    """Tests for typed status condition matching."""

    def test_deployment_available_true(self) -> None:
        deployment = _with_conditions(
            {"type": "Progressing", "status": "True", "reason": "NewReplicaSetAvailable"},
            {"type": "Available", "status": "True", "reason": "MinimumReplicasAvailable"},
        )
        assert deployment_available()(deployment) is True

    def test_deployment_available_false_status(self) -> None:
        deployment = _with_conditions(
            {"type": "Available", "status": "False", "reason": "MinimumReplicasUnavailable"},
        )
        assert deployment_available()(deployment) is False

    def test_resource_ready_requires_ready_type(self) -> None:
        cluster = _with_conditions({"type": "ReconcileSuccess", "status": "True"})
        assert resource_ready()(cluster) is False

        cluster = _with_conditions({"type": "Ready", "status": "True"})
        assert resource_ready()(cluster) is True

    def test_pod_ready(self) -> None:
        pod = make_resource("cassandra-0", conditions=[{"type": "Ready", "status": "True"}])
        assert pod_ready()(pod) is True

    @pytest.mark.parametrize(
        "state",
        [
            None,
            {},
            {"status": {}},
            {"status": {"conditions": None}},
            {"status": {"conditions": "Ready"}},
            {"status": {"conditions": ["Ready"]}},
        ],
    )
    def test_missing_or_malformed_status_is_not_ready(self, state: object) -> None:
        """Test resources that do not exist yet or have no status are not ready."""
        assert resource_ready()(state) is False

    def test_custom_status(self) -> None:
        condition = status_condition_match("Ready", "Unknown")
        assert condition(_with_conditions({"type": "Ready", "status": "Unknown"})) is True
        assert condition.description == "Ready=Unknown status condition"


class TestFieldConditions:
    """Tests for field-based conditions."""

    def test_secret_ref_issued(self) -> None:
        pending = make_resource("client", status={"secretRef": {"name": ""}})
        issued = make_resource("client", status={"secretRef": {"name": "test-client-mtls"}})

        assert secret_ref_issued()(pending) is False
        assert secret_ref_issued()(issued) is True
        assert secret_ref_issued()(make_resource("client")) is False

    def test_field_non_empty_description(self) -> None:
        assert field_non_empty("status.podIP").description == "status.podIP is set"

    def test_get_field_stops_at_non_mapping(self) -> None:
        assert get_field({"status": "Running"}, "status.phase") is None
        assert get_field({"status": {"phase": "Running"}}, "status.phase") == "Running"


class TestResourcesFound:
    """Tests for listing-based existence checks."""

    def test_all_names_present(self) -> None:
        listing = [make_resource("postgres"), make_resource("other")]
        assert resources_found(["postgres"])(listing) is True

    def test_missing_name(self) -> None:
        assert resources_found(["postgres", "mysql"])([make_resource("postgres")]) is False

    def test_empty_listing(self) -> None:
        assert resources_found(["postgres"])([]) is False
        assert resources_found(["postgres"])(None) is False


class TestComposition:
    """Tests for combining conditions and user-defined predicates."""

    def test_user_defined_predicate(self) -> None:
        replicas = Condition(
            "3 ready replicas",
            lambda s: (s or {}).get("status", {}).get("readyReplicas") == 3,
        )
        assert replicas(make_resource("d", status={"readyReplicas": 3})) is True
        assert str(replicas) == "3 ready replicas"

    def test_all_of_and_operator(self) -> None:
        ready = _with_conditions(
            {"type": "Available", "status": "True"},
            {"type": "Ready", "status": "True"},
        )
        only_available = _with_conditions({"type": "Available", "status": "True"})

        combined = deployment_available() & resource_ready()
        assert combined(ready) is True
        assert combined(only_available) is False
        assert all_of(deployment_available(), resource_ready())(ready) is True

    def test_any_of_and_operator(self) -> None:
        state = _with_conditions({"type": "Ready", "status": "True"})
        assert (deployment_available() | resource_ready())(state) is True
        assert any_of(deployment_available())(state) is False

    def test_negation(self) -> None:
        not_ready = ~resource_ready()
        assert not_ready(None) is True
        assert not_ready.description.startswith("not (")
