"""Tests for admission-time injection."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

from conftest import make_container, make_workload

from lumigo_operator.admission import mutate_on_admission
from lumigo_operator.injection import has_marker
from lumigo_operator.utils.conditions import LumigoConditions


def lumigo(name: str = "lumigo", active: bool = True, created: str = "2024-01-01T00:00:00Z", **injection) -> dict:
    conditions = LumigoConditions()
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    if active:
        conditions.set_active(now)
    else:
        conditions.set_error("InvalidCredentials", "bad token", now)
    return {
        "metadata": {"name": name, "namespace": "default", "creationTimestamp": created},
        "spec": {
            "lumigoToken": {"secretRef": {"name": "lumigo-credentials", "key": "token"}},
            "tracing": {"injection": injection},
        },
        "status": {"conditions": conditions.to_status()},
    }


def instrumented(workload: dict) -> bool:
    return has_marker(workload["spec"]["template"])


class TestMutateOnAdmission:
    """Test mutate_on_admission."""

    def test_injects_when_active(self, config) -> None:
        result = mutate_on_admission(make_workload(), [lumigo()], config)

        assert instrumented(result)

    def test_no_lumigo(self, config) -> None:
        workload = make_workload()

        assert mutate_on_admission(workload, [], config) is workload

    def test_inactive_lumigo(self, config) -> None:
        workload = make_workload()

        assert mutate_on_admission(workload, [lumigo(active=False)], config) is workload

    def test_injection_disabled(self, config) -> None:
        workload = make_workload()

        assert mutate_on_admission(workload, [lumigo(enabled=False)], config) is workload

    def test_only_authoritative_instance_counts(self, config) -> None:
        workload = make_workload()
        candidates = [lumigo("old", active=False), lumigo("new", created="2024-03-01T00:00:00Z")]

        assert mutate_on_admission(workload, candidates, config) is workload

    def test_controlled_workloads_are_left_to_their_owner(self, config) -> None:
        workload = make_workload(kind="ReplicaSet", owner="checkout")

        assert mutate_on_admission(workload, [lumigo()], config) is workload

    def test_opted_out(self, config) -> None:
        workload = make_workload(labels={"lumigo.auto-trace": "false"})

        assert mutate_on_admission(workload, [lumigo()], config) is workload

    def test_conflict_admits_unchanged(self, config) -> None:
        workload = make_workload(containers=[make_container(env=[{"name": "LD_PRELOAD", "value": "/x.so"}])])

        assert mutate_on_admission(workload, [lumigo()], config) is workload

    def test_already_instrumented(self, config) -> None:
        injected = mutate_on_admission(make_workload(), [lumigo()], config)

        assert mutate_on_admission(injected, [lumigo()], config) is injected

    def test_uses_given_engine(self, config, engine) -> None:
        spy = MagicMock(wraps=engine)

        mutate_on_admission(make_workload(), [lumigo()], config, engine=spy)

        spy.inject.assert_called_once()
