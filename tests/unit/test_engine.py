"""Tests for applying and reverting injection plans."""

from __future__ import annotations

import copy
import dataclasses
import json

import pytest
from conftest import make_container, make_workload

from lumigo_operator.exceptions import InjectionConflictError, InjectionError
from lumigo_operator.injection import InjectionEngine, InjectionPlanner, PlanAction, has_marker
from lumigo_operator.utils.tokens import SecretReference

TOKEN_REF = SecretReference("lumigo-credentials", "token")


def pod_spec(workload):
    return workload["spec"]["template"]["spec"]


class TestInject:
    """Test InjectionEngine.inject and apply."""

    def test_inject_adds_elements(self, engine: InjectionEngine) -> None:
        result = engine.inject(make_workload(), TOKEN_REF)

        assert result.action is PlanAction.ADD
        assert result.changed
        spec = pod_spec(result.workload)
        assert [c["name"] for c in spec["initContainers"]] == ["lumigo-injector"]
        assert [v["name"] for v in spec["volumes"]] == ["lumigo-injector"]
        app = spec["containers"][0]
        assert [m["mountPath"] for m in app["volumeMounts"]] == ["/opt/lumigo"]
        assert {e["name"] for e in app["env"]} == {
            "LD_PRELOAD",
            "LUMIGO_ENDPOINT",
            "LUMIGO_LOGS_ENDPOINT",
            "LUMIGO_TRACER_TOKEN",
        }

    def test_inject_sets_marker(self, engine: InjectionEngine) -> None:
        metadata = engine.inject(make_workload(), TOKEN_REF).workload["spec"]["template"]["metadata"]

        assert metadata["labels"]["lumigo.io/instrumented"] == "true"
        assert metadata["labels"]["app"] == "checkout"
        assert json.loads(metadata["annotations"]["lumigo.io/instrumentation"])["operatorVersion"] == "1.2.3"

    def test_input_is_not_mutated(self, engine: InjectionEngine) -> None:
        workload = make_workload()
        original = copy.deepcopy(workload)

        engine.inject(workload, TOKEN_REF)

        assert workload == original

    def test_user_env_is_preserved_in_order(self, engine: InjectionEngine) -> None:
        container = make_container(env=[{"name": "B", "value": "2"}, {"name": "A", "value": "1"}])

        env = pod_spec(engine.inject(make_workload(containers=[container]), TOKEN_REF).workload)["containers"][0]["env"]

        assert [e["name"] for e in env[:2]] == ["B", "A"]

    def test_every_application_container_is_injected(self, engine: InjectionEngine) -> None:
        workload = make_workload(containers=[make_container("web"), make_container("worker")])

        spec = pod_spec(engine.inject(workload, TOKEN_REF).workload)

        assert all(len(c["env"]) == 4 for c in spec["containers"])

    def test_idempotent(self, engine: InjectionEngine) -> None:
        workload = make_workload()
        plan = engine.plan(workload, TOKEN_REF)

        once = engine.apply(workload, plan).workload
        twice = engine.apply(once, plan).workload

        assert twice == once
        assert engine.inject(once, TOKEN_REF).action is PlanAction.NOOP
        assert not engine.inject(once, TOKEN_REF).changed

    def test_cron_job(self, engine: InjectionEngine) -> None:
        result = engine.inject(make_workload(kind="CronJob"), TOKEN_REF)

        template = result.workload["spec"]["jobTemplate"]["spec"]["template"]
        assert has_marker(template)
        assert template["spec"]["initContainers"][0]["name"] == "lumigo-injector"

    def test_opted_out_workload_is_skipped(self, engine: InjectionEngine) -> None:
        workload = make_workload(labels={"lumigo.auto-trace": "false"})

        result = engine.inject(workload, TOKEN_REF)

        assert result.skipped
        assert not result.changed
        assert result.workload is workload

    def test_apply_skips_opted_out(self, engine: InjectionEngine) -> None:
        workload = make_workload(template_labels={"lumigo.auto-trace": "false"})

        assert engine.apply(workload, engine.plan(workload, TOKEN_REF)).skipped

    def test_conflict_propagates(self, engine: InjectionEngine) -> None:
        container = make_container(env=[{"name": "LUMIGO_TRACER_TOKEN", "value": "mine"}])

        with pytest.raises(InjectionConflictError):
            engine.inject(make_workload(containers=[container]), TOKEN_REF)

    def test_malformed_template_raises_injection_error(self, engine: InjectionEngine) -> None:
        workload = make_workload()
        plan = engine.plan(workload, TOKEN_REF)
        workload["spec"]["template"]["spec"]["containers"] = ["not-a-container"]

        with pytest.raises(InjectionError):
            engine.apply(workload, plan)


class TestRevert:
    """Test InjectionEngine.revert."""

    def test_round_trip_restores_original(self, engine: InjectionEngine) -> None:
        workload = make_workload(
            containers=[
                make_container("web", env=[{"name": "PORT", "value": "8080"}]),
                make_container("worker", volumeMounts=[{"name": "data", "mountPath": "/data"}]),
            ]
        )
        workload["spec"]["template"]["spec"]["volumes"] = [{"name": "data", "emptyDir": {}}]
        workload["spec"]["template"]["spec"]["initContainers"] = [make_container("migrate")]

        injected = engine.inject(workload, TOKEN_REF).workload
        reverted = engine.revert(injected)

        assert reverted.action is PlanAction.REMOVE
        assert reverted.workload == workload

    def test_round_trip_with_sidecar(self, config) -> None:
        engine = InjectionEngine(InjectionPlanner(dataclasses.replace(config, sidecar_image="lumigo/proxy:1")))
        workload = make_workload()

        injected = engine.inject(workload, TOKEN_REF).workload
        assert len(pod_spec(injected)["containers"]) == 2

        assert engine.revert(injected).workload == workload

    def test_revert_clean_workload_is_noop(self, engine: InjectionEngine) -> None:
        result = engine.revert(make_workload())

        assert result.action is PlanAction.NOOP
        assert not result.changed

    def test_revert_marker_only(self, engine: InjectionEngine) -> None:
        workload = make_workload()
        injected = engine.inject(workload, TOKEN_REF).workload
        spec = pod_spec(injected)
        del spec["initContainers"]
        del spec["volumes"]
        for container in spec["containers"]:
            del container["env"]
            del container["volumeMounts"]

        assert engine.revert(injected).workload == workload

    def test_revert_opted_out_workload(self, engine: InjectionEngine) -> None:
        injected = engine.inject(make_workload(), TOKEN_REF).workload
        injected["metadata"]["labels"] = {"lumigo.auto-trace": "false"}

        reverted = engine.revert(injected).workload

        assert not has_marker(reverted["spec"]["template"])
        assert "initContainers" not in pod_spec(reverted)

    def test_round_trip_keeps_empty_fields(self, engine: InjectionEngine) -> None:
        workload = make_workload(containers=[make_container(env=[], volumeMounts=[])])
        template = workload["spec"]["template"]
        template["metadata"]["annotations"] = {}
        template["spec"]["volumes"] = []
        template["spec"]["initContainers"] = []

        injected = engine.inject(workload, TOKEN_REF).workload
        assert pod_spec(injected)["volumes"][0]["name"] == "lumigo-injector"

        assert engine.revert(injected).workload == workload

    def test_empty_fields_survive_replace(self, config, engine: InjectionEngine) -> None:
        workload = make_workload(containers=[make_container(env=[])])
        pod_spec(workload)["volumes"] = []
        injected = engine.inject(workload, TOKEN_REF).workload
        upgraded = InjectionEngine(InjectionPlanner(dataclasses.replace(config, injector_image="lumigo/autotrace:2.0")))

        replaced = upgraded.inject(injected, TOKEN_REF)

        assert replaced.action is PlanAction.REPLACE
        assert upgraded.revert(replaced.workload).workload == workload

    def test_user_reserved_names_are_never_removed(self, engine: InjectionEngine) -> None:
        workload = make_workload(containers=[make_container("app"), make_container("lumigo-exporter")])
        pod_spec(workload)["volumes"] = [{"name": "lumigo-cache", "emptyDir": {}}]
        original = copy.deepcopy(workload)

        with pytest.raises(InjectionConflictError, match="reserved prefix"):
            engine.inject(workload, TOKEN_REF)
        result = engine.revert(workload)

        assert result.action is PlanAction.NOOP
        assert result.workload == original
