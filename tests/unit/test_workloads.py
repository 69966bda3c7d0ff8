"""Tests for workload kind records."""

from __future__ import annotations

import pytest
from conftest import make_workload

from lumigo_operator.exceptions import InjectionError
from lumigo_operator.workloads import (
    WORKLOAD_KINDS,
    is_controlled,
    is_opted_out,
    workload_kind_of,
    workload_ref,
)


class TestWorkloadKind:
    """Test WorkloadKind lookups and template access."""

    @pytest.mark.parametrize("kind", sorted(WORKLOAD_KINDS))
    def test_get_pod_template(self, kind: str) -> None:
        body = make_workload(kind=kind)

        template = workload_kind_of(body).get_pod_template(body)

        assert template["spec"]["containers"][0]["name"] == "app"

    def test_cron_job_template_path(self) -> None:
        body = make_workload(kind="CronJob")
        kind = workload_kind_of(body)

        kind.set_pod_template(body, {"spec": {"containers": []}})

        assert body["spec"]["jobTemplate"]["spec"]["template"] == {"spec": {"containers": []}}

    def test_template_patch(self) -> None:
        patch = WORKLOAD_KINDS["CronJob"].template_patch({"spec": {}})

        assert patch == {"spec": {"jobTemplate": {"spec": {"template": {"spec": {}}}}}}

    def test_missing_template_reads_empty(self) -> None:
        assert WORKLOAD_KINDS["Deployment"].get_pod_template({"kind": "Deployment"}) == {}

    def test_unsupported_kind(self) -> None:
        with pytest.raises(InjectionError, match="unsupported workload kind"):
            workload_kind_of({"kind": "Pod"})


class TestWorkloadHelpers:
    """Test workload predicates."""

    def test_workload_ref(self) -> None:
        assert workload_ref(make_workload(name="checkout")) == "Deployment/checkout"

    def test_is_controlled(self) -> None:
        assert is_controlled(make_workload(kind="ReplicaSet", owner="checkout"))
        assert not is_controlled(make_workload(kind="ReplicaSet"))

    def test_opt_out_on_workload(self) -> None:
        assert is_opted_out(make_workload(labels={"lumigo.auto-trace": "false"}))

    def test_opt_out_on_template(self) -> None:
        assert is_opted_out(make_workload(template_labels={"lumigo.auto-trace": "False"}))

    def test_not_opted_out(self) -> None:
        assert not is_opted_out(make_workload(labels={"lumigo.auto-trace": "true"}))
