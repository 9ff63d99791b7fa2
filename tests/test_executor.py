"""Tests for applying, resuming and tearing down plans."""

import threading
import time

import pytest

from stackforge import executor
from stackforge.contracts import ResourceKind
from stackforge.dependency_resolver import resolve
from stackforge.errors import ProviderError, UnresolvedReferenceError
from stackforge.executor import apply_plan, collect_exports, destroy_plan
from stackforge.models import ApplyState, ProvisioningPlan
from stackforge.provider import InMemoryProvider, ProviderAdapter
from stackforge.topology import build_topology


@pytest.fixture
def graph(dev):
    return build_topology(dev, namespace="dev")


@pytest.fixture
def plan(graph):
    return resolve(graph)


class OrderCheckingProvider(InMemoryProvider):
    """Records applied kinds and the most calls in flight at once."""

    def __init__(self, delay=0.0, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.kinds = []
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def apply(self, kind, inputs):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            outputs = super().apply(kind, inputs)
            self.kinds.append(kind)
            return outputs
        finally:
            with self._guard:
                self.active -= 1


class BrokenProvider(ProviderAdapter):
    def apply(self, kind, inputs):
        raise RuntimeError("connection reset")

    def destroy(self, kind, identity):
        raise RuntimeError("connection reset")


class ForgetfulProvider(InMemoryProvider):
    def apply(self, kind, inputs):
        outputs = super().apply(kind, inputs)
        outputs.pop("id", None)
        return outputs


class TestApply:

    def test_applies_every_step(self, plan):
        provider = InMemoryProvider()
        state = apply_plan(plan, provider)

        assert all(state.is_applied(node_id) for node_id in plan.creation_order)
        assert [call[1] for call in provider.calls] == [step.kind for step in plan.steps]

    def test_references_resolved_before_apply(self, graph, plan):
        provider = InMemoryProvider()
        state = apply_plan(plan, provider)

        repository_url = state.outputs_for("dev/ecr-repo")["repository_url"]
        task_inputs = next(
            inputs for kind, inputs in provider.resources.values()
            if kind == ResourceKind.ECS_TASK_DEFINITION
        )
        container = task_inputs["container_definitions"][0]
        assert container["image"] == f"{repository_url}:latest"
        assert container["logConfiguration"]["options"]["awslogs-group"] == "/ecs/express-ts-app-dev"

        subnets = state.outputs_for("dev/public-subnet-1"), state.outputs_for("dev/public-subnet-2")
        alb_inputs = next(inputs for kind, inputs in provider.resources.values() if kind == ResourceKind.LOAD_BALANCER)
        assert alb_inputs["subnets"] == [subnets[0]["id"], subnets[1]["id"]]

    def test_exports(self, graph, plan):
        state = apply_plan(plan, InMemoryProvider())
        exports = collect_exports(graph, state)

        assert exports["alb_dns_name"].endswith(".us-east-1.elb.amazonaws.com")
        assert exports["ecr_repository_url"] == "123456789012.dkr.ecr.us-east-1.amazonaws.com/turbovetsrepo-ecr"

    def test_concurrent_apply(self, plan, monkeypatch):
        provider = OrderCheckingProvider(delay=0.02)
        state = ApplyState()
        started_early = []
        apply_step = executor._apply_step

        def checked_apply_step(step, provider, state):
            missing = [dep for dep in step.depends_on if not state.is_applied(dep)]
            if missing:
                started_early.append((step.node_id, missing))
            return apply_step(step, provider, state)

        monkeypatch.setattr(executor, "_apply_step", checked_apply_step)
        apply_plan(plan, provider, state=state, max_workers=4)

        assert started_early == []
        assert provider.max_active > 1
        assert len(state) == len(plan)
        assert sorted(provider.kinds) == sorted(step.kind for step in plan.steps)

    def test_sequential_apply_runs_one_step_at_a_time(self, plan):
        provider = OrderCheckingProvider()
        apply_plan(plan, provider)
        assert provider.max_active == 1
        assert provider.kinds == [step.kind for step in plan.steps]

    def test_missing_outputs_reported(self, plan):
        with pytest.raises(ProviderError, match="returned no"):
            apply_plan(plan, ForgetfulProvider())


class TestFailures:

    def test_provider_error_tagged_with_step(self, plan):
        provider = InMemoryProvider(fail_kinds={ResourceKind.LOAD_BALANCER})

        with pytest.raises(ProviderError) as excinfo:
            apply_plan(plan, provider)

        error = excinfo.value
        assert error.node_id == "dev/alb"
        assert error.kind == "aws_lb"
        assert all(subnet.startswith("subnet-") for subnet in error.inputs["subnets"])
        assert isinstance(error.cause, ProviderError)
        assert str(error).startswith("[dev/alb (aws_lb)]")

    def test_unexpected_exception_wrapped(self, plan):
        with pytest.raises(ProviderError, match="connection reset") as excinfo:
            apply_plan(plan, BrokenProvider())
        assert excinfo.value.node_id == plan.creation_order[0]
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_failure_stops_dependents(self, plan):
        provider = InMemoryProvider(fail_kinds={ResourceKind.LOAD_BALANCER})
        state = ApplyState()

        with pytest.raises(ProviderError):
            apply_plan(plan, provider, state=state)

        assert not state.is_applied("dev/alb")
        assert not state.is_applied("dev/listener")
        assert state.is_applied("dev/vpc")

    def test_concurrent_failure_tagged_with_step(self, plan):
        provider = InMemoryProvider(fail_kinds={ResourceKind.TARGET_GROUP})
        state = ApplyState()

        with pytest.raises(ProviderError) as excinfo:
            apply_plan(plan, provider, state=state, max_workers=4)

        assert excinfo.value.node_id == "dev/tg"
        assert not state.is_applied("dev/service")
        assert state.is_applied("dev/vpc")

    def test_unknown_repository(self, plan):
        with pytest.raises(ProviderError, match="turbovetsrepo-ecr") as excinfo:
            apply_plan(plan, InMemoryProvider(repositories={"something-else"}))
        assert excinfo.value.node_id == "dev/ecr-repo"

    def test_dependency_missing_from_plan_and_state(self, plan):
        tail = ProvisioningPlan(plan.environment, plan.steps[1:])
        with pytest.raises(UnresolvedReferenceError):
            apply_plan(tail, InMemoryProvider())


class TestResume:

    def test_retry_after_failure_applies_only_missing_steps(self, graph, plan):
        provider = InMemoryProvider(fail_kinds={ResourceKind.LOAD_BALANCER})
        state = ApplyState()
        with pytest.raises(ProviderError):
            apply_plan(plan, provider, state=state)
        applied_before = state.as_dict()

        provider.fail_kinds.clear()
        calls_before = len(provider.calls)
        apply_plan(resolve(graph), provider, state=state)

        assert len(state) == len(plan)
        assert len(provider.calls) - calls_before == len(plan) - len(applied_before)
        for node_id, outputs in applied_before.items():
            assert state.outputs_for(node_id) == outputs

    def test_half_applied_plan_resumes_in_order(self, graph, plan):
        half = len(plan) // 2
        state = apply_plan(ProvisioningPlan(plan.environment, plan.steps[:half]), InMemoryProvider())

        provider = InMemoryProvider()
        apply_plan(resolve(graph), provider, state=state)

        assert [call[1] for call in provider.calls] == [step.kind for step in plan.steps[half:]]
        assert len(state) == len(plan)

    def test_cancel_leaves_state_resumable(self, plan):
        cancel = threading.Event()
        cancel.set()
        state = apply_plan(plan, InMemoryProvider(), cancel=cancel)
        assert len(state) == 0

        state = apply_plan(plan, InMemoryProvider(), state=state)
        assert len(state) == len(plan)

    def test_cancel_with_workers(self, plan):
        cancel = threading.Event()
        cancel.set()
        state = apply_plan(plan, InMemoryProvider(), cancel=cancel, max_workers=4)
        assert len(plan.pending(state)) == len(plan)


class TestDestroy:

    def test_teardown_in_reverse_order(self, plan):
        provider = InMemoryProvider()
        state = apply_plan(plan, provider)

        destroyed = destroy_plan(plan, provider, state)

        skipped = {"dev/ecr-repo", "dev/log-group"}
        assert destroyed == [node_id for node_id in plan.teardown_order if node_id not in skipped]
        assert len(state) == 0

    def test_skip_destroy_resources_left_in_place(self, plan):
        provider = InMemoryProvider()
        state = apply_plan(plan, provider)
        destroy_plan(plan, provider, state)

        remaining = [kind for kind, _ in provider.resources.values()]
        assert remaining == [ResourceKind.LOG_GROUP]

    def test_destroy_only_applied_steps(self, plan):
        half = len(plan) // 2
        provider = InMemoryProvider()
        state = apply_plan(ProvisioningPlan(plan.environment, plan.steps[:half]), provider)

        destroyed = destroy_plan(plan, provider, state)

        assert set(destroyed) <= set(plan.creation_order[:half])
        assert len(state) == 0

    def test_destroy_failure_keeps_remaining_outputs(self, plan):
        provider = InMemoryProvider()
        state = apply_plan(plan, provider)
        provider.fail_kinds.add(ResourceKind.TARGET_GROUP)

        with pytest.raises(ProviderError) as excinfo:
            destroy_plan(plan, provider, state)

        assert excinfo.value.node_id == "dev/tg"
        assert state.is_applied("dev/tg")
        assert state.is_applied("dev/vpc")
        assert not state.is_applied("dev/service")

        provider.fail_kinds.clear()
        destroy_plan(plan, provider, state)
        assert len(state) == 0
