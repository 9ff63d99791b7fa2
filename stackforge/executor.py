"""
Plan Executor Module

Responsibility:
- Apply a ProvisioningPlan through a ProviderAdapter, resolving references
  from recorded outputs just before each call
- Run independent branches concurrently when asked to, never issuing a
  dependent before its dependencies have outputs
- Resume: skip steps whose outputs are already recorded
- Tear down in reverse creation order, leaving data sources and
  skip-destroy resources in place
- Tag every provider failure with the step's node id, kind and inputs
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional

from stackforge.contracts import get_kind_contract, is_data_source, output_names
from stackforge.errors import ProviderError, UnresolvedReferenceError
from stackforge.graph import TopologyGraph
from stackforge.models import ApplyState, PlanStep, ProvisioningPlan
from stackforge.provider import ProviderAdapter

logger = logging.getLogger(__name__)


def apply_plan(
    plan: ProvisioningPlan,
    provider: ProviderAdapter,
    state: Optional[ApplyState] = None,
    max_workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> ApplyState:
    """
    Apply every step of the plan whose outputs are still missing.

    Args:
        plan: Resolved plan for one environment
        provider: Adapter executing the calls
        state: Outputs from an earlier (partial) run; a fresh state if None
        max_workers: Greater than 1 applies independent steps concurrently
        cancel: When set, no further steps are started; applied steps keep
            their outputs and a later call resumes from there

    Returns:
        The state with outputs for every applied step

    Raises:
        ProviderError: first failing step; steps already running finish and
            keep their outputs
    """
    state = state if state is not None else ApplyState()
    pending = plan.pending(state)
    logger.info("Applying %d of %d steps for %s", len(pending), len(plan), plan.environment)

    if max_workers <= 1:
        for step in pending:
            if cancel is not None and cancel.is_set():
                logger.warning("Apply of %s cancelled before %s", plan.environment, step.node_id)
                break
            _apply_step(step, provider, state)
        return state

    _apply_concurrently(plan, pending, provider, state, max_workers, cancel)
    return state


def _apply_concurrently(plan, pending: List[PlanStep], provider, state: ApplyState, max_workers: int, cancel) -> None:
    planned = {step.node_id for step in plan.steps}
    remaining = list(pending)
    running = {}
    failure: Optional[ProviderError] = None

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stackforge-apply") as pool:
        while remaining or running:
            stopping = failure is not None or (cancel is not None and cancel.is_set())
            if not stopping:
                ready = [step for step in remaining if all(state.is_applied(dep) for dep in step.depends_on)]
                for step in ready:
                    remaining.remove(step)
                    running[pool.submit(_apply_step, step, provider, state)] = step

            if not running:
                if remaining and not stopping:
                    step = remaining[0]
                    missing = [dep for dep in step.depends_on if dep not in planned and not state.is_applied(dep)]
                    raise UnresolvedReferenceError(
                        f"Step waits on {missing or step.depends_on} which no step provides",
                        node_id=step.node_id,
                        kind=str(step.kind),
                    )
                break

            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                running.pop(future)
                try:
                    future.result()
                except ProviderError as exc:
                    if failure is None:
                        failure = exc

    if failure is not None:
        raise failure
    if remaining:
        logger.warning("Apply of %s cancelled with %d steps left", plan.environment, len(remaining))


def _apply_step(step: PlanStep, provider: ProviderAdapter, state: ApplyState) -> Dict[str, Any]:
    inputs = step.resolved_inputs(state)
    try:
        outputs = provider.apply(step.kind, inputs)
    except Exception as exc:
        logger.error("Apply failed for %s (%s): %s", step.node_id, step.kind, exc)
        raise _step_error("apply", step, inputs, exc) from exc

    missing = [name for name in output_names(step.kind) if name not in (outputs or {})]
    if missing:
        raise ProviderError(
            f"Provider returned no {missing} for {step.kind}",
            node_id=step.node_id,
            kind=str(step.kind),
            inputs=inputs,
        )

    state.record(step.node_id, outputs)
    logger.info("Applied %s (%s)", step.node_id, step.kind)
    return outputs


def destroy_plan(plan: ProvisioningPlan, provider: ProviderAdapter, state: ApplyState) -> List[str]:
    """
    Destroy applied resources in teardown order.

    Data sources and resources marked skip-destroy are forgotten without a
    provider call. On failure the remaining outputs stay in the state, so
    the call can be repeated.

    Returns:
        Node ids destroyed through the provider, in call order
    """
    destroyed = []
    for step in plan.teardown_steps:
        if not state.is_applied(step.node_id):
            continue

        if is_data_source(step.kind):
            state.forget(step.node_id)
            continue

        skip_input = get_kind_contract(step.kind).get("skip_destroy_input")
        if skip_input and step.inputs.get(skip_input) is True:
            logger.warning("Leaving %s (%s) in place: %s is set", step.node_id, step.kind, skip_input)
            state.forget(step.node_id)
            continue

        identity = state.outputs_for(step.node_id)
        try:
            provider.destroy(step.kind, identity)
        except Exception as exc:
            logger.error("Destroy failed for %s (%s): %s", step.node_id, step.kind, exc)
            raise _step_error("destroy", step, identity, exc) from exc

        state.forget(step.node_id)
        destroyed.append(step.node_id)
        logger.info("Destroyed %s (%s)", step.node_id, step.kind)

    return destroyed


def collect_exports(graph: TopologyGraph, state: ApplyState) -> Dict[str, Any]:
    """Resolve the graph's named outputs from an applied state."""
    return {name: reference.resolve(state) for name, reference in graph.exports.items()}


def _step_error(action: str, step: PlanStep, inputs: Dict[str, Any], exc: Exception) -> ProviderError:
    if isinstance(exc, ProviderError):
        message = exc.args[0] if exc.args else f"{action} failed"
        cause = exc.cause or exc
    else:
        message = f"{action} failed: {exc}"
        cause = exc
    return ProviderError(message, node_id=step.node_id, kind=str(step.kind), inputs=inputs, cause=cause)
