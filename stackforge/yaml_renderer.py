"""
Outputs YAML Renderer Module

Responsibility:
- Render the result of applying a plan: the graph's named exports and the
  outputs each applied resource returned
- Keep declaration order and plain YAML types so the document diffs cleanly

This is PURE rendering logic over an ApplyState; it never resolves a plan.
"""

from typing import Any, Dict, Optional

import yaml

from stackforge.graph import TopologyGraph
from stackforge.models import ApplyState, ProvisioningPlan


def render_outputs(graph: TopologyGraph, state: ApplyState, plan: Optional[ProvisioningPlan] = None) -> str:
    """
    Render applied outputs for one environment as YAML.

    Args:
        graph: Graph the state was applied from
        state: Recorded outputs
        plan: When given, resources are listed in creation order instead of
            declaration order

    Returns:
        YAML document with `environment`, `outputs` and `resources`
    """
    document = {
        "environment": graph.environment,
        "outputs": _render_exports(graph, state),
        "resources": _render_resources(graph, state, plan),
    }

    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, allow_unicode=True)


def _render_exports(graph: TopologyGraph, state: ApplyState) -> Dict[str, Any]:
    exports = {}

    for name, reference in graph.exports.items():
        # Unapplied targets render as null so partial runs keep the same keys
        if state.is_applied(reference.target_node_id):
            exports[name] = reference.resolve(state)
        else:
            exports[name] = None

    return exports


def _render_resources(graph: TopologyGraph, state: ApplyState, plan: Optional[ProvisioningPlan]) -> list:
    if plan is not None:
        entries = [(step.node_id, step.kind) for step in plan.steps]
    else:
        entries = [(node.id, node.kind) for node in graph.nodes]

    resources = []
    for node_id, kind in entries:
        if not state.is_applied(node_id):
            continue
        resources.append({
            "id": node_id,
            "kind": kind.value,
            "outputs": _plain(state.outputs_for(node_id)),
        })

    return resources


def _plain(value: Any) -> Any:
    """Convert tuples and mapping proxies into types safe_dump accepts."""
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value
