"""
Dependency Resolver Module

Responsibility:
- Check every AttributeReference: target exists, attribute is in its outputs
- Derive the edge set (target -> dependent) from references
- Detect dependency cycles and name their members
- Produce a stable topological order, ties broken by declaration order
- Run the structural validator over the ordered plan

This is PURE deterministic logic. Resolving the same graph always returns the
same plan, and nothing here calls a provider, so every failure is reported
before any real resource is touched.
"""

import heapq
import logging
from typing import Dict, List

from stackforge.contracts import check_reference
from stackforge.errors import CyclicDependencyError, InvalidTopologyError, SchemaError
from stackforge.graph import TopologyGraph
from stackforge.models import PlanStep, ProvisioningPlan, TopologyViolation
from stackforge.validator import validate_plan

logger = logging.getLogger(__name__)


def resolve(graph: TopologyGraph, validate: bool = True) -> ProvisioningPlan:
    """
    Resolve a topology graph into a provisioning plan.

    Args:
        graph: Graph for one environment
        validate: Run the structural validator (on by default)

    Returns:
        ProvisioningPlan whose steps list every node after all nodes it
        references

    Raises:
        SchemaError: a reference names an attribute its target does not output
        InvalidTopologyError: dangling references or structural violations
        CyclicDependencyError: the graph has a cycle
    """
    nodes = graph.nodes
    by_id = {node.id: node for node in nodes}

    # Step 1: Reference checks
    _check_references(graph, by_id)

    # Step 2: Edges
    dependencies: Dict[str, List[str]] = {node.id: node.dependency_ids() for node in nodes}
    dependents: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for node_id, targets in dependencies.items():
        for target_id in targets:
            dependents[target_id].append(node_id)

    # Step 3: Stable topological order
    order = _stable_topological_order(nodes, dependencies, dependents)
    if len(order) < len(nodes):
        placed = set(order)
        remaining = [node.id for node in nodes if node.id not in placed]
        raise CyclicDependencyError(_find_cycle(remaining, dependencies))

    steps = [
        PlanStep(
            node_id=node_id,
            kind=by_id[node_id].kind,
            inputs=by_id[node_id].inputs,
            depends_on=tuple(dependencies[node_id]),
        )
        for node_id in order
    ]
    plan = ProvisioningPlan(environment=graph.environment, steps=tuple(steps))

    # Step 4: Structural validation
    if validate:
        violations = validate_plan(plan, graph)
        if violations:
            raise InvalidTopologyError(violations)

    logger.debug("Resolved %s: %s", graph.environment, ", ".join(plan.creation_order))
    return plan


def _check_references(graph: TopologyGraph, by_id: Dict) -> None:
    dangling = []
    for node in graph.nodes:
        for reference in node.references():
            target = by_id.get(reference.target_node_id)
            if target is None:
                dangling.append(TopologyViolation(
                    node_id=node.id,
                    kind=str(node.kind),
                    rule="dangling_reference",
                    reason=f"References unknown node '{reference.target_node_id}'",
                ))
                continue
            try:
                check_reference(reference, target.kind)
            except SchemaError as exc:
                raise SchemaError(str(exc.args[0]), node_id=node.id, kind=str(node.kind)) from None

    if dangling:
        raise InvalidTopologyError(dangling)


def _stable_topological_order(nodes, dependencies: Dict[str, List[str]], dependents: Dict[str, List[str]]) -> List[str]:
    """Kahn's algorithm; among ready nodes the earliest declared goes first."""
    position = {node.id: index for index, node in enumerate(nodes)}
    remaining = {node_id: len(targets) for node_id, targets in dependencies.items()}

    ready = [position[node_id] for node_id, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    order = []
    while ready:
        node_id = nodes[heapq.heappop(ready)].id
        order.append(node_id)
        for dependent_id in dependents[node_id]:
            remaining[dependent_id] -= 1
            if remaining[dependent_id] == 0:
                heapq.heappush(ready, position[dependent_id])

    return order


def _find_cycle(remaining: List[str], dependencies: Dict[str, List[str]]) -> List[str]:
    """
    Walk dependencies among unplaced nodes until one repeats.

    Every unplaced node still waits on another unplaced node, so the walk
    always ends on a cycle. The result starts at its earliest declared member.
    """
    unplaced = set(remaining)
    path: List[str] = []
    seen: Dict[str, int] = {}

    current = remaining[0]
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = next(target for target in dependencies[current] if target in unplaced)

    cycle = path[seen[current]:]
    order = {node_id: index for index, node_id in enumerate(remaining)}
    start = min(range(len(cycle)), key=lambda i: order[cycle[i]])
    return cycle[start:] + cycle[:start]
