"""
Environment Parameterizer Module

Responsibility:
- Instantiate one independent TopologyGraph per EnvironmentDescriptor from a
  single topology template
- Namespace node ids by environment so id sets never intersect
- Verify no reference crosses environments
- Optionally require CIDR blocks to be disjoint across environments
"""

import logging
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List

from stackforge.config import EnvironmentDescriptor
from stackforge.errors import InvalidTopologyError
from stackforge.graph import TopologyGraph
from stackforge.models import TopologyViolation
from stackforge.topology import build_topology

logger = logging.getLogger(__name__)

TopologyTemplate = Callable[..., TopologyGraph]


def build_environments(
    descriptors: Iterable[EnvironmentDescriptor],
    template: TopologyTemplate = build_topology,
    require_disjoint_cidrs: bool = False,
) -> Dict[str, TopologyGraph]:
    """
    Build one graph per environment.

    Args:
        descriptors: Environment descriptors sharing one topology template
        template: Callable(descriptor, namespace=...) -> TopologyGraph
        require_disjoint_cidrs: Reject overlapping CIDR blocks across the
            given environments (off by default)

    Returns:
        Environment name -> TopologyGraph, in descriptor order
    """
    descriptors = list(descriptors)
    _check_unique_names(descriptors)
    if require_disjoint_cidrs:
        _check_disjoint_cidrs(descriptors)

    graphs: Dict[str, TopologyGraph] = OrderedDict()
    for descriptor in descriptors:
        graph = template(descriptor, namespace=descriptor.name)
        if graph.environment != descriptor.name:
            raise InvalidTopologyError([TopologyViolation(
                node_id=descriptor.name,
                kind="environment",
                rule="environment_name",
                reason=f"Template returned a graph for '{graph.environment}'",
            )])
        graphs[descriptor.name] = graph
        logger.info("Built %s graph with %d nodes", descriptor.name, len(graph))

    check_independence(graphs.values())
    return graphs


def check_independence(graphs: Iterable[TopologyGraph]) -> None:
    """Raise InvalidTopologyError if graphs share node ids or cross-reference."""
    owner: Dict[str, str] = {}
    violations: List[TopologyViolation] = []
    graphs = list(graphs)

    for graph in graphs:
        for node in graph.nodes:
            if node.id in owner:
                violations.append(TopologyViolation(
                    node_id=node.id,
                    kind=str(node.kind),
                    rule="shared_node",
                    reason=f"Node id is used by both '{owner[node.id]}' and '{graph.environment}'",
                ))
            owner.setdefault(node.id, graph.environment)

    for graph in graphs:
        for node in graph.nodes:
            for target_id in node.dependency_ids():
                if target_id in graph:
                    continue
                other = owner.get(target_id)
                if other is not None and other != graph.environment:
                    violations.append(TopologyViolation(
                        node_id=node.id,
                        kind=str(node.kind),
                        rule="cross_environment_reference",
                        reason=f"References '{target_id}' from environment '{other}'",
                    ))

    if violations:
        raise InvalidTopologyError(violations)


def _check_unique_names(descriptors: List[EnvironmentDescriptor]) -> None:
    seen = set()
    for descriptor in descriptors:
        if descriptor.name in seen:
            raise InvalidTopologyError([TopologyViolation(
                node_id=descriptor.name,
                kind="environment",
                rule="unique_environment",
                reason=f"Environment '{descriptor.name}' is declared more than once",
            )])
        seen.add(descriptor.name)


def _check_disjoint_cidrs(descriptors: List[EnvironmentDescriptor]) -> None:
    violations = []
    for index, first in enumerate(descriptors):
        for second in descriptors[index + 1:]:
            if first.network.overlaps(second.network):
                violations.append(TopologyViolation(
                    node_id=second.name,
                    kind="environment",
                    rule="disjoint_cidr",
                    reason=f"CIDR {second.cidr_block} overlaps {first.cidr_block} of '{first.name}'",
                ))
    if violations:
        raise InvalidTopologyError(violations)
