"""
Topology Graph Module

Responsibility:
- Register ResourceNodes for one environment in declaration order
- Derive dependency edges from AttributeReferences (edges are never stored)
- Hold named exports (stack outputs) as references
- Provide composite helpers that register their implicit nodes explicitly

Building a graph never contacts a provider.
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from stackforge.contracts import ResourceKind, check_reference
from stackforge.errors import InvalidTopologyError, SchemaError
from stackforge.models import AttributeReference, Join, ResourceNode, TopologyViolation

logger = logging.getLogger(__name__)


class TopologyGraph:
    """
    Directed acyclic graph of resources for one environment.

    When `namespace` is set, every local id passed to add_node/get is
    registered as "<namespace>/<local id>", which keeps node ids disjoint
    across environments. Reference targets given by local id are qualified
    the same way, so forward references may use local ids too.
    """

    def __init__(self, environment: str, namespace: Optional[str] = None):
        self.environment = environment
        self.namespace = namespace
        self._nodes: Dict[str, ResourceNode] = {}
        self._exports: Dict[str, AttributeReference] = {}

    def qualify(self, local_id: str) -> str:
        """Return the graph-wide id for a local id."""
        if self.namespace and not local_id.startswith(f"{self.namespace}/"):
            return f"{self.namespace}/{local_id}"
        return local_id

    def add_node(self, node_id: str, kind, **inputs: Any) -> ResourceNode:
        """
        Build, validate and register a node, returning its handle.

        References to nodes that are already registered are checked against
        the target kind's outputs right away; forward references are checked
        by the resolver.
        """
        inputs = {name: self._qualify_references(value) for name, value in inputs.items()}
        node = ResourceNode(id=self.qualify(node_id), kind=kind, inputs=inputs)
        return self.register(node)

    def _qualify_references(self, value: Any) -> Any:
        """
        Qualify reference targets given by local id.

        Targets that already contain a '/' are left alone, so a reference into
        another environment stays visible to the independence check.
        """
        if isinstance(value, AttributeReference):
            if self.namespace and "/" not in value.target_node_id:
                return AttributeReference(self.qualify(value.target_node_id), value.attribute_name)
            return value
        if isinstance(value, Join):
            return Join(*(self._qualify_references(part) for part in value.parts), separator=value.separator)
        if isinstance(value, Mapping):
            return {key: self._qualify_references(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._qualify_references(item) for item in value)
        return value

    def register(self, node: ResourceNode) -> ResourceNode:
        if node.id in self._nodes:
            raise InvalidTopologyError([TopologyViolation(
                node_id=node.id,
                kind=str(node.kind),
                rule="unique_id",
                reason=f"Node id '{node.id}' is already registered in '{self.environment}'",
            )])

        for reference in node.references():
            target = self._nodes.get(reference.target_node_id)
            if target is not None:
                try:
                    check_reference(reference, target.kind)
                except SchemaError as exc:
                    raise SchemaError(str(exc.args[0]), node_id=node.id, kind=str(node.kind)) from None

        self._nodes[node.id] = node
        logger.debug("Registered %s (%s) in %s", node.id, node.kind.value, self.environment)
        return node

    def add_public_subnet(self, subnet_id: str, route_table: ResourceNode, **inputs: Any) -> Tuple[ResourceNode, ResourceNode]:
        """
        Register a subnet and its route table association.

        Returns (subnet, association); both are ordinary registered nodes.
        """
        inputs.setdefault("map_public_ip_on_launch", True)
        subnet = self.add_node(subnet_id, ResourceKind.SUBNET, **inputs)
        association = self.add_node(
            f"{subnet_id}-rta",
            ResourceKind.ROUTE_TABLE_ASSOCIATION,
            subnet_id=subnet["id"],
            route_table_id=route_table["id"],
        )
        return subnet, association

    def export(self, name: str, reference: AttributeReference) -> AttributeReference:
        """Register a named stack output."""
        reference = self._qualify_references(reference)
        if name in self._exports:
            raise InvalidTopologyError([TopologyViolation(
                node_id=reference.target_node_id,
                kind="export",
                rule="unique_export",
                reason=f"Export '{name}' is already defined",
            )])
        self._exports[name] = reference
        return reference

    @property
    def exports(self) -> Dict[str, AttributeReference]:
        return dict(self._exports)

    @property
    def nodes(self) -> List[ResourceNode]:
        """Nodes in declaration order."""
        return list(self._nodes.values())

    def get(self, node_id: str) -> ResourceNode:
        try:
            return self._nodes[self.qualify(node_id)]
        except KeyError:
            raise KeyError(f"No node '{node_id}' in environment '{self.environment}'") from None

    def dependencies_of(self, node_id: str) -> List[str]:
        """Ids the node references, in first-occurrence order."""
        return self.get(node_id).dependency_ids()

    def dependents_of(self, node_id: str) -> List[str]:
        node_id = self.qualify(node_id)
        return [node.id for node in self._nodes.values() if node_id in node.dependency_ids()]

    def edges(self) -> List[Tuple[str, str]]:
        """(target, dependent) pairs: target must be created first."""
        return [
            (target_id, node.id)
            for node in self._nodes.values()
            for target_id in node.dependency_ids()
        ]

    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return self.qualify(node_id) in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"TopologyGraph(environment={self.environment!r}, nodes={len(self)})"
