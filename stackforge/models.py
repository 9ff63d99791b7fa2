"""
Core Domain Models Module

Responsibility:
- AttributeReference: deferred handle to an output attribute of another node
- Join: deferred string assembled from literals and references
- ResourceNode: a typed, named, immutable infrastructure object
- TopologyViolation: a structural constraint failure found by the validator
- PlanStep / ProvisioningPlan: the ordered output of the dependency resolver
- ApplyState: write-once record of the outputs each applied node returned

Graph-level behaviour (registration, edges) lives in graph.py; kind contracts
live in contracts.py.
"""

import copy
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from stackforge.errors import SchemaError, UnresolvedReferenceError


@dataclass(frozen=True)
class AttributeReference:
    """
    Handle to an output attribute of another node in the same graph.

    Declaring a reference does not resolve it; it only records which node must
    be applied first. The value is looked up from an ApplyState at apply time.
    """
    target_node_id: str
    attribute_name: str

    def resolve(self, state: "ApplyState") -> Any:
        outputs = state.outputs_for(self.target_node_id)
        if self.attribute_name not in outputs:
            raise UnresolvedReferenceError(
                f"Node '{self.target_node_id}' was applied without output '{self.attribute_name}'",
                node_id=self.target_node_id,
            )
        return outputs[self.attribute_name]

    def __str__(self) -> str:
        return f"${{{self.target_node_id}.{self.attribute_name}}}"


@dataclass(frozen=True)
class Join:
    """A string built from literal parts and references once they resolve."""
    parts: Tuple[Any, ...]
    separator: str = ""

    def __init__(self, *parts, separator: str = ""):
        object.__setattr__(self, "parts", tuple(parts))
        object.__setattr__(self, "separator", separator)

    def resolve(self, state: "ApplyState") -> str:
        return self.separator.join(str(resolve_value(part, state)) for part in self.parts)


def iter_references(value: Any) -> Iterator[AttributeReference]:
    """Yield every AttributeReference nested anywhere inside an input value."""
    if isinstance(value, AttributeReference):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from iter_references(part)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def resolve_value(value: Any, state: "ApplyState") -> Any:
    """Return a copy of an input value with every reference replaced by its output."""
    if isinstance(value, (AttributeReference, Join)):
        return value.resolve(state)
    if isinstance(value, Mapping):
        return {key: resolve_value(item, state) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, state) for item in value]
    return value


@dataclass(frozen=True, eq=False)
class ResourceNode:
    """
    A single resource declaration.

    Inputs are validated against the kind's contract on construction and
    frozen afterwards. Outputs are not stored on the node: they are recorded
    in an ApplyState, so one graph can be applied, resumed or torn down
    without mutating it.
    """
    id: str
    kind: Any
    inputs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        from stackforge.contracts import ResourceKind, check_inputs

        if not self.id or not isinstance(self.id, str):
            raise SchemaError(f"Node id must be a non-empty string, got {self.id!r}")
        try:
            kind = ResourceKind(self.kind)
        except ValueError:
            raise SchemaError(f"Unknown resource kind: {self.kind!r}", node_id=self.id) from None

        inputs = copy.deepcopy(dict(self.inputs))
        check_inputs(self.id, kind, inputs)

        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "inputs", MappingProxyType(inputs))

    def ref(self, attribute_name: str) -> AttributeReference:
        """Reference one of this node's outputs, checked against its kind."""
        from stackforge.contracts import check_reference

        reference = AttributeReference(self.id, attribute_name)
        check_reference(reference, self.kind)
        return reference

    def __getitem__(self, attribute_name: str) -> AttributeReference:
        return self.ref(attribute_name)

    def references(self) -> List[AttributeReference]:
        """All references in input declaration order."""
        found = []
        for value in self.inputs.values():
            found.extend(iter_references(value))
        return found

    def dependency_ids(self) -> List[str]:
        """Ids of the nodes this node references, first occurrence order."""
        seen: Dict[str, None] = {}
        for reference in self.references():
            seen.setdefault(reference.target_node_id, None)
        return list(seen)

    def __repr__(self) -> str:
        return f"ResourceNode(id={self.id!r}, kind={self.kind.value!r})"


@dataclass
class TopologyViolation:
    """
    A structural constraint failure.

    Collected by the validator; raised together in one InvalidTopologyError.
    """
    node_id: str
    kind: str
    rule: str  # Short rule identifier like "listener_target_group"
    reason: str  # Human-readable explanation


@dataclass(frozen=True)
class PlanStep:
    """One resource creation operation, inputs still carrying their references."""
    node_id: str
    kind: Any
    inputs: Mapping[str, Any]
    depends_on: Tuple[str, ...] = ()

    def resolved_inputs(self, state: "ApplyState") -> Dict[str, Any]:
        return {name: resolve_value(value, state) for name, value in self.inputs.items()}


@dataclass(frozen=True)
class ProvisioningPlan:
    """
    Ordered creation steps for one environment.

    The teardown order is the creation order reversed, computed once here so
    callers never re-resolve to destroy.
    """
    environment: str
    steps: Tuple[PlanStep, ...]
    _teardown: Tuple[PlanStep, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "_teardown", tuple(reversed(self.steps)))

    @property
    def creation_order(self) -> List[str]:
        return [step.node_id for step in self.steps]

    @property
    def teardown_order(self) -> List[str]:
        return [step.node_id for step in self._teardown]

    @property
    def teardown_steps(self) -> Tuple[PlanStep, ...]:
        return self._teardown

    def step(self, node_id: str) -> PlanStep:
        for step in self.steps:
            if step.node_id == node_id:
                return step
        raise KeyError(node_id)

    def pending(self, state: Optional["ApplyState"]) -> List[PlanStep]:
        """Steps whose outputs are still missing, in plan order."""
        if state is None:
            return list(self.steps)
        return [step for step in self.steps if not state.is_applied(step.node_id)]

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)


class ApplyState:
    """
    Outputs recorded per node id after a successful apply.

    Each node's outputs are written exactly once. The executor may record from
    several worker threads, so writes are guarded by a lock.
    """

    def __init__(self, outputs: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._outputs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        for node_id, values in (outputs or {}).items():
            self.record(node_id, values)

    def record(self, node_id: str, outputs: Mapping[str, Any]) -> None:
        with self._lock:
            if node_id in self._outputs:
                raise UnresolvedReferenceError(
                    f"Outputs for '{node_id}' were already recorded", node_id=node_id
                )
            self._outputs[node_id] = dict(outputs)

    def forget(self, node_id: str) -> None:
        with self._lock:
            self._outputs.pop(node_id, None)

    def is_applied(self, node_id: str) -> bool:
        return node_id in self._outputs

    def outputs_for(self, node_id: str) -> Dict[str, Any]:
        try:
            return dict(self._outputs[node_id])
        except KeyError:
            raise UnresolvedReferenceError(
                f"Reference to '{node_id}' read before it was applied", node_id=node_id
            ) from None

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {node_id: dict(values) for node_id, values in self._outputs.items()}

    def __contains__(self, node_id: str) -> bool:
        return self.is_applied(node_id)

    def __len__(self) -> int:
        return len(self._outputs)
