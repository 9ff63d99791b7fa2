"""
Error Taxonomy Module

Responsibility:
- Define every exception raised by stackforge
- Separate static topology failures (detected from graph shape alone) from
  execution failures reported by a provider adapter
- Tag every error with the originating node id and kind where one exists

Static failures derive from TopologyError; callers can tell a configuration
defect from an environmental failure by catching TopologyError vs ProviderError.
"""

from typing import Any, List, Optional


class StackforgeError(Exception):
    """Base class for all stackforge errors."""

    def __init__(self, message: str, node_id: Optional[str] = None, kind: Optional[str] = None):
        self.node_id = node_id
        self.kind = kind
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.node_id is None:
            return message
        kind = f" ({self.kind})" if self.kind else ""
        return f"[{self.node_id}{kind}] {message}"


class ConfigError(StackforgeError):
    """Environment configuration could not be loaded or validated."""


class TopologyError(StackforgeError):
    """Base class for failures detected from the graph shape alone."""


class SchemaError(TopologyError):
    """A node input does not match its kind's contract."""


class NamingError(TopologyError):
    """A physical name cannot be fitted into its platform length limit."""


class CyclicDependencyError(TopologyError):
    """The graph contains a dependency cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}")


class InvalidTopologyError(TopologyError):
    """One or more cross-node structural constraints are violated."""

    def __init__(self, violations):
        self.violations = list(violations)
        first = self.violations[0] if self.violations else None
        lines = [f"{v.node_id} ({v.kind}): {v.reason}" for v in self.violations]
        super().__init__(
            "Invalid topology:\n  " + "\n  ".join(lines),
            node_id=first.node_id if first else None,
            kind=first.kind if first else None,
        )

    def __str__(self) -> str:
        # node id is already part of every violation line
        return Exception.__str__(self)


class UnresolvedReferenceError(StackforgeError):
    """
    A reference was read before its target was applied.

    This is an internal invariant check: a correct resolver never schedules a
    node before its dependencies, so seeing this error points at a bug.
    """


class ProviderError(StackforgeError):
    """An apply or destroy call against the provider failed."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        kind: Optional[str] = None,
        inputs: Optional[dict] = None,
        cause: Optional[BaseException] = None,
    ):
        self.inputs: dict[str, Any] = dict(inputs or {})
        self.cause = cause
        super().__init__(message, node_id=node_id, kind=kind)
