"""
stackforge: environment-parameterized infrastructure dependency graphs.

Declare typed resources whose inputs reference other resources' outputs,
build one independent graph per environment from a single topology template,
and resolve each graph into a deterministic provisioning plan.
"""

import logging

from stackforge.config import EnvironmentDescriptor, TopologySettings, load_environments
from stackforge.contracts import ResourceKind
from stackforge.dependency_resolver import resolve
from stackforge.errors import (
    ConfigError,
    CyclicDependencyError,
    InvalidTopologyError,
    NamingError,
    ProviderError,
    SchemaError,
    StackforgeError,
    TopologyError,
    UnresolvedReferenceError,
)
from stackforge.executor import apply_plan, collect_exports, destroy_plan
from stackforge.graph import TopologyGraph
from stackforge.models import ApplyState, AttributeReference, Join, PlanStep, ProvisioningPlan, ResourceNode
from stackforge.parameterizer import build_environments
from stackforge.provider import InMemoryProvider, ProviderAdapter
from stackforge.synthesizer import Synthesis, load_and_synthesize, synthesize
from stackforge.topology import build_topology

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "ApplyState",
    "AttributeReference",
    "ConfigError",
    "CyclicDependencyError",
    "EnvironmentDescriptor",
    "InMemoryProvider",
    "InvalidTopologyError",
    "Join",
    "NamingError",
    "PlanStep",
    "ProviderAdapter",
    "ProviderError",
    "ProvisioningPlan",
    "ResourceKind",
    "ResourceNode",
    "SchemaError",
    "StackforgeError",
    "Synthesis",
    "TopologyError",
    "TopologyGraph",
    "TopologySettings",
    "UnresolvedReferenceError",
    "apply_plan",
    "build_environments",
    "build_topology",
    "collect_exports",
    "destroy_plan",
    "load_and_synthesize",
    "load_environments",
    "resolve",
    "synthesize",
]
