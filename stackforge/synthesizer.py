"""
Synthesizer Module

Responsibility:
- Orchestrate: environment descriptors -> graphs -> provisioning plans
- Abort on the first static failure, before any provider call

Flow:
descriptors -> build_environments -> resolve (per environment) -> plans
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Union

from stackforge.config import EnvironmentDescriptor, load_environments
from stackforge.dependency_resolver import resolve
from stackforge.graph import TopologyGraph
from stackforge.models import ProvisioningPlan
from stackforge.parameterizer import TopologyTemplate, build_environments
from stackforge.topology import build_topology

logger = logging.getLogger(__name__)


class Synthesis:
    """Graphs and plans for a set of environments, keyed by environment name."""

    def __init__(self, graphs: Dict[str, TopologyGraph], plans: Dict[str, ProvisioningPlan]):
        self.graphs = graphs
        self.plans = plans

    @property
    def environments(self):
        return list(self.plans)

    def __getitem__(self, environment: str) -> ProvisioningPlan:
        return self.plans[environment]


def synthesize(
    descriptors: Iterable[EnvironmentDescriptor],
    template: TopologyTemplate = build_topology,
    require_disjoint_cidrs: bool = False,
) -> Synthesis:
    """Build and resolve every environment; any TopologyError aborts the whole run."""
    graphs = build_environments(descriptors, template=template, require_disjoint_cidrs=require_disjoint_cidrs)

    plans = {}
    for name, graph in graphs.items():
        plans[name] = resolve(graph)
        logger.info("Synthesized %s: %d steps", name, len(plans[name]))

    return Synthesis(graphs, plans)


def load_and_synthesize(path: Union[str, Path], require_disjoint_cidrs: bool = False) -> Synthesis:
    """Load descriptors from a YAML file and synthesize them."""
    return synthesize(load_environments(path), require_disjoint_cidrs=require_disjoint_cidrs)
