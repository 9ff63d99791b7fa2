"""Tests for building independent graphs per environment."""

import pytest

from stackforge.config import EnvironmentDescriptor
from stackforge.contracts import ResourceKind
from stackforge.dependency_resolver import resolve
from stackforge.errors import InvalidTopologyError
from stackforge.graph import TopologyGraph
from stackforge.models import AttributeReference
from stackforge.parameterizer import build_environments, check_independence


def test_one_graph_per_environment(dev, prod):
    graphs = build_environments([dev, prod])
    assert list(graphs) == ["dev", "prod"]
    assert graphs["dev"].environment == "dev"
    assert graphs["prod"].environment == "prod"


def test_dev_and_prod_plans_are_independent(dev, prod):
    graphs = build_environments([dev, prod])
    dev_plan = resolve(graphs["dev"])
    prod_plan = resolve(graphs["prod"])

    dev_ids = set(dev_plan.creation_order)
    prod_ids = set(prod_plan.creation_order)
    assert dev_ids.isdisjoint(prod_ids)

    for plan, own_ids in ((dev_plan, dev_ids), (prod_plan, prod_ids)):
        for step in plan.steps:
            assert set(step.depends_on) <= own_ids

    dev_nodes = {id(node) for node in graphs["dev"].nodes}
    prod_nodes = {id(node) for node in graphs["prod"].nodes}
    assert dev_nodes.isdisjoint(prod_nodes)


def test_duplicate_environment_names(dev):
    with pytest.raises(InvalidTopologyError) as excinfo:
        build_environments([dev, dev])
    assert excinfo.value.violations[0].rule == "unique_environment"


def test_overlapping_cidrs_allowed_by_default(dev):
    other = EnvironmentDescriptor(name="qa", cidr_block="10.0.0.0/16")
    graphs = build_environments([dev, other])
    assert set(graphs) == {"dev", "qa"}


def test_overlapping_cidrs_rejected_when_required(dev):
    other = EnvironmentDescriptor(name="qa", cidr_block="10.0.128.0/17")
    with pytest.raises(InvalidTopologyError) as excinfo:
        build_environments([dev, other], require_disjoint_cidrs=True)
    violation = excinfo.value.violations[0]
    assert violation.rule == "disjoint_cidr"
    assert violation.node_id == "qa"


def test_disjoint_cidrs_pass_when_required(dev, prod):
    graphs = build_environments([dev, prod], require_disjoint_cidrs=True)
    assert len(graphs) == 2


def test_custom_template(dev, prod):
    def vpc_only(descriptor, namespace=None):
        graph = TopologyGraph(descriptor.name, namespace=namespace)
        graph.add_node("vpc", ResourceKind.VPC, cidr_block=descriptor.cidr_block)
        return graph

    graphs = build_environments([dev, prod], template=vpc_only)
    assert graphs["dev"].node_ids() == ["dev/vpc"]
    assert graphs["prod"].node_ids() == ["prod/vpc"]


def test_template_must_build_requested_environment(dev):
    def wrong(descriptor, namespace=None):
        return TopologyGraph("somewhere-else")

    with pytest.raises(InvalidTopologyError, match="somewhere-else"):
        build_environments([dev], template=wrong)


def test_cross_environment_reference_detected():
    dev_graph = TopologyGraph("dev", namespace="dev")
    dev_graph.add_node("vpc", ResourceKind.VPC, cidr_block="10.0.0.0/16")
    prod_graph = TopologyGraph("prod", namespace="prod")
    prod_graph.add_node("igw", ResourceKind.INTERNET_GATEWAY, vpc_id=AttributeReference("dev/vpc", "id"))

    with pytest.raises(InvalidTopologyError) as excinfo:
        check_independence([dev_graph, prod_graph])
    violation = excinfo.value.violations[0]
    assert violation.rule == "cross_environment_reference"
    assert violation.node_id == "prod/igw"


def test_shared_node_id_detected():
    first = TopologyGraph("dev")
    first.add_node("vpc", ResourceKind.VPC, cidr_block="10.0.0.0/16")
    second = TopologyGraph("prod")
    second.add_node("vpc", ResourceKind.VPC, cidr_block="10.1.0.0/16")

    with pytest.raises(InvalidTopologyError) as excinfo:
        check_independence([first, second])
    assert excinfo.value.violations[0].rule == "shared_node"
