"""Shared fixtures for stackforge tests."""

import pytest

from stackforge.config import EnvironmentDescriptor
from stackforge.contracts import ResourceKind
from stackforge.graph import TopologyGraph


@pytest.fixture
def dev():
    return EnvironmentDescriptor(name="dev", region="us-east-1", cidr_block="10.0.0.0/16")


@pytest.fixture
def prod():
    return EnvironmentDescriptor(
        name="prod",
        region="us-west-2",
        cidr_block="10.1.0.0/16",
        overrides={"desired_count": 3, "cpu": 512, "memory": 1024},
    )


@pytest.fixture
def network_graph():
    """A small valid graph: VPC, two subnets, a security group, ALB and target group."""
    graph = TopologyGraph("test")
    vpc = graph.add_node("vpc", ResourceKind.VPC, cidr_block="10.0.0.0/16")
    subnet_a = graph.add_node(
        "subnet-a", ResourceKind.SUBNET,
        vpc_id=vpc["id"], cidr_block="10.0.1.0/24", availability_zone="us-east-1a",
    )
    subnet_b = graph.add_node(
        "subnet-b", ResourceKind.SUBNET,
        vpc_id=vpc["id"], cidr_block="10.0.2.0/24", availability_zone="us-east-1b",
    )
    sg = graph.add_node("alb-sg", ResourceKind.SECURITY_GROUP, vpc_id=vpc["id"])
    graph.add_node(
        "alb", ResourceKind.LOAD_BALANCER,
        name="test-alb", security_groups=[sg["id"]], subnets=[subnet_a["id"], subnet_b["id"]],
    )
    graph.add_node(
        "tg", ResourceKind.TARGET_GROUP,
        name="test-tg", port=80, protocol="HTTP", vpc_id=vpc["id"],
    )
    return graph
