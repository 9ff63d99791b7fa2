"""Tests for the container-service topology template."""

import pytest

from stackforge.config import APP_NAME_MAX_LENGTH, EnvironmentDescriptor
from stackforge.contracts import ResourceKind, get_kind_contract
from stackforge.dependency_resolver import resolve
from stackforge.naming import MAX_ENVIRONMENT_NAME_LENGTH
from stackforge.topology import build_topology, subnet_cidrs


def _shape(graph, namespace):
    """Local ids, kinds and local edges: everything but literal values."""
    prefix = f"{namespace}/" if namespace else ""

    def local(node_id):
        return node_id[len(prefix):] if node_id.startswith(prefix) else node_id

    return [
        (local(node.id), node.kind, tuple(local(dep) for dep in node.dependency_ids()))
        for node in graph.nodes
    ]


def test_builds_full_topology(dev):
    graph = build_topology(dev)

    kinds = [node.kind for node in graph.nodes]
    assert len(graph) == 25
    assert kinds.count(ResourceKind.SUBNET) == 2
    assert kinds.count(ResourceKind.ROUTE_TABLE_ASSOCIATION) == 2
    assert kinds.count(ResourceKind.SECURITY_GROUP_RULE) == 4
    assert kinds.count(ResourceKind.METRIC_ALARM) == 2
    assert set(graph.exports) == {"alb_dns_name", "ecr_repository_url"}


def test_same_descriptor_same_graph(dev):
    first = build_topology(dev)
    second = build_topology(dev)

    assert _shape(first, None) == _shape(second, None)
    assert [dict(node.inputs) for node in first.nodes] == [dict(node.inputs) for node in second.nodes]


def test_environments_share_shape_not_literals(dev, prod):
    dev_graph = build_topology(dev, namespace="dev")
    prod_graph = build_topology(prod, namespace="prod")

    assert _shape(dev_graph, "dev") == _shape(prod_graph, "prod")
    assert dev_graph.get("vpc").inputs["cidr_block"] == "10.0.0.0/16"
    assert prod_graph.get("vpc").inputs["cidr_block"] == "10.1.0.0/16"
    assert prod_graph.get("service").inputs["desired_count"] == 3


def test_subnets_carved_from_environment_block(dev):
    assert subnet_cidrs(dev) == ["10.0.1.0/24", "10.0.2.0/24"]

    graph = build_topology(dev)
    first = graph.get("public-subnet-1")
    assert first.inputs["cidr_block"] == "10.0.1.0/24"
    assert first.inputs["availability_zone"] == "us-east-1a"
    assert graph.get("public-subnet-2").inputs["availability_zone"] == "us-east-1b"


def test_physical_names_include_environment(prod):
    graph = build_topology(prod)
    for node in graph.nodes:
        field = get_kind_contract(node.kind).get("name_field")
        if field and field in node.inputs:
            assert "prod" in node.inputs[field], node.id
    assert graph.get("log-group").inputs["name"] == "/ecs/express-ts-app-prod"


def test_long_app_name_truncated_within_limits():
    descriptor = EnvironmentDescriptor(
        name="staging",
        cidr_block="10.2.0.0/16",
        overrides={"app_name": "my-very-long-application-name"},
    )
    graph = build_topology(descriptor)

    for node_id, limit in (("alb", 32), ("tg", 32), ("task-execution-role", 64)):
        name = graph.get(node_id).inputs["name"]
        assert len(name) <= limit
        assert "staging" in name
    assert graph.get("tg").inputs["name"].endswith("-tg")

    # The truncated names still satisfy the structural validator
    resolve(graph)


@pytest.mark.parametrize("app_name", ["express-ts-app", "a" * APP_NAME_MAX_LENGTH])
def test_longest_environment_name_kept_in_every_name(app_name):
    env = "customer-acme-prod-ea"
    assert len(env) == MAX_ENVIRONMENT_NAME_LENGTH
    descriptor = EnvironmentDescriptor(name=env, cidr_block="10.0.0.0/16", overrides={"app_name": app_name})

    graph = build_topology(descriptor)

    for node in graph.nodes:
        contract = get_kind_contract(node.kind)
        field = contract.get("name_field")
        if field and field in node.inputs:
            name = node.inputs[field]
            assert env in name, node.id
            assert len(name) <= contract["name_limit"], node.id
    resolve(graph)


def test_log_group_prefix_counts_toward_limit():
    descriptor = EnvironmentDescriptor(
        name="dev", cidr_block="10.0.0.0/16", overrides={"app_name": "a" * APP_NAME_MAX_LENGTH},
    )
    name = build_topology(descriptor).get("log-group").inputs["name"]

    assert name == f"/ecs/{'a' * APP_NAME_MAX_LENGTH}-dev"
    assert len(name) <= get_kind_contract(ResourceKind.LOG_GROUP)["name_limit"]


def test_region_comes_from_descriptor_only(monkeypatch, dev):
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    graph = build_topology(dev)
    assert graph.get("public-subnet-1").inputs["availability_zone"] == "us-east-1a"


def test_container_image_joins_repository_and_tag(dev):
    graph = build_topology(dev)
    container = graph.get("task-def").inputs["container_definitions"][0]
    image = container["image"]
    assert [getattr(part, "target_node_id", part) for part in image.parts] == ["ecr-repo", "latest"]
    assert image.separator == ":"
