"""
Resource Kind Contracts Module

Responsibility:
- Enumerate the resource kinds a topology can declare
- Define, per kind, the valid input names, their literal types, which inputs
  are required, and the output attributes a provider returns after apply
- Carry platform limits the validator enforces (physical name length)
- Check a node's literal inputs against its kind's contract

Contracts define WHAT a node of a kind may contain, not whether the values are
available in a real account. A CIDR is checked for shape only.
"""

import ipaddress
from enum import Enum
from typing import Any, Mapping

from stackforge.errors import SchemaError
from stackforge.models import AttributeReference, Join


class ResourceKind(str, Enum):
    """Supported resource kinds, named after their Terraform resource types."""

    VPC = "aws_vpc"
    INTERNET_GATEWAY = "aws_internet_gateway"
    SUBNET = "aws_subnet"
    ROUTE_TABLE = "aws_route_table"
    ROUTE_TABLE_ASSOCIATION = "aws_route_table_association"
    SECURITY_GROUP = "aws_security_group"
    SECURITY_GROUP_RULE = "aws_security_group_rule"
    ECR_REPOSITORY = "data.aws_ecr_repository"
    ECS_CLUSTER = "aws_ecs_cluster"
    LOG_GROUP = "aws_cloudwatch_log_group"
    IAM_ROLE = "aws_iam_role"
    IAM_ROLE_POLICY_ATTACHMENT = "aws_iam_role_policy_attachment"
    LOAD_BALANCER = "aws_lb"
    TARGET_GROUP = "aws_lb_target_group"
    LISTENER = "aws_lb_listener"
    LISTENER_RULE = "aws_lb_listener_rule"
    ECS_TASK_DEFINITION = "aws_ecs_task_definition"
    ECS_SERVICE = "aws_ecs_service"
    METRIC_ALARM = "aws_cloudwatch_metric_alarm"

    def __str__(self) -> str:
        return self.value


def _req(type_name: str, **extra) -> dict:
    return {"type": type_name, "required": True, **extra}


def _opt(type_name: str, **extra) -> dict:
    return {"type": type_name, "required": False, **extra}


TAGS = _opt("object")

KIND_CONTRACTS = {
    ResourceKind.VPC: {
        "inputs": {
            "cidr_block": _req("cidr"),
            "enable_dns_support": _opt("boolean"),
            "enable_dns_hostnames": _opt("boolean"),
            "tags": TAGS,
        },
        "outputs": ["id", "arn", "cidr_block", "default_security_group_id"],
    },
    ResourceKind.INTERNET_GATEWAY: {
        "inputs": {"vpc_id": _req("string"), "tags": TAGS},
        "outputs": ["id", "arn"],
    },
    ResourceKind.SUBNET: {
        "inputs": {
            "vpc_id": _req("string"),
            "cidr_block": _req("cidr"),
            "availability_zone": _req("string"),
            "map_public_ip_on_launch": _opt("boolean"),
            "tags": TAGS,
        },
        "outputs": ["id", "arn", "availability_zone"],
    },
    ResourceKind.ROUTE_TABLE: {
        "inputs": {"vpc_id": _req("string"), "routes": _opt("list"), "tags": TAGS},
        "outputs": ["id", "arn"],
    },
    ResourceKind.ROUTE_TABLE_ASSOCIATION: {
        "inputs": {"subnet_id": _req("string"), "route_table_id": _req("string")},
        "outputs": ["id"],
    },
    ResourceKind.SECURITY_GROUP: {
        "inputs": {
            "vpc_id": _req("string"),
            "name": _opt("string"),
            "description": _opt("string"),
            "tags": TAGS,
        },
        "outputs": ["id", "arn", "name"],
        "name_field": "name",
        "name_limit": 255,
    },
    ResourceKind.SECURITY_GROUP_RULE: {
        "inputs": {
            "security_group_id": _req("string"),
            "type": _req("string", choices=["ingress", "egress"]),
            "from_port": _req("port"),
            "to_port": _req("port"),
            "protocol": _req("string"),
            "cidr_blocks": _opt("list"),
            "source_security_group_id": _opt("string"),
            "description": _opt("string"),
        },
        "outputs": ["id"],
    },
    ResourceKind.ECR_REPOSITORY: {
        "inputs": {"name": _req("string")},
        "outputs": ["arn", "registry_id", "repository_url"],
        # Looked up, never created or destroyed
        "data_source": True,
    },
    ResourceKind.ECS_CLUSTER: {
        "inputs": {"name": _req("string"), "container_insights": _opt("boolean"), "tags": TAGS},
        "outputs": ["id", "arn", "name"],
        "name_field": "name",
        "name_limit": 255,
    },
    ResourceKind.LOG_GROUP: {
        "inputs": {
            "name": _req("string"),
            "retention_in_days": _opt("integer"),
            "skip_destroy": _opt("boolean"),
            "tags": TAGS,
        },
        "outputs": ["arn", "name"],
        "name_field": "name",
        "name_limit": 512,
        "skip_destroy_input": "skip_destroy",
    },
    ResourceKind.IAM_ROLE: {
        "inputs": {"name": _req("string"), "assume_role_policy": _req("string"), "tags": TAGS},
        "outputs": ["id", "arn", "name"],
        "name_field": "name",
        "name_limit": 64,
    },
    ResourceKind.IAM_ROLE_POLICY_ATTACHMENT: {
        "inputs": {"role": _req("string"), "policy_arn": _req("string")},
        "outputs": ["id"],
    },
    ResourceKind.LOAD_BALANCER: {
        "inputs": {
            "name": _req("string"),
            "internal": _opt("boolean"),
            "load_balancer_type": _opt("string", choices=["application", "network"]),
            "security_groups": _req("list"),
            "subnets": _req("list"),
            "tags": TAGS,
        },
        "outputs": ["id", "arn", "arn_suffix", "dns_name", "zone_id"],
        "name_field": "name",
        "name_limit": 32,
    },
    ResourceKind.TARGET_GROUP: {
        "inputs": {
            "name": _req("string"),
            "port": _req("port"),
            "protocol": _req("string", choices=["HTTP", "HTTPS", "TCP"]),
            "vpc_id": _req("string"),
            "target_type": _opt("string", choices=["instance", "ip", "lambda"]),
            "health_check": _opt("object"),
            "tags": TAGS,
        },
        "outputs": ["id", "arn", "arn_suffix", "name"],
        "name_field": "name",
        "name_limit": 32,
    },
    ResourceKind.LISTENER: {
        "inputs": {
            "load_balancer_arn": _req("string"),
            "port": _req("port"),
            "protocol": _req("string", choices=["HTTP", "HTTPS"]),
            "default_actions": _req("list"),
        },
        "outputs": ["id", "arn"],
    },
    ResourceKind.LISTENER_RULE: {
        "inputs": {
            "listener_arn": _req("string"),
            "priority": _req("integer"),
            "actions": _req("list"),
            "conditions": _req("list"),
        },
        "outputs": ["id", "arn"],
    },
    ResourceKind.ECS_TASK_DEFINITION: {
        "inputs": {
            "family": _req("string"),
            "cpu": _req("string"),
            "memory": _req("string"),
            "network_mode": _opt("string", choices=["awsvpc", "bridge", "host", "none"]),
            "requires_compatibilities": _opt("list"),
            "execution_role_arn": _req("string"),
            "container_definitions": _req("list"),
        },
        "outputs": ["arn", "family", "revision"],
    },
    ResourceKind.ECS_SERVICE: {
        "inputs": {
            "name": _req("string"),
            "cluster": _req("string"),
            "task_definition": _req("string"),
            "desired_count": _opt("integer"),
            "launch_type": _opt("string", choices=["FARGATE", "EC2"]),
            "network_configuration": _req("object"),
            "load_balancers": _opt("list"),
        },
        "outputs": ["id", "name", "cluster"],
        "name_field": "name",
        "name_limit": 255,
    },
    ResourceKind.METRIC_ALARM: {
        "inputs": {
            "alarm_name": _req("string"),
            "alarm_description": _opt("string"),
            "namespace": _req("string"),
            "metric_name": _req("string"),
            "statistic": _opt("string"),
            "comparison_operator": _req("string"),
            "threshold": _req("number"),
            "evaluation_periods": _req("integer"),
            "period": _opt("integer"),
            "dimensions": _opt("object"),
            "treat_missing_data": _opt("string"),
        },
        "outputs": ["id", "arn"],
        "name_field": "alarm_name",
        "name_limit": 255,
    },
}


def get_kind_contract(kind) -> dict:
    """Retrieve the contract for a kind; SchemaError if the kind is unknown."""
    try:
        return KIND_CONTRACTS[ResourceKind(kind)]
    except (ValueError, KeyError):
        raise SchemaError(f"Unknown resource kind: {kind!r}") from None


def is_data_source(kind) -> bool:
    return get_kind_contract(kind).get("data_source", False)


def output_names(kind) -> list:
    return list(get_kind_contract(kind)["outputs"])


def check_inputs(node_id: str, kind: ResourceKind, inputs: Mapping[str, Any]) -> None:
    """
    Validate a node's inputs against its kind's contract.

    Literal values are checked for type and shape. AttributeReference values
    are accepted for any input (their type is only known after apply), while
    Join values are accepted only where a string is expected.
    """
    contract = get_kind_contract(kind)
    declared = contract["inputs"]

    # Step 1: Unknown inputs
    unknown = [name for name in inputs if name not in declared]
    if unknown:
        raise SchemaError(
            f"Unknown inputs {unknown}; valid inputs are {sorted(declared)}",
            node_id=node_id,
            kind=str(kind),
        )

    # Step 2: Required inputs
    for name, input_spec in declared.items():
        if input_spec["required"] and inputs.get(name) is None:
            raise SchemaError(f"Required input '{name}' is missing", node_id=node_id, kind=str(kind))

    # Step 3: Literal types
    for name, value in inputs.items():
        if value is None or isinstance(value, AttributeReference):
            continue
        _check_literal(node_id, kind, name, value, declared[name])


def check_reference(ref: AttributeReference, target_kind, node_id: str = None) -> None:
    """Check that a reference names an attribute the target kind outputs."""
    outputs = output_names(target_kind)
    if ref.attribute_name not in outputs:
        raise SchemaError(
            f"Reference to '{ref.target_node_id}.{ref.attribute_name}': "
            f"{target_kind} has no output '{ref.attribute_name}' (outputs: {outputs})",
            node_id=node_id or ref.target_node_id,
            kind=str(target_kind),
        )


def _check_literal(node_id: str, kind, name: str, value: Any, input_spec: dict) -> None:
    type_name = input_spec["type"]

    if isinstance(value, Join):
        if type_name != "string":
            _fail(node_id, kind, name, f"a joined string cannot be used for a {type_name} input")
        return

    if type_name == "string":
        if not isinstance(value, str):
            _fail(node_id, kind, name, f"expected string, got {type(value).__name__}")
        choices = input_spec.get("choices")
        if choices and value not in choices:
            _fail(node_id, kind, name, f"'{value}' is not one of {choices}")

    elif type_name == "boolean":
        if not isinstance(value, bool):
            _fail(node_id, kind, name, f"expected boolean, got {type(value).__name__}")

    elif type_name == "integer":
        if isinstance(value, bool) or not isinstance(value, int):
            _fail(node_id, kind, name, f"expected integer, got {type(value).__name__}")

    elif type_name == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            _fail(node_id, kind, name, f"expected number, got {type(value).__name__}")

    elif type_name == "port":
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 65535:
            _fail(node_id, kind, name, f"expected a port number 0-65535, got {value!r}")

    elif type_name == "cidr":
        if not isinstance(value, str):
            _fail(node_id, kind, name, f"expected CIDR string, got {type(value).__name__}")
        try:
            ipaddress.ip_network(value, strict=True)
        except (TypeError, ValueError):
            _fail(node_id, kind, name, f"'{value}' is not a valid CIDR block")

    elif type_name == "list":
        if not isinstance(value, (list, tuple)):
            _fail(node_id, kind, name, f"expected list, got {type(value).__name__}")

    elif type_name == "object":
        if not isinstance(value, Mapping):
            _fail(node_id, kind, name, f"expected object, got {type(value).__name__}")


def _fail(node_id: str, kind, name: str, reason: str) -> None:
    raise SchemaError(f"Input '{name}': {reason}", node_id=node_id, kind=str(kind))
