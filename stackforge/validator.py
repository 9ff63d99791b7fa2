"""
Structural Validation Module

Responsibility:
- Enforce cross-node constraints over a resolved plan
- Check that references point at nodes of the right kind (security group
  rules, listeners, listener rules, route table associations)
- Check that literal subnet CIDRs fall inside their VPC CIDR
- Check physical name lengths against platform limits
- Check that every target group a service uses is attached to a listener
- Return a list of TopologyViolation objects for any failures

This is PURE deterministic validation logic: it reads the graph and plan and
never changes them.
"""

import ipaddress
from typing import Callable, Dict, List

from stackforge.contracts import ResourceKind, get_kind_contract
from stackforge.graph import TopologyGraph
from stackforge.models import AttributeReference, PlanStep, ProvisioningPlan, TopologyViolation, iter_references


def validate_plan(plan: ProvisioningPlan, graph: TopologyGraph) -> List[TopologyViolation]:
    """
    Validate every step of a plan against the structural rules.

    Returns a list of TopologyViolation objects, empty when the plan is valid.
    """
    violations = []
    nodes = {node.id: node for node in graph.nodes}

    for step in plan.steps:
        # Step 1: Physical name limits
        violations.extend(_validate_name_length(step))

        # Step 2: Kind-specific reference rules
        rule = KIND_RULES.get(step.kind)
        if rule:
            violations.extend(rule(step, nodes))

    # Step 3: Rules spanning several nodes
    violations.extend(_validate_target_groups_attached(plan, nodes))

    return violations


def _violation(step: PlanStep, rule: str, reason: str) -> TopologyViolation:
    return TopologyViolation(node_id=step.node_id, kind=str(step.kind), rule=rule, reason=reason)


def _references_of_kind(value, nodes: Dict, kind: ResourceKind) -> List[AttributeReference]:
    """References inside a value whose target node has the given kind."""
    return [
        ref for ref in iter_references(value)
        if ref.target_node_id in nodes and nodes[ref.target_node_id].kind == kind
    ]


def _target_ids(references: List[AttributeReference]) -> List[str]:
    return sorted({ref.target_node_id for ref in references})


def _require_reference(step: PlanStep, nodes: Dict, input_name: str, kind: ResourceKind, rule: str) -> List[TopologyViolation]:
    """The input must be a reference to a node of `kind`."""
    value = step.inputs.get(input_name)
    if not isinstance(value, AttributeReference):
        return [_violation(step, rule, f"'{input_name}' must reference a {kind.value} node")]

    target = nodes.get(value.target_node_id)
    if target is None:
        return [_violation(step, rule, f"'{input_name}' references missing node '{value.target_node_id}'")]
    if target.kind != kind:
        return [_violation(
            step, rule,
            f"'{input_name}' references '{target.id}' of kind {target.kind.value}, expected {kind.value}",
        )]
    return []


def _validate_name_length(step: PlanStep) -> List[TopologyViolation]:
    contract = get_kind_contract(step.kind)
    field = contract.get("name_field")
    limit = contract.get("name_limit")
    if not field or not limit:
        return []

    name = step.inputs.get(field)
    if isinstance(name, str) and len(name) > limit:
        return [_violation(
            step, "name_length",
            f"{field} '{name}' is {len(name)} characters, limit is {limit}",
        )]
    return []


def _validate_security_group_rule(step: PlanStep, nodes: Dict) -> List[TopologyViolation]:
    violations = _require_reference(
        step, nodes, "security_group_id", ResourceKind.SECURITY_GROUP, "security_group_rule_group"
    )
    if step.inputs.get("source_security_group_id") is not None:
        violations.extend(_require_reference(
            step, nodes, "source_security_group_id", ResourceKind.SECURITY_GROUP,
            "security_group_rule_source",
        ))
    if step.inputs.get("source_security_group_id") is None and not step.inputs.get("cidr_blocks"):
        violations.append(_violation(
            step, "security_group_rule_peer",
            "rule needs either cidr_blocks or source_security_group_id",
        ))
    return violations


def _validate_listener(step: PlanStep, nodes: Dict) -> List[TopologyViolation]:
    violations = _require_reference(
        step, nodes, "load_balancer_arn", ResourceKind.LOAD_BALANCER, "listener_load_balancer"
    )
    groups = _target_ids(_references_of_kind(step.inputs.get("default_actions"), nodes, ResourceKind.TARGET_GROUP))
    if len(groups) != 1:
        violations.append(_violation(
            step, "listener_target_group",
            f"default actions must forward to exactly one target group, found {len(groups)}: {groups}",
        ))
    return violations


def _validate_listener_rule(step: PlanStep, nodes: Dict) -> List[TopologyViolation]:
    violations = _require_reference(
        step, nodes, "listener_arn", ResourceKind.LISTENER, "listener_rule_listener"
    )
    groups = _target_ids(_references_of_kind(step.inputs.get("actions"), nodes, ResourceKind.TARGET_GROUP))
    if len(groups) != 1:
        violations.append(_violation(
            step, "listener_rule_target_group",
            f"must reference exactly one target group, found {len(groups)}: {groups}",
        ))
    return violations


def _validate_route_table_association(step: PlanStep, nodes: Dict) -> List[TopologyViolation]:
    return (
        _require_reference(step, nodes, "subnet_id", ResourceKind.SUBNET, "association_subnet")
        + _require_reference(step, nodes, "route_table_id", ResourceKind.ROUTE_TABLE, "association_route_table")
    )


def _validate_subnet(step: PlanStep, nodes: Dict) -> List[TopologyViolation]:
    violations = _require_reference(step, nodes, "vpc_id", ResourceKind.VPC, "subnet_vpc")
    if violations:
        return violations

    vpc = nodes[step.inputs["vpc_id"].target_node_id]
    vpc_cidr = vpc.inputs.get("cidr_block")
    subnet_cidr = step.inputs.get("cidr_block")
    if not isinstance(vpc_cidr, str) or not isinstance(subnet_cidr, str):
        return []

    subnet_net = ipaddress.ip_network(subnet_cidr)
    vpc_net = ipaddress.ip_network(vpc_cidr)
    if subnet_net.version != vpc_net.version or not subnet_net.subnet_of(vpc_net):
        return [_violation(step, "subnet_cidr", f"{subnet_cidr} is not inside VPC block {vpc_cidr}")]
    return []


def _validate_target_groups_attached(plan: ProvisioningPlan, nodes: Dict) -> List[TopologyViolation]:
    """Every target group a service registers with must be fronted by a listener."""
    attached = set()
    for step in plan.steps:
        if step.kind == ResourceKind.LISTENER:
            attached.update(_target_ids(_references_of_kind(step.inputs.get("default_actions"), nodes, ResourceKind.TARGET_GROUP)))
        elif step.kind == ResourceKind.LISTENER_RULE:
            attached.update(_target_ids(_references_of_kind(step.inputs.get("actions"), nodes, ResourceKind.TARGET_GROUP)))

    violations = []
    for step in plan.steps:
        if step.kind != ResourceKind.ECS_SERVICE:
            continue
        used = _target_ids(_references_of_kind(step.inputs.get("load_balancers"), nodes, ResourceKind.TARGET_GROUP))
        for group_id in used:
            if group_id not in attached:
                violations.append(_violation(
                    step, "service_target_group_listener",
                    f"target group '{group_id}' is not attached to any listener or listener rule",
                ))
    return violations


KIND_RULES: Dict[ResourceKind, Callable[[PlanStep, Dict], List[TopologyViolation]]] = {
    ResourceKind.SECURITY_GROUP_RULE: _validate_security_group_rule,
    ResourceKind.LISTENER: _validate_listener,
    ResourceKind.LISTENER_RULE: _validate_listener_rule,
    ResourceKind.ROUTE_TABLE_ASSOCIATION: _validate_route_table_association,
    ResourceKind.SUBNET: _validate_subnet,
}
