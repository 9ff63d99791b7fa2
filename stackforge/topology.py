"""
Topology Template Module

Responsibility:
- Declare the container-service topology for one environment: network,
  routing, security groups, image repository lookup, cluster, logging, IAM,
  load balancer, task definition, service and alarms
- Derive every literal (names, CIDRs, zones, sizing) from the descriptor

build_topology is a pure function of its descriptor: the same descriptor
always produces the same nodes, edges and literals, and nothing here reads
process environment or calls a provider.
"""

import json
from itertools import islice

from stackforge.config import EnvironmentDescriptor
from stackforge.contracts import ResourceKind, get_kind_contract
from stackforge.graph import TopologyGraph
from stackforge.models import Join
from stackforge.naming import derive_name

ANYWHERE = "0.0.0.0/0"
TASK_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"


def _name(kind: ResourceKind, app: str, env: str, suffix: str = "", prefix: str = "") -> str:
    limit = get_kind_contract(kind).get("name_limit")
    return derive_name(f"{prefix}{app}", env, suffix, limit)


def _tags(name: str, env: str) -> dict:
    return {"Name": name, "Environment": env}


def subnet_cidrs(descriptor: EnvironmentDescriptor) -> list:
    """One subnet per availability zone, skipping the first block of the range."""
    settings = descriptor.settings
    blocks = descriptor.network.subnets(new_prefix=settings.subnet_prefix_length)
    count = len(settings.availability_zones) + 1
    return [str(block) for block in islice(blocks, count)][1:]


def build_topology(descriptor: EnvironmentDescriptor, namespace: str = None) -> TopologyGraph:
    """
    Build the full topology graph for one environment.

    Args:
        descriptor: Environment name, region, CIDR block and overrides
        namespace: Optional prefix for node ids (the parameterizer passes the
            environment name so ids never collide across environments)

    Returns:
        A TopologyGraph with exports `alb_dns_name` and `ecr_repository_url`
    """
    env = descriptor.name
    region = descriptor.region
    settings = descriptor.settings
    app = settings.app_name
    graph = TopologyGraph(environment=env, namespace=namespace)

    # 1. Networking
    vpc = graph.add_node(
        "vpc",
        ResourceKind.VPC,
        cidr_block=descriptor.cidr_block,
        enable_dns_support=True,
        enable_dns_hostnames=True,
        tags=_tags(f"{app}-{env}-vpc", env),
    )

    igw = graph.add_node(
        "igw",
        ResourceKind.INTERNET_GATEWAY,
        vpc_id=vpc["id"],
        tags=_tags(f"{app}-{env}-igw", env),
    )

    route_table = graph.add_node(
        "public-rt",
        ResourceKind.ROUTE_TABLE,
        vpc_id=vpc["id"],
        routes=[{"cidr_block": ANYWHERE, "gateway_id": igw["id"]}],
        tags=_tags(f"{app}-{env}-public-rt", env),
    )

    subnets = []
    for index, (zone, cidr) in enumerate(zip(settings.availability_zones, subnet_cidrs(descriptor)), start=1):
        subnet, _ = graph.add_public_subnet(
            f"public-subnet-{index}",
            route_table,
            vpc_id=vpc["id"],
            cidr_block=cidr,
            availability_zone=f"{region}{zone}",
            tags=_tags(f"{app}-{env}-public-{index}", env),
        )
        subnets.append(subnet)
    subnet_ids = [subnet["id"] for subnet in subnets]

    # 2. Security groups and their rules
    alb_sg = graph.add_node(
        "alb-sg",
        ResourceKind.SECURITY_GROUP,
        vpc_id=vpc["id"],
        name=_name(ResourceKind.SECURITY_GROUP, app, env, "-alb-sg"),
        description="Public HTTP access to the load balancer",
    )
    ecs_sg = graph.add_node(
        "ecs-sg",
        ResourceKind.SECURITY_GROUP,
        vpc_id=vpc["id"],
        name=_name(ResourceKind.SECURITY_GROUP, app, env, "-ecs-sg"),
        description="Load balancer access to the service tasks",
    )

    graph.add_node(
        "alb-sg-http-in",
        ResourceKind.SECURITY_GROUP_RULE,
        security_group_id=alb_sg["id"],
        type="ingress",
        from_port=settings.listener_port,
        to_port=settings.listener_port,
        protocol="tcp",
        cidr_blocks=[ANYWHERE],
    )
    graph.add_node(
        "ecs-sg-app-in",
        ResourceKind.SECURITY_GROUP_RULE,
        security_group_id=ecs_sg["id"],
        type="ingress",
        from_port=settings.container_port,
        to_port=settings.container_port,
        protocol="tcp",
        source_security_group_id=alb_sg["id"],
    )
    for group_id, group in (("alb-sg", alb_sg), ("ecs-sg", ecs_sg)):
        graph.add_node(
            f"{group_id}-all-out",
            ResourceKind.SECURITY_GROUP_RULE,
            security_group_id=group["id"],
            type="egress",
            from_port=0,
            to_port=0,
            protocol="-1",
            cidr_blocks=[ANYWHERE],
        )

    # 3. Existing image repository
    ecr_repo = graph.add_node("ecr-repo", ResourceKind.ECR_REPOSITORY, name=settings.ecr_repository)

    # 4. Cluster and logging
    cluster = graph.add_node(
        "cluster",
        ResourceKind.ECS_CLUSTER,
        name=_name(ResourceKind.ECS_CLUSTER, app, env, "-cluster"),
        container_insights=settings.container_insights,
    )

    log_group = graph.add_node(
        "log-group",
        ResourceKind.LOG_GROUP,
        name=_name(ResourceKind.LOG_GROUP, app, env, prefix="/ecs/"),
        retention_in_days=settings.log_retention_days,
        skip_destroy=True,
    )

    # 5. IAM
    execution_role = graph.add_node(
        "task-execution-role",
        ResourceKind.IAM_ROLE,
        name=_name(ResourceKind.IAM_ROLE, app, env, "-task-execution-role"),
        assume_role_policy=json.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Action": "sts:AssumeRole",
                "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                "Effect": "Allow",
                "Sid": "",
            }],
        }),
    )
    graph.add_node(
        "task-execution-policy-attach",
        ResourceKind.IAM_ROLE_POLICY_ATTACHMENT,
        role=execution_role["name"],
        policy_arn=TASK_EXECUTION_POLICY_ARN,
    )

    # 6. Load balancer
    alb = graph.add_node(
        "alb",
        ResourceKind.LOAD_BALANCER,
        name=_name(ResourceKind.LOAD_BALANCER, app, env, "-alb"),
        load_balancer_type="application",
        security_groups=[alb_sg["id"]],
        subnets=subnet_ids,
    )

    target_group = graph.add_node(
        "tg",
        ResourceKind.TARGET_GROUP,
        name=_name(ResourceKind.TARGET_GROUP, app, env, "-tg"),
        port=settings.container_port,
        protocol="HTTP",
        vpc_id=vpc["id"],
        target_type="ip",
        health_check={
            "path": settings.health_check_path,
            "healthy_threshold": settings.healthy_threshold,
            "unhealthy_threshold": settings.unhealthy_threshold,
        },
    )

    graph.add_node(
        "listener",
        ResourceKind.LISTENER,
        load_balancer_arn=alb["arn"],
        port=settings.listener_port,
        protocol="HTTP",
        default_actions=[{"type": "forward", "target_group_arn": target_group["arn"]}],
    )

    # 7. Task definition and service
    container_name = app
    task_definition = graph.add_node(
        "task-def",
        ResourceKind.ECS_TASK_DEFINITION,
        family=f"{app}-{env}",
        cpu=str(settings.cpu),
        memory=str(settings.memory),
        network_mode="awsvpc",
        requires_compatibilities=["FARGATE"],
        execution_role_arn=execution_role["arn"],
        container_definitions=[{
            "name": container_name,
            "image": Join(ecr_repo["repository_url"], settings.image_tag, separator=":"),
            "essential": True,
            "portMappings": [{
                "containerPort": settings.container_port,
                "hostPort": settings.container_port,
            }],
            "logConfiguration": {
                "logDriver": "awslogs",
                "options": {
                    "awslogs-group": log_group["name"],
                    "awslogs-region": region,
                    "awslogs-stream-prefix": "ecs",
                },
            },
        }],
    )

    graph.add_node(
        "service",
        ResourceKind.ECS_SERVICE,
        name=_name(ResourceKind.ECS_SERVICE, app, env, "-service"),
        cluster=cluster["id"],
        task_definition=task_definition["arn"],
        desired_count=settings.desired_count,
        launch_type="FARGATE",
        network_configuration={
            "subnets": subnet_ids,
            "security_groups": [ecs_sg["id"]],
            "assign_public_ip": True,
        },
        load_balancers=[{
            "target_group_arn": target_group["arn"],
            "container_name": container_name,
            "container_port": settings.container_port,
        }],
    )

    # 8. Alarms
    graph.add_node(
        "alb-5xx-alarm",
        ResourceKind.METRIC_ALARM,
        alarm_name=_name(ResourceKind.METRIC_ALARM, app, env, "-alb-5xx"),
        alarm_description="Target 5xx responses behind the load balancer",
        namespace="AWS/ApplicationELB",
        metric_name="HTTPCode_Target_5XX_Count",
        statistic="Sum",
        comparison_operator="GreaterThanOrEqualToThreshold",
        threshold=settings.alarm_5xx_threshold,
        evaluation_periods=settings.alarm_evaluation_periods,
        period=60,
        dimensions={"LoadBalancer": alb["arn_suffix"]},
        treat_missing_data="notBreaching",
    )
    graph.add_node(
        "unhealthy-hosts-alarm",
        ResourceKind.METRIC_ALARM,
        alarm_name=_name(ResourceKind.METRIC_ALARM, app, env, "-unhealthy-hosts"),
        alarm_description="Unhealthy targets in the service target group",
        namespace="AWS/ApplicationELB",
        metric_name="UnHealthyHostCount",
        statistic="Maximum",
        comparison_operator="GreaterThanOrEqualToThreshold",
        threshold=1,
        evaluation_periods=settings.alarm_evaluation_periods,
        period=60,
        dimensions={
            "LoadBalancer": alb["arn_suffix"],
            "TargetGroup": target_group["arn_suffix"],
        },
        treat_missing_data="breaching",
    )

    # 9. Stack outputs
    graph.export("alb_dns_name", alb["dns_name"])
    graph.export("ecr_repository_url", ecr_repo["repository_url"])

    return graph
