"""
Network stack - VPC, subnets, flow logs, and security groups.

Security group graph:
- ALB:   80/443 from anywhere
- ECS:   service port from ALB only
- RDS:   PostgreSQL from ECS only (no outbound)
- Redis: Redis from ECS only (no outbound)
"""

from dataclasses import dataclass

from aws_cdk import Stack, Tags
from aws_cdk import aws_ec2 as ec2
from constructs import Construct

SERVICE_PORT = 3000
POSTGRES_PORT = 5432
REDIS_PORT = 6379


@dataclass(frozen=True)
class NetworkOutputs:
    vpc: ec2.IVpc
    alb_security_group: ec2.ISecurityGroup
    ecs_security_group: ec2.ISecurityGroup
    database_security_group: ec2.ISecurityGroup
    cache_security_group: ec2.ISecurityGroup


class NetworkStack(Stack):
    """Creates the foundational VPC and networking components."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        resource_prefix: str,
        max_azs: int = 2,
        nat_gateways: int = 1,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # VPC with public and private subnets (Aurora needs two AZs)
        vpc = ec2.Vpc(
            self,
            "Vpc",
            vpc_name=f"{resource_prefix}-vpc",
            max_azs=max_azs,
            nat_gateways=nat_gateways,  # Cost optimization: single NAT by default
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=24,
                ),
            ],
            enable_dns_hostnames=True,
            enable_dns_support=True,
        )

        vpc.add_flow_log(
            "FlowLog",
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(),
        )

        alb_security_group = ec2.SecurityGroup(
            self,
            "AlbSecurityGroup",
            vpc=vpc,
            description=f"Security group for {resource_prefix} ALB",
            allow_all_outbound=True,
        )
        alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "Allow HTTP from anywhere"
        )
        alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "Allow HTTPS from anywhere"
        )

        # Server and worker tasks
        ecs_security_group = ec2.SecurityGroup(
            self,
            "EcsSecurityGroup",
            vpc=vpc,
            description=f"Security group for {resource_prefix} ECS tasks",
            allow_all_outbound=True,
        )
        ecs_security_group.add_ingress_rule(
            alb_security_group, ec2.Port.tcp(SERVICE_PORT), "Allow traffic from ALB"
        )

        database_security_group = ec2.SecurityGroup(
            self,
            "DatabaseSecurityGroup",
            vpc=vpc,
            description=f"Security group for {resource_prefix} Aurora database",
            allow_all_outbound=False,
        )
        database_security_group.add_ingress_rule(
            ecs_security_group, ec2.Port.tcp(POSTGRES_PORT), "Allow PostgreSQL from ECS tasks"
        )

        cache_security_group = ec2.SecurityGroup(
            self,
            "CacheSecurityGroup",
            vpc=vpc,
            description=f"Security group for {resource_prefix} Redis",
            allow_all_outbound=False,
        )
        cache_security_group.add_ingress_rule(
            ecs_security_group, ec2.Port.tcp(REDIS_PORT), "Allow Redis from ECS tasks"
        )

        Tags.of(vpc).add("Component", "Network")
        Tags.of(alb_security_group).add("Component", "LoadBalancer")
        Tags.of(ecs_security_group).add("Component", "Compute")
        Tags.of(database_security_group).add("Component", "Database")
        Tags.of(cache_security_group).add("Component", "Cache")

        self.outputs = NetworkOutputs(
            vpc=vpc,
            alb_security_group=alb_security_group,
            ecs_security_group=ecs_security_group,
            database_security_group=database_security_group,
            cache_security_group=cache_security_group,
        )
