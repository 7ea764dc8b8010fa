"""
Database stack - Aurora PostgreSQL Serverless v2 and ElastiCache Redis.

Secrets:
- {prefix}/database/credentials: generated username/password (JSON)
- {prefix}/database/connection-url: full postgres:// URL composed from the
  credentials secret and the cluster endpoint

The connection-url secret embeds the generated password into a second
secret at deploy time, so the password passes through the CloudFormation
template as a dynamic reference. Workloads that can assemble the URL
themselves should read the individual credential fields instead.
"""

import json
from dataclasses import dataclass

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    SecretValue,
    Stack,
    Tags,
    Token,
)
from aws_cdk import (
    aws_ec2 as ec2,
)
from aws_cdk import (
    aws_elasticache as elasticache,
)
from aws_cdk import (
    aws_logs as logs,
)
from aws_cdk import (
    aws_rds as rds,
)
from aws_cdk import (
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from .endpoints import database_url, redis_url
from .network_stack import NetworkOutputs

DATABASE_NAME = "twenty"
DATABASE_USERNAME = "postgres"
DATABASE_PROTOCOL = "postgres"
GENERATED_PASSWORD_LENGTH = 32

REDIS_NODE_TYPE = "cache.t4g.micro"
REDIS_ENGINE_VERSION = "7.0"


@dataclass(frozen=True)
class DatabaseOutputs:
    cluster: rds.IDatabaseCluster
    cluster_identifier: str
    cluster_endpoint: str
    database_name: str
    credentials_secret: secretsmanager.ISecret
    database_url_secret: secretsmanager.ISecret
    redis_endpoint: str
    redis_cluster_id: str


class DatabaseStack(Stack):
    """
    Creates the relational database and cache inside the private subnets.

    Features:
    - Aurora PostgreSQL Serverless v2 (single writer, auto-scaling ACUs)
    - Encrypted storage, 7-day backups, snapshot on removal
    - Single-node Redis with daily snapshots
    - Generated credentials and a composed connection-string secret
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        network: NetworkOutputs,
        resource_prefix: str,
        export_prefix: str,
        min_capacity: float,
        max_capacity: float,
        deletion_protection: bool = False,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        private_subnets = ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)

        # =================================================================
        # Credentials
        # =================================================================

        credentials_secret = secretsmanager.Secret(
            self,
            "DatabaseSecret",
            secret_name=f"{resource_prefix}/database/credentials",
            description=f"{resource_prefix} database credentials",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": DATABASE_USERNAME}),
                generate_string_key="password",
                exclude_punctuation=True,
                include_space=False,
                password_length=GENERATED_PASSWORD_LENGTH,
            ),
        )

        # =================================================================
        # Aurora Serverless v2
        # =================================================================

        cluster = rds.DatabaseCluster(
            self,
            "AuroraCluster",
            engine=rds.DatabaseClusterEngine.aurora_postgres(
                version=rds.AuroraPostgresEngineVersion.VER_16_6,
            ),
            credentials=rds.Credentials.from_secret(credentials_secret),
            default_database_name=DATABASE_NAME,
            vpc=network.vpc,
            vpc_subnets=private_subnets,
            security_groups=[network.database_security_group],
            serverless_v2_min_capacity=min_capacity,
            serverless_v2_max_capacity=max_capacity,
            writer=rds.ClusterInstance.serverless_v2(
                "Writer",
                enable_performance_insights=False,  # Cost optimization
                publicly_accessible=False,
            ),
            # No readers (single instance)
            backup=rds.BackupProps(
                retention=Duration.days(7),
                preferred_window="03:00-04:00",
            ),
            preferred_maintenance_window="sun:04:00-sun:05:00",
            cloudwatch_logs_exports=["postgresql"],
            cloudwatch_logs_retention=logs.RetentionDays.ONE_WEEK,
            storage_encrypted=True,
            deletion_protection=deletion_protection,
            removal_policy=RemovalPolicy.SNAPSHOT,
        )

        # =================================================================
        # ElastiCache Redis (single node, no cluster mode)
        # =================================================================

        redis_subnet_group = elasticache.CfnSubnetGroup(
            self,
            "RedisSubnetGroup",
            description=f"Subnet group for {resource_prefix} Redis",
            subnet_ids=network.vpc.select_subnets(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ).subnet_ids,
            cache_subnet_group_name=f"{resource_prefix}-redis-subnet-group",
        )

        redis_cluster = elasticache.CfnCacheCluster(
            self,
            "RedisCluster",
            cache_node_type=REDIS_NODE_TYPE,
            engine="redis",
            engine_version=REDIS_ENGINE_VERSION,
            num_cache_nodes=1,
            cache_subnet_group_name=redis_subnet_group.cache_subnet_group_name,
            vpc_security_group_ids=[network.cache_security_group.security_group_id],
            preferred_maintenance_window="sun:05:00-sun:06:00",
            snapshot_retention_limit=5,
            snapshot_window="02:00-03:00",
            auto_minor_version_upgrade=True,
        )
        # Subnet group is referenced by name, not by Ref
        redis_cluster.add_dependency(redis_subnet_group)

        # =================================================================
        # Connection URL secret
        # =================================================================

        connection_url = database_url(
            protocol=DATABASE_PROTOCOL,
            username=credentials_secret.secret_value_from_json("username").unsafe_unwrap(),
            password=credentials_secret.secret_value_from_json("password").unsafe_unwrap(),
            host=cluster.cluster_endpoint.hostname,
            port=Token.as_string(cluster.cluster_endpoint.port),
            database=DATABASE_NAME,
        )

        database_url_secret = secretsmanager.Secret(
            self,
            "DatabaseUrlSecret",
            secret_name=f"{resource_prefix}/database/connection-url",
            description=f"Complete database connection URL for {resource_prefix}",
            secret_string_value=SecretValue.unsafe_plain_text(connection_url),
        )

        redis_endpoint = redis_url(
            redis_cluster.attr_redis_endpoint_address,
            redis_cluster.attr_redis_endpoint_port,
        )
        cluster_endpoint = cluster.cluster_endpoint.socket_address

        Tags.of(cluster).add("Component", "Database")
        Tags.of(redis_cluster).add("Component", "Cache")

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "DatabaseEndpoint",
            value=cluster_endpoint,
            description="Aurora cluster endpoint",
            export_name=f"{export_prefix}DatabaseEndpoint",
        )

        CfnOutput(
            self,
            "DatabaseSecretArn",
            value=credentials_secret.secret_arn,
            description="Database credentials secret ARN",
            export_name=f"{export_prefix}DatabaseSecretArn",
        )

        CfnOutput(
            self,
            "RedisEndpoint",
            value=redis_endpoint,
            description="Redis endpoint",
            export_name=f"{export_prefix}RedisEndpoint",
        )

        self.outputs = DatabaseOutputs(
            cluster=cluster,
            cluster_identifier=cluster.cluster_identifier,
            cluster_endpoint=cluster_endpoint,
            database_name=DATABASE_NAME,
            credentials_secret=credentials_secret,
            database_url_secret=database_url_secret,
            redis_endpoint=redis_endpoint,
            redis_cluster_id=redis_cluster.ref,
        )
