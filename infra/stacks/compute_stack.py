"""
Compute stack - ECS Fargate server and worker, ALB, and application secret.

Both workloads run the same container image:
- server: serves HTTP on port 3000, runs database migrations and registers
  cron jobs
- worker: runs background jobs with migrations and cron registration
  disabled (the server owns both)

Listener wiring depends on the domain configuration:
- NoDomain: a single HTTP listener forwarding to the server
- CustomDomain: HTTPS listener with the imported certificate, HTTP listener
  permanently redirecting to HTTPS, and an alias record when a hosted zone
  is configured
"""

from dataclasses import dataclass

from aws_cdk import (
    Annotations,
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    Tags,
)
from aws_cdk import (
    aws_certificatemanager as acm,
)
from aws_cdk import (
    aws_ec2 as ec2,
)
from aws_cdk import (
    aws_ecs as ecs,
)
from aws_cdk import (
    aws_elasticloadbalancingv2 as elbv2,
)
from aws_cdk import (
    aws_iam as iam,
)
from aws_cdk import (
    aws_logs as logs,
)
from aws_cdk import (
    aws_route53 as route53,
)
from aws_cdk import (
    aws_route53_targets as route53_targets,
)
from aws_cdk import (
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from .config import CustomDomain, DeploymentConfig, DomainConfig, NoDomain
from .database_stack import DatabaseOutputs
from .endpoints import application_url
from .network_stack import SERVICE_PORT, NetworkOutputs
from .storage_stack import StorageOutputs

HEALTH_CHECK_PATH = "/healthz"
STICKINESS_COOKIE_NAME = "TWENTYCRM_STICKY"
WORKER_COMMAND = ["yarn", "worker:prod"]


@dataclass(frozen=True)
class ComputeOutputs:
    cluster: ecs.ICluster
    load_balancer: elbv2.IApplicationLoadBalancer
    target_group: elbv2.ApplicationTargetGroup
    listeners: tuple[elbv2.ApplicationListener, ...]
    server_service: ecs.FargateService
    worker_service: ecs.FargateService
    app_secret: secretsmanager.ISecret
    server_url: str


def build_common_environment(
    *,
    server_url: str,
    redis_endpoint: str,
    bucket_name: str,
    region: str,
) -> dict[str, str]:
    """Environment shared by the server and worker containers."""
    return {
        "NODE_PORT": str(SERVICE_PORT),
        "SERVER_URL": server_url,
        "REDIS_URL": redis_endpoint,
        "STORAGE_TYPE": "s3",
        "STORAGE_S3_REGION": region,
        "STORAGE_S3_NAME": bucket_name,
        "IS_CONFIG_VARIABLES_IN_DB_ENABLED": "true",
    }


def server_environment(common: dict[str, str]) -> dict[str, str]:
    return {
        **common,
        "DISABLE_CRON_JOBS_REGISTRATION": "false",  # Server handles cron jobs
    }


def worker_environment(common: dict[str, str]) -> dict[str, str]:
    """Worker never migrates or registers cron jobs, whatever ``common`` says."""
    return {
        **common,
        "DISABLE_DB_MIGRATIONS": "true",
        "DISABLE_CRON_JOBS_REGISTRATION": "true",
    }


def capacity_provider_strategies(use_fargate_spot: bool) -> list[ecs.CapacityProviderStrategy]:
    if use_fargate_spot:
        return [ecs.CapacityProviderStrategy(capacity_provider="FARGATE_SPOT", weight=1, base=0)]
    return [ecs.CapacityProviderStrategy(capacity_provider="FARGATE", weight=1, base=1)]


class ComputeStack(Stack):
    """
    Creates the ECS cluster, workloads, and public entry point.

    Features:
    - Internet-facing ALB with optional HTTPS and Route 53 alias
    - Fargate (or Fargate Spot) server and worker services
    - Target group with cookie stickiness so sessions stay on one task
    - Generated APP_SECRET, database URL injected from Secrets Manager
    - Task role with bucket read/write and secret read; execution role
      with secret read only
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: DeploymentConfig,
        network: NetworkOutputs,
        database: DatabaseOutputs,
        storage: StorageOutputs,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        resource_prefix = config.resource_prefix
        export_prefix = config.display_prefix
        private_subnets = ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)

        # =================================================================
        # Cluster & Load Balancer
        # =================================================================

        cluster = ecs.Cluster(
            self,
            "Cluster",
            vpc=network.vpc,
            cluster_name=f"{resource_prefix}-cluster",
            enable_fargate_capacity_providers=True,
            container_insights_v2=ecs.ContainerInsights.DISABLED,  # Cost optimization
        )

        alb = elbv2.ApplicationLoadBalancer(
            self,
            "LoadBalancer",
            vpc=network.vpc,
            internet_facing=True,
            security_group=network.alb_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

        # =================================================================
        # Secrets & IAM
        # =================================================================

        app_secret = secretsmanager.Secret(
            self,
            "AppSecret",
            secret_name=f"{resource_prefix}/app/secret",
            description=f"{resource_prefix} application secret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=32,
                exclude_punctuation=True,
            ),
        )

        # Role for the application's own AWS calls
        task_role = iam.Role(
            self,
            "TaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            description=f"Role for {resource_prefix} ECS tasks",
        )
        storage.bucket.grant_read_write(task_role)
        database.database_url_secret.grant_read(task_role)
        app_secret.grant_read(task_role)

        # Role for the ECS agent (image pull, logs, secret injection)
        execution_role = iam.Role(
            self,
            "ExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AmazonECSTaskExecutionRolePolicy"
                ),
            ],
        )
        database.database_url_secret.grant_read(execution_role)
        app_secret.grant_read(execution_role)

        server_log_group = logs.LogGroup(
            self,
            "ServerLogGroup",
            log_group_name=f"/ecs/{resource_prefix}-server",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=RemovalPolicy.DESTROY,
        )

        worker_log_group = logs.LogGroup(
            self,
            "WorkerLogGroup",
            log_group_name=f"/ecs/{resource_prefix}-worker",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=RemovalPolicy.DESTROY,
        )

        # =================================================================
        # Task Definitions
        # =================================================================

        # Fixed at synth time: a domain change needs a redeploy to reach the tasks
        server_url = application_url(config.domain, alb.load_balancer_dns_name)

        common_environment = build_common_environment(
            server_url=server_url,
            redis_endpoint=database.redis_endpoint,
            bucket_name=storage.bucket.bucket_name,
            region=self.region,
        )
        container_secrets = {
            "PG_DATABASE_URL": ecs.Secret.from_secrets_manager(database.database_url_secret),
            "APP_SECRET": ecs.Secret.from_secrets_manager(app_secret),
        }
        image = ecs.ContainerImage.from_registry(config.container_image)

        server_task_definition = ecs.FargateTaskDefinition(
            self,
            "ServerTaskDef",
            cpu=config.server_cpu,
            memory_limit_mib=config.server_memory,
            task_role=task_role,
            execution_role=execution_role,
        )

        server_container = server_task_definition.add_container(
            "ServerContainer",
            image=image,
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix="server",
                log_group=server_log_group,
            ),
            environment=server_environment(common_environment),
            secrets=container_secrets,
            health_check=ecs.HealthCheck(
                command=[
                    "CMD-SHELL",
                    f"curl -f http://localhost:{SERVICE_PORT}{HEALTH_CHECK_PATH} || exit 1",
                ],
                interval=Duration.seconds(30),
                timeout=Duration.seconds(5),
                retries=3,
                start_period=Duration.seconds(60),
            ),
        )
        server_container.add_port_mappings(
            ecs.PortMapping(container_port=SERVICE_PORT, protocol=ecs.Protocol.TCP)
        )

        worker_task_definition = ecs.FargateTaskDefinition(
            self,
            "WorkerTaskDef",
            cpu=config.worker_cpu,
            memory_limit_mib=config.worker_memory,
            task_role=task_role,
            execution_role=execution_role,
        )

        worker_task_definition.add_container(
            "WorkerContainer",
            image=image,
            command=WORKER_COMMAND,
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix="worker",
                log_group=worker_log_group,
            ),
            environment=worker_environment(common_environment),
            secrets=container_secrets,
        )

        # =================================================================
        # Services
        # =================================================================

        strategies = capacity_provider_strategies(config.use_fargate_spot)

        server_service = ecs.FargateService(
            self,
            "ServerService",
            cluster=cluster,
            task_definition=server_task_definition,
            desired_count=1,
            security_groups=[network.ecs_security_group],
            vpc_subnets=private_subnets,
            capacity_provider_strategies=strategies,
            enable_execute_command=True,  # ECS Exec for debugging
            health_check_grace_period=Duration.seconds(60),
        )

        worker_service = ecs.FargateService(
            self,
            "WorkerService",
            cluster=cluster,
            task_definition=worker_task_definition,
            desired_count=1,
            security_groups=[network.ecs_security_group],
            vpc_subnets=private_subnets,
            capacity_provider_strategies=strategies,
            enable_execute_command=True,
        )

        target_group = elbv2.ApplicationTargetGroup(
            self,
            "TargetGroup",
            vpc=network.vpc,
            port=SERVICE_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(
                path=HEALTH_CHECK_PATH,
                interval=Duration.seconds(30),
                timeout=Duration.seconds(5),
                healthy_threshold_count=2,
                unhealthy_threshold_count=3,
            ),
            deregistration_delay=Duration.seconds(30),
            # Keep a client on one task so login state survives between requests
            stickiness_cookie_duration=Duration.days(1),
            stickiness_cookie_name=STICKINESS_COOKIE_NAME,
        )
        server_service.attach_to_application_target_group(target_group)

        # =================================================================
        # Listeners & DNS
        # =================================================================

        listeners = self._add_listeners(config.domain, alb, target_group)

        Annotations.of(self).add_info(
            "SERVER_URL is fixed at deploy time; redeploy after changing the domain configuration"
        )

        Tags.of(cluster).add("Component", "Compute")
        Tags.of(alb).add("Component", "LoadBalancer")

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "LoadBalancerDNS",
            value=alb.load_balancer_dns_name,
            description="Load Balancer DNS name",
            export_name=f"{export_prefix}LoadBalancerDNS",
        )

        CfnOutput(
            self,
            "ApplicationURL",
            value=server_url,
            description="Application URL",
            export_name=f"{export_prefix}ApplicationURL",
        )

        CfnOutput(
            self,
            "DeploymentInstructions",
            value="\n".join(
                [
                    "Deployment complete! Next steps:",
                    "1. Wait 2-3 minutes for services to start",
                    f"2. Visit {server_url}",
                    '3. Create your account (use "Continue with Email")',
                    "4. Configure integrations via Settings > Admin Panel",
                ]
            ),
            description="Post-deployment instructions",
        )

        # Outputs for CLI lookups
        CfnOutput(
            self,
            "ClusterName",
            value=cluster.cluster_name,
            description="ECS cluster name",
        )

        CfnOutput(
            self,
            "ServerServiceName",
            value=server_service.service_name,
            description="ECS server service name",
        )

        CfnOutput(
            self,
            "WorkerServiceName",
            value=worker_service.service_name,
            description="ECS worker service name",
        )

        self.outputs = ComputeOutputs(
            cluster=cluster,
            load_balancer=alb,
            target_group=target_group,
            listeners=tuple(listeners),
            server_service=server_service,
            worker_service=worker_service,
            app_secret=app_secret,
            server_url=server_url,
        )

    def _add_listeners(
        self,
        domain: DomainConfig,
        alb: elbv2.ApplicationLoadBalancer,
        target_group: elbv2.ApplicationTargetGroup,
    ) -> list[elbv2.ApplicationListener]:
        match domain:
            case CustomDomain():
                return self._add_https_listeners(domain, alb, target_group)
            case NoDomain():
                return [self._add_http_listener(alb, target_group)]
        raise TypeError(f"Unsupported domain configuration: {domain!r}")

    def _add_http_listener(
        self,
        alb: elbv2.ApplicationLoadBalancer,
        target_group: elbv2.ApplicationTargetGroup,
    ) -> elbv2.ApplicationListener:
        """Plain HTTP, forwarding straight to the server."""
        return alb.add_listener(
            "HttpListener",
            port=80,
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_action=elbv2.ListenerAction.forward([target_group]),
            open=False,  # Ingress is managed by the network stack
        )

    def _add_https_listeners(
        self,
        domain: CustomDomain,
        alb: elbv2.ApplicationLoadBalancer,
        target_group: elbv2.ApplicationTargetGroup,
    ) -> list[elbv2.ApplicationListener]:
        """HTTPS forwarding, HTTP redirecting to HTTPS, optional alias record."""
        certificate = acm.Certificate.from_certificate_arn(
            self, "Certificate", domain.certificate_arn
        )

        https_listener = alb.add_listener(
            "HttpsListener",
            port=443,
            protocol=elbv2.ApplicationProtocol.HTTPS,
            certificates=[elbv2.ListenerCertificate.from_certificate_manager(certificate)],
            default_action=elbv2.ListenerAction.forward([target_group]),
            open=False,
        )

        http_listener = alb.add_listener(
            "HttpListener",
            port=80,
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_action=elbv2.ListenerAction.redirect(
                protocol="HTTPS",
                port="443",
                permanent=True,
            ),
            open=False,
        )

        if domain.hosted_zone:
            hosted_zone = route53.HostedZone.from_hosted_zone_attributes(
                self,
                "HostedZone",
                hosted_zone_id=domain.hosted_zone.zone_id,
                zone_name=domain.hosted_zone.zone_name,
            )

            route53.ARecord(
                self,
                "AliasRecord",
                zone=hosted_zone,
                record_name=domain.domain_name,
                target=route53.RecordTarget.from_alias(route53_targets.LoadBalancerTarget(alb)),
                comment=f"{domain.domain_name} application",
            )

        return [https_listener, http_listener]
