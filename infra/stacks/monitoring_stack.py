"""
Monitoring stack - CloudWatch dashboard and alarms.

Provides operational visibility into:
- Aurora (ACU utilization, CPU, connections, latency, capacity)
- ECS server and worker (CPU, memory)
- ALB (requests, response time, status codes, target health)
- Redis (CPU, memory, connections, evictions)
- S3 (bucket size, object count)

Alarms are created only when an alert email is configured. They notify the
SNS topic and take no remediation action.
"""

from dataclasses import dataclass

from aws_cdk import (
    CfnOutput,
    Duration,
    Stack,
)
from aws_cdk import (
    aws_cloudwatch as cloudwatch,
)
from aws_cdk import (
    aws_cloudwatch_actions as cw_actions,
)
from aws_cdk import (
    aws_sns as sns,
)
from aws_cdk import (
    aws_sns_subscriptions as sns_subscriptions,
)
from constructs import Construct

from .compute_stack import ComputeOutputs
from .database_stack import DatabaseOutputs
from .endpoints import dashboard_url
from .storage_stack import StorageOutputs


@dataclass(frozen=True)
class MonitoringOutputs:
    dashboard: cloudwatch.Dashboard
    alarm_topic: sns.ITopic | None
    alarms: tuple[cloudwatch.Alarm, ...]


@dataclass(frozen=True)
class AlarmDefinition:
    construct_id: str
    name_suffix: str
    metric: cloudwatch.IMetric
    threshold: float
    evaluation_periods: int
    comparison_operator: cloudwatch.ComparisonOperator
    description: str
    treat_missing_data: cloudwatch.TreatMissingData | None = None


def _metric(
    namespace: str,
    metric_name: str,
    dimensions: dict[str, str],
    statistic: str = "Average",
    period: Duration | None = None,
    unit: cloudwatch.Unit | None = None,
) -> cloudwatch.Metric:
    return cloudwatch.Metric(
        namespace=namespace,
        metric_name=metric_name,
        dimensions_map=dimensions,
        statistic=statistic,
        period=period or Duration.minutes(5),
        unit=unit,
    )


class MonitoringStack(Stack):
    """
    CloudWatch dashboard and threshold alarms for the CRM deployment.

    Creates:
    - Production dashboard with one row per component
    - SNS topic with email subscription (only with alert_email)
    - Eight threshold alarms on that topic (only with alert_email)
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        resource_prefix: str,
        export_prefix: str,
        database: DatabaseOutputs,
        compute: ComputeOutputs,
        storage: StorageOutputs,
        alert_email: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        dashboard_name = f"{export_prefix}-CRM-Production"
        cluster_name = compute.cluster.cluster_name
        load_balancer_name = compute.load_balancer.load_balancer_full_name

        # =================================================================
        # SNS Topic for Alarms
        # =================================================================

        alarm_topic: sns.Topic | None = None
        if alert_email:
            alarm_topic = sns.Topic(
                self,
                "AlarmTopic",
                topic_name=f"{resource_prefix}-crm-alerts",
                display_name=f"{export_prefix} CRM Monitoring Alerts",
            )
            alarm_topic.add_subscription(sns_subscriptions.EmailSubscription(alert_email))

        # =================================================================
        # Metrics
        # =================================================================

        # Aurora metrics
        db_dimensions = {"DBClusterIdentifier": database.cluster_identifier}
        aurora_acu = _metric("AWS/RDS", "ACUUtilization", db_dimensions)
        aurora_cpu = _metric("AWS/RDS", "CPUUtilization", db_dimensions)
        db_connections = _metric("AWS/RDS", "DatabaseConnections", db_dimensions)
        db_capacity = _metric("AWS/RDS", "ServerlessDatabaseCapacity", db_dimensions)
        db_read_latency = _metric(
            "AWS/RDS", "ReadLatency", db_dimensions, unit=cloudwatch.Unit.MILLISECONDS
        )
        db_write_latency = _metric(
            "AWS/RDS", "WriteLatency", db_dimensions, unit=cloudwatch.Unit.MILLISECONDS
        )

        # ECS metrics
        server_dimensions = {
            "ClusterName": cluster_name,
            "ServiceName": compute.server_service.service_name,
        }
        worker_dimensions = {
            "ClusterName": cluster_name,
            "ServiceName": compute.worker_service.service_name,
        }
        server_cpu = _metric("AWS/ECS", "CPUUtilization", server_dimensions)
        server_memory = _metric("AWS/ECS", "MemoryUtilization", server_dimensions)
        worker_cpu = _metric("AWS/ECS", "CPUUtilization", worker_dimensions)
        worker_memory = _metric("AWS/ECS", "MemoryUtilization", worker_dimensions)

        # ALB metrics
        alb_dimensions = {"LoadBalancer": load_balancer_name}
        target_dimensions = {
            "LoadBalancer": load_balancer_name,
            "TargetGroup": compute.target_group.target_group_full_name,
        }
        request_count = _metric("AWS/ApplicationELB", "RequestCount", alb_dimensions, "Sum")
        response_time = _metric(
            "AWS/ApplicationELB",
            "TargetResponseTime",
            alb_dimensions,
            unit=cloudwatch.Unit.SECONDS,
        )
        healthy_hosts = _metric(
            "AWS/ApplicationELB",
            "HealthyHostCount",
            target_dimensions,
            period=Duration.minutes(1),
        )
        unhealthy_hosts = _metric(
            "AWS/ApplicationELB",
            "UnHealthyHostCount",
            target_dimensions,
            period=Duration.minutes(1),
        )
        http_2xx = _metric("AWS/ApplicationELB", "HTTPCode_Target_2XX_Count", alb_dimensions, "Sum")
        http_4xx = _metric("AWS/ApplicationELB", "HTTPCode_Target_4XX_Count", alb_dimensions, "Sum")
        http_5xx = _metric("AWS/ApplicationELB", "HTTPCode_Target_5XX_Count", alb_dimensions, "Sum")

        # Redis metrics
        redis_dimensions = {"CacheClusterId": database.redis_cluster_id}
        redis_cpu = _metric("AWS/ElastiCache", "CPUUtilization", redis_dimensions)
        redis_memory = _metric("AWS/ElastiCache", "DatabaseMemoryUsagePercentage", redis_dimensions)
        redis_connections = _metric("AWS/ElastiCache", "CurrConnections", redis_dimensions)
        redis_evictions = _metric("AWS/ElastiCache", "Evictions", redis_dimensions, "Sum")

        # S3 storage metrics (published once a day)
        bucket_size = _metric(
            "AWS/S3",
            "BucketSizeBytes",
            {"BucketName": storage.bucket.bucket_name, "StorageType": "StandardStorage"},
            period=Duration.days(1),
        )
        bucket_objects = _metric(
            "AWS/S3",
            "NumberOfObjects",
            {"BucketName": storage.bucket.bucket_name, "StorageType": "AllStorageTypes"},
            period=Duration.days(1),
        )

        # =================================================================
        # Alarms
        # =================================================================

        alarms: list[cloudwatch.Alarm] = []
        if alarm_topic:
            alarm_action = cw_actions.SnsAction(alarm_topic)
            greater = cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD
            not_breaching = cloudwatch.TreatMissingData.NOT_BREACHING

            alarm_definitions = [
                AlarmDefinition(
                    "AuroraCpuHighAlarm",
                    "Aurora-CPU-High",
                    aurora_cpu,
                    threshold=90,
                    evaluation_periods=2,
                    comparison_operator=greater,
                    description="Aurora CPU exceeds 90% - consider scaling up ACU capacity",
                ),
                AlarmDefinition(
                    "AuroraAcuHighAlarm",
                    "Aurora-ACU-High",
                    aurora_acu,
                    threshold=80,
                    evaluation_periods=3,
                    comparison_operator=greater,
                    description="Aurora ACU utilization exceeds 80% - increase aurora_max_capacity",
                ),
                AlarmDefinition(
                    "ServerCpuHighAlarm",
                    "Server-CPU-High",
                    server_cpu,
                    threshold=85,
                    evaluation_periods=2,
                    comparison_operator=greater,
                    description="Server CPU exceeds 85% - consider increasing server_cpu",
                ),
                AlarmDefinition(
                    "WorkerMemoryHighAlarm",
                    "Worker-Memory-High",
                    worker_memory,
                    threshold=85,
                    evaluation_periods=2,
                    comparison_operator=greater,
                    description="Worker memory exceeds 85% - consider increasing worker_memory",
                ),
                AlarmDefinition(
                    "UnhealthyHostAlarm",
                    "Unhealthy-Hosts",
                    healthy_hosts,
                    threshold=1,
                    evaluation_periods=2,
                    comparison_operator=cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD,
                    description="No healthy hosts available - service may be down",
                ),
                AlarmDefinition(
                    "Http5xxHighAlarm",
                    "HTTP-5xx-High",
                    http_5xx,
                    threshold=10,
                    evaluation_periods=1,
                    comparison_operator=greater,
                    description="More than 10 5xx errors in 5 minutes - check application logs",
                    treat_missing_data=not_breaching,
                ),
                AlarmDefinition(
                    "ResponseTimeHighAlarm",
                    "Response-Time-High",
                    response_time.with_(statistic="p99"),
                    threshold=2,
                    evaluation_periods=2,
                    comparison_operator=greater,
                    description="P99 response time exceeds 2 seconds - investigate performance",
                    treat_missing_data=not_breaching,
                ),
                AlarmDefinition(
                    "RedisMemoryHighAlarm",
                    "Redis-Memory-High",
                    redis_memory,
                    threshold=80,
                    evaluation_periods=2,
                    comparison_operator=greater,
                    description="Redis memory exceeds 80% - consider larger instance",
                ),
            ]

            for definition in alarm_definitions:
                alarm = cloudwatch.Alarm(
                    self,
                    definition.construct_id,
                    alarm_name=f"{export_prefix}-{definition.name_suffix}",
                    alarm_description=definition.description,
                    metric=definition.metric,
                    threshold=definition.threshold,
                    evaluation_periods=definition.evaluation_periods,
                    datapoints_to_alarm=definition.evaluation_periods,
                    comparison_operator=definition.comparison_operator,
                    treat_missing_data=definition.treat_missing_data,
                    actions_enabled=True,
                )
                alarm.add_alarm_action(alarm_action)
                alarms.append(alarm)

        # =================================================================
        # Dashboard
        # =================================================================

        dashboard = cloudwatch.Dashboard(
            self,
            "Dashboard",
            dashboard_name=dashboard_name,
            period_override=cloudwatch.PeriodOverride.AUTO,
            default_interval=Duration.hours(3),
        )

        alert_status = (
            f"Alerts configured: {alert_email}" if alert_email else "No alert email configured"
        )
        console = f"https://{self.region}.console.aws.amazon.com"

        # Row 1: Header
        dashboard.add_widgets(
            cloudwatch.TextWidget(
                markdown="\n".join(
                    [
                        f"# {export_prefix} CRM - Production Monitoring Dashboard",
                        "",
                        f"**Region:** {self.region}",
                        "",
                        "## Quick Links",
                        f"- [ECS Services]({console}/ecs/v2/clusters/{cluster_name}/services)",
                        f"- [RDS Database]({console}/rds/home?region={self.region}"
                        f"#database:id={database.cluster_identifier})",
                        f"- [Application Logs]({console}/cloudwatch/home?region={self.region}"
                        "#logsV2:log-groups)",
                        "",
                        "## Alert Status",
                        alert_status,
                    ]
                ),
                width=24,
                height=4,
            ),
        )

        # Row 2: Aurora
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="Aurora ACU Utilization (%)",
                left=[aurora_acu],
                left_y_axis=cloudwatch.YAxisProps(min=0, max=100),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Aurora CPU & Connections",
                left=[aurora_cpu],
                right=[db_connections],
                left_y_axis=cloudwatch.YAxisProps(label="CPU %", min=0, max=100),
                right_y_axis=cloudwatch.YAxisProps(label="Connections"),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Database Read/Write Latency (ms)",
                left=[db_read_latency, db_write_latency],
                left_y_axis=cloudwatch.YAxisProps(label="Milliseconds"),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Serverless Database Capacity (ACU)",
                left=[db_capacity],
                left_y_axis=cloudwatch.YAxisProps(label="ACU", min=0),
                width=12,
                height=6,
            ),
        )

        # Row 3: ECS services
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="Server Service - CPU & Memory (%)",
                left=[server_cpu, server_memory],
                left_y_axis=cloudwatch.YAxisProps(min=0, max=100),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Worker Service - CPU & Memory (%)",
                left=[worker_cpu, worker_memory],
                left_y_axis=cloudwatch.YAxisProps(min=0, max=100),
                width=12,
                height=6,
            ),
        )

        # Row 4: Load balancer
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="ALB Request Count & Response Time",
                left=[request_count],
                right=[response_time],
                left_y_axis=cloudwatch.YAxisProps(label="Requests"),
                right_y_axis=cloudwatch.YAxisProps(label="Seconds"),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="HTTP Status Codes",
                left=[http_2xx, http_4xx, http_5xx],
                left_y_axis=cloudwatch.YAxisProps(label="Count"),
                width=6,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Target Health",
                left=[healthy_hosts, unhealthy_hosts],
                left_y_axis=cloudwatch.YAxisProps(label="Hosts", min=0),
                width=6,
                height=6,
            ),
        )

        # Row 5: Redis
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="Redis CPU & Memory (%)",
                left=[redis_cpu, redis_memory],
                left_y_axis=cloudwatch.YAxisProps(min=0, max=100),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Redis Connections & Evictions",
                left=[redis_connections],
                right=[redis_evictions],
                left_y_axis=cloudwatch.YAxisProps(label="Connections"),
                right_y_axis=cloudwatch.YAxisProps(label="Evictions"),
                width=12,
                height=6,
            ),
        )

        # Row 6: Storage
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="Storage Bucket Size",
                left=[bucket_size],
                left_y_axis=cloudwatch.YAxisProps(label="Bytes", min=0),
                width=12,
                height=6,
            ),
            cloudwatch.GraphWidget(
                title="Storage Object Count",
                left=[bucket_objects],
                left_y_axis=cloudwatch.YAxisProps(label="Objects", min=0),
                width=12,
                height=6,
            ),
        )

        # Row 7: Alarm Status
        if alarms:
            dashboard.add_widgets(
                cloudwatch.AlarmStatusWidget(
                    title="Alarm Status",
                    alarms=alarms,
                    width=24,
                    height=4,
                ),
            )

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "DashboardURL",
            value=dashboard_url(self.region, dashboard_name),
            description="CloudWatch Dashboard URL",
            export_name=f"{export_prefix}DashboardURL",
        )

        if alarm_topic:
            CfnOutput(
                self,
                "AlarmTopicArn",
                value=alarm_topic.topic_arn,
                description="SNS Topic ARN for alarms",
                export_name=f"{export_prefix}AlarmTopicArn",
            )

        self.outputs = MonitoringOutputs(
            dashboard=dashboard,
            alarm_topic=alarm_topic,
            alarms=tuple(alarms),
        )
