"""
Tests for the compute stack: workloads, load balancer and listener wiring.
"""

import json

import pytest
from aws_cdk.assertions import Match, Template

from stacks.composition import Deployment
from stacks.compute_stack import (
    build_common_environment,
    capacity_provider_strategies,
    server_environment,
    worker_environment,
)
from tests.conftest import CERTIFICATE_ARN, build_deployment, resolve_join


@pytest.fixture(scope="module")
def http_template(no_domain_deployment: Deployment) -> Template:
    return Template.from_stack(no_domain_deployment.compute)


@pytest.fixture(scope="module")
def https_template(domain_deployment: Deployment) -> Template:
    return Template.from_stack(domain_deployment.compute)


def _environment_entry(name: str, value: str) -> dict:
    return {"Name": name, "Value": value}


def _assert_worker_flags(template: Template) -> None:
    for name in ("DISABLE_DB_MIGRATIONS", "DISABLE_CRON_JOBS_REGISTRATION"):
        template.has_resource_properties(
            "AWS::ECS::TaskDefinition",
            {
                "ContainerDefinitions": [
                    Match.object_like(
                        {
                            "Name": "WorkerContainer",
                            "Environment": Match.array_with([_environment_entry(name, "true")]),
                        }
                    )
                ]
            },
        )


class TestWithoutDomain:
    """Tests for the plain HTTP deployment (no domain configured)."""

    def test_single_forwarding_http_listener(self, http_template: Template) -> None:
        """Should declare exactly one HTTP listener forwarding to the server."""
        http_template.resource_count_is("AWS::ElasticLoadBalancingV2::Listener", 1)
        http_template.has_resource_properties(
            "AWS::ElasticLoadBalancingV2::Listener",
            {
                "Port": 80,
                "Protocol": "HTTP",
                "DefaultActions": [Match.object_like({"Type": "forward"})],
            },
        )

    def test_no_dns_records(self, http_template: Template) -> None:
        """Should not create any Route 53 records."""
        http_template.resource_count_is("AWS::Route53::RecordSet", 0)

    def test_url_is_load_balancer_over_http(self, http_template: Template) -> None:
        """Should derive the URL from the load balancer DNS name."""
        load_balancer = next(
            iter(http_template.find_resources("AWS::ElasticLoadBalancingV2::LoadBalancer"))
        )

        http_template.has_output(
            "ApplicationURL",
            {
                "Value": {
                    "Fn::Join": ["", ["http://", {"Fn::GetAtt": [load_balancer, "DNSName"]}]]
                }
            },
        )

    def test_outputs_record_url_is_not_https(self, no_domain_deployment: Deployment) -> None:
        """Should expose an HTTP server URL downstream."""
        assert no_domain_deployment.compute.outputs.server_url.startswith("http://")
        assert len(no_domain_deployment.compute.outputs.listeners) == 1


class TestWithDomain:
    """Tests for the HTTPS deployment (domain, certificate and hosted zone)."""

    def test_https_and_redirect_listeners(self, https_template: Template) -> None:
        """Should declare a forwarding HTTPS listener and a redirecting HTTP listener."""
        https_template.resource_count_is("AWS::ElasticLoadBalancingV2::Listener", 2)
        https_template.has_resource_properties(
            "AWS::ElasticLoadBalancingV2::Listener",
            {
                "Port": 443,
                "Protocol": "HTTPS",
                "Certificates": [{"CertificateArn": CERTIFICATE_ARN}],
                "DefaultActions": [Match.object_like({"Type": "forward"})],
            },
        )
        https_template.has_resource_properties(
            "AWS::ElasticLoadBalancingV2::Listener",
            {
                "Port": 80,
                "Protocol": "HTTP",
                "DefaultActions": [
                    {
                        "Type": "redirect",
                        "RedirectConfig": {
                            "Protocol": "HTTPS",
                            "Port": "443",
                            "StatusCode": "HTTP_301",
                        },
                    }
                ],
            },
        )

    def test_single_alias_record(self, https_template: Template) -> None:
        """Should point the domain at the load balancer."""
        https_template.resource_count_is("AWS::Route53::RecordSet", 1)
        https_template.has_resource_properties(
            "AWS::Route53::RecordSet",
            {
                "Name": "crm.example.com.",
                "Type": "A",
                "HostedZoneId": "Z0123456789ABC",
                "AliasTarget": Match.object_like({"DNSName": Match.any_value()}),
            },
        )

    def test_url_is_domain_over_https(self, https_template: Template) -> None:
        """Should use the custom domain as the application URL."""
        https_template.has_output("ApplicationURL", {"Value": "https://crm.example.com"})
        https_template.has_resource_properties(
            "AWS::ECS::TaskDefinition",
            {
                "ContainerDefinitions": [
                    Match.object_like(
                        {
                            "Name": "ServerContainer",
                            "Environment": Match.array_with(
                                [_environment_entry("SERVER_URL", "https://crm.example.com")]
                            ),
                        }
                    )
                ]
            },
        )

    def test_domain_without_zone_has_no_record(self) -> None:
        """Should still wire HTTPS but skip DNS when no zone is configured."""
        deployment = build_deployment(
            validate=False,
            domain_name="crm.example.com",
            certificate_arn=CERTIFICATE_ARN,
        )
        template = Template.from_stack(deployment.compute)

        template.resource_count_is("AWS::ElasticLoadBalancingV2::Listener", 2)
        template.resource_count_is("AWS::Route53::RecordSet", 0)
        assert deployment.compute.outputs.server_url == "https://crm.example.com"


class TestWorkloads:
    """Tests for the server and worker task definitions and services."""

    def test_worker_disables_migrations_and_cron(
        self, http_template: Template, https_template: Template
    ) -> None:
        """Should disable migrations and cron registration on the worker in every variant."""
        _assert_worker_flags(http_template)
        _assert_worker_flags(https_template)

    def test_worker_flags_survive_other_settings(self) -> None:
        """Should keep the worker flags with on-demand capacity and larger tasks."""
        deployment = build_deployment(
            validate=False,
            use_fargate_spot=False,
            worker_cpu=1024,
            worker_memory=4096,
        )

        _assert_worker_flags(Template.from_stack(deployment.compute))

    def test_server_owns_cron_jobs(self, http_template: Template) -> None:
        """Should register cron jobs on the server."""
        http_template.has_resource_properties(
            "AWS::ECS::TaskDefinition",
            {
                "ContainerDefinitions": [
                    Match.object_like(
                        {
                            "Name": "ServerContainer",
                            "Environment": Match.array_with(
                                [_environment_entry("DISABLE_CRON_JOBS_REGISTRATION", "false")]
                            ),
                            "PortMappings": [{"ContainerPort": 3000, "Protocol": "tcp"}],
                        }
                    )
                ]
            },
        )

    def test_worker_command(self, http_template: Template) -> None:
        """Should start the worker with the worker entry point."""
        http_template.has_resource_properties(
            "AWS::ECS::TaskDefinition",
            {
                "ContainerDefinitions": [
                    Match.object_like(
                        {"Name": "WorkerContainer", "Command": ["yarn", "worker:prod"]}
                    )
                ]
            },
        )

    def test_task_sizes(self, http_template: Template) -> None:
        """Should size the server at 512/1024 and the worker at 256/1024."""
        http_template.has_resource_properties(
            "AWS::ECS::TaskDefinition", {"Cpu": "512", "Memory": "1024"}
        )
        http_template.has_resource_properties(
            "AWS::ECS::TaskDefinition", {"Cpu": "256", "Memory": "1024"}
        )

    @pytest.mark.parametrize("name", ["PG_DATABASE_URL", "APP_SECRET"])
    def test_secrets_injected(self, http_template: Template, name: str) -> None:
        """Should inject the database URL and app secret from Secrets Manager."""
        for container in ("ServerContainer", "WorkerContainer"):
            http_template.has_resource_properties(
                "AWS::ECS::TaskDefinition",
                {
                    "ContainerDefinitions": [
                        Match.object_like(
                            {
                                "Name": container,
                                "Secrets": Match.array_with(
                                    [Match.object_like({"Name": name})]
                                ),
                            }
                        )
                    ]
                },
            )

    def test_two_spot_services(self, http_template: Template) -> None:
        """Should run one server and one worker task on Fargate Spot."""
        http_template.resource_count_is("AWS::ECS::Service", 2)
        http_template.has_resource_properties(
            "AWS::ECS::Service",
            {
                "DesiredCount": 1,
                "EnableExecuteCommand": True,
                "CapacityProviderStrategy": [
                    {"CapacityProvider": "FARGATE_SPOT", "Weight": 1, "Base": 0}
                ],
            },
        )

    def test_target_group_stickiness_and_health(self, http_template: Template) -> None:
        """Should check /healthz and pin clients with a one-day app cookie."""
        http_template.has_resource_properties(
            "AWS::ElasticLoadBalancingV2::TargetGroup",
            {
                "Port": 3000,
                "TargetType": "ip",
                "HealthCheckPath": "/healthz",
                "HealthyThresholdCount": 2,
                "UnhealthyThresholdCount": 3,
            },
        )
        for attribute in (
            {"Key": "stickiness.enabled", "Value": "true"},
            {"Key": "stickiness.type", "Value": "app_cookie"},
            {"Key": "stickiness.app_cookie.cookie_name", "Value": "TWENTYCRM_STICKY"},
            {"Key": "stickiness.app_cookie.duration_seconds", "Value": "86400"},
            {"Key": "deregistration_delay.timeout_seconds", "Value": "30"},
        ):
            http_template.has_resource_properties(
                "AWS::ElasticLoadBalancingV2::TargetGroup",
                {"TargetGroupAttributes": Match.array_with([attribute])},
            )

    def test_outputs_for_cli(self, http_template: Template) -> None:
        """Should export the URL and publish cluster and service names."""
        http_template.has_output("ApplicationURL", {"Export": {"Name": "TwentyApplicationURL"}})
        for key in ("LoadBalancerDNS", "ClusterName", "ServerServiceName", "WorkerServiceName"):
            http_template.has_output(key, Match.any_value())


class TestEnvironmentHelpers:
    """Tests for the container environment builders."""

    @pytest.fixture
    def common(self) -> dict[str, str]:
        return build_common_environment(
            server_url="https://crm.example.com",
            redis_endpoint="redis://cache:6379",
            bucket_name="twenty-storage",
            region="us-east-1",
        )

    def test_common_environment(self, common: dict[str, str]) -> None:
        """Should point both workloads at S3, Redis and the public URL."""
        assert common["SERVER_URL"] == "https://crm.example.com"
        assert common["REDIS_URL"] == "redis://cache:6379"
        assert common["STORAGE_TYPE"] == "s3"
        assert common["STORAGE_S3_NAME"] == "twenty-storage"
        assert common["NODE_PORT"] == "3000"

    def test_worker_overrides_common_flags(self, common: dict[str, str]) -> None:
        """Should force the worker flags even if the shared environment enables them."""
        env = worker_environment(
            {**common, "DISABLE_DB_MIGRATIONS": "false", "DISABLE_CRON_JOBS_REGISTRATION": "false"}
        )

        assert env["DISABLE_DB_MIGRATIONS"] == "true"
        assert env["DISABLE_CRON_JOBS_REGISTRATION"] == "true"

    def test_server_keeps_migrations(self, common: dict[str, str]) -> None:
        """Should leave migrations enabled on the server."""
        env = server_environment(common)

        assert "DISABLE_DB_MIGRATIONS" not in env
        assert env["DISABLE_CRON_JOBS_REGISTRATION"] == "false"


class TestCapacityProviders:
    """Tests for Fargate capacity provider selection."""

    def test_spot(self) -> None:
        """Should use Fargate Spot only when enabled."""
        (strategy,) = capacity_provider_strategies(True)

        assert strategy.capacity_provider == "FARGATE_SPOT"

    def test_on_demand(self) -> None:
        """Should keep one on-demand task as base when Spot is disabled."""
        (strategy,) = capacity_provider_strategies(False)

        assert strategy.capacity_provider == "FARGATE"
        assert strategy.base == 1


def _role_logical_id(template: Template, prefix: str) -> str:
    (logical_id,) = [
        logical_id
        for logical_id in template.find_resources("AWS::IAM::Role")
        if logical_id.startswith(prefix)
    ]
    return logical_id


def _policy_statements(template: Template, role_logical_id: str) -> list[dict]:
    statements = []
    for policy in template.find_resources("AWS::IAM::Policy").values():
        if {"Ref": role_logical_id} in policy["Properties"]["Roles"]:
            statements += policy["Properties"]["PolicyDocument"]["Statement"]
    return statements


def _actions(statements: list[dict]) -> set[str]:
    actions: set[str] = set()
    for statement in statements:
        action = statement["Action"]
        actions.update([action] if isinstance(action, str) else action)
    return actions


def _secret_resources(statements: list[dict]) -> set[str]:
    resources: set[str] = set()
    for statement in statements:
        if "secretsmanager:GetSecretValue" not in _actions([statement]):
            continue
        resource = statement["Resource"]
        for item in resource if isinstance(resource, list) else [resource]:
            resources.add(json.dumps(item, sort_keys=True))
    return resources


class TestIam:
    """Tests for the task and execution role permissions."""

    @pytest.fixture(scope="class")
    def task_statements(self, http_template: Template) -> list[dict]:
        return _policy_statements(http_template, _role_logical_id(http_template, "TaskRole"))

    @pytest.fixture(scope="class")
    def execution_statements(self, http_template: Template) -> list[dict]:
        return _policy_statements(http_template, _role_logical_id(http_template, "ExecutionRole"))

    def test_roles_assumed_by_ecs_tasks(self, http_template: Template) -> None:
        http_template.resource_count_is("AWS::IAM::Role", 2)
        http_template.all_resources_properties(
            "AWS::IAM::Role",
            {
                "AssumeRolePolicyDocument": Match.object_like(
                    {
                        "Statement": [
                            Match.object_like(
                                {"Principal": {"Service": "ecs-tasks.amazonaws.com"}}
                            )
                        ]
                    }
                )
            },
        )

    def test_task_role_reads_and_writes_bucket_objects(self, task_statements: list[dict]) -> None:
        """Should let the application read, write and delete bucket objects."""
        actions = _actions(task_statements)

        assert {"s3:GetObject*", "s3:PutObject", "s3:DeleteObject*"} <= actions

    def test_task_role_reads_both_secrets(self, task_statements: list[dict]) -> None:
        """Should grant read on the connection-string secret and the app secret."""
        assert len(_secret_resources(task_statements)) == 2

    def test_task_role_has_no_managed_policy(self, http_template: Template) -> None:
        roles = http_template.find_resources("AWS::IAM::Role")
        task_role = roles[_role_logical_id(http_template, "TaskRole")]

        assert "ManagedPolicyArns" not in task_role["Properties"]

    def test_execution_role_reads_both_secrets(self, execution_statements: list[dict]) -> None:
        """Should let the ECS agent inject both secrets into the containers."""
        assert "secretsmanager:GetSecretValue" in _actions(execution_statements)
        assert len(_secret_resources(execution_statements)) == 2

    def test_execution_role_has_no_bucket_access(self, execution_statements: list[dict]) -> None:
        """Should keep storage permissions off the execution role."""
        actions = _actions(execution_statements)

        assert not [action for action in actions if action.startswith("s3:")]
        assert actions <= {
            "secretsmanager:GetSecretValue",
            "secretsmanager:DescribeSecret",
            "logs:CreateLogStream",
            "logs:PutLogEvents",
        }

    def test_execution_role_uses_managed_execution_policy(self, http_template: Template) -> None:
        roles = http_template.find_resources("AWS::IAM::Role")
        execution_role = roles[_role_logical_id(http_template, "ExecutionRole")]
        (policy_arn,) = execution_role["Properties"]["ManagedPolicyArns"]

        assert resolve_join(policy_arn).endswith(
            ":iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
        )
