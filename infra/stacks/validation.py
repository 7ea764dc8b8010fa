"""
CDK validation aspects for pre-deployment checks.

These aspects run during `cdk synth` and add warnings/info annotations,
catching risky settings before deployment.

Usage:
    from stacks.validation import add_validation_aspects
    add_validation_aspects(app)
"""

import aws_cdk as cdk
import jsii
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_rds as rds
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_secretsmanager as secretsmanager
from constructs import IConstruct


@jsii.implements(cdk.IAspect)
class ProductionReadinessAspect:
    """
    Validates production-readiness requirements for deployed resources.

    Checks:
    - Aurora clusters have deletion protection enabled
    - ECS services running a single task (no HA, Spot interruptions cause downtime)
    """

    def __init__(self, enforce_deletion_protection: bool = True, report_single_task: bool = True):
        self._enforce_deletion_protection = enforce_deletion_protection
        self._report_single_task = report_single_task

    def visit(self, node: IConstruct) -> None:
        if self._enforce_deletion_protection and isinstance(node, rds.CfnDBCluster):
            if not node.deletion_protection:
                cdk.Annotations.of(node).add_warning_v2(
                    "crm:database-deletion-protection",
                    "Aurora cluster has deletion protection disabled; "
                    "set database_deletion_protection=true for production",
                )

        if self._report_single_task and isinstance(node, ecs.FargateService):
            service: ecs.CfnService = node.node.default_child
            # ECS starts one task when the count is left unset
            if (service.desired_count or 1) <= 1:
                cdk.Annotations.of(node).add_info(
                    "Service runs a single task; expect downtime during deployments "
                    "and Fargate Spot interruptions"
                )


def allows_any_origin(bucket: s3.CfnBucket) -> bool:
    """Whether any CORS rule of the bucket accepts the ``*`` origin."""
    # The L2 bucket renders its rules lazily, so resolve before reading them
    cors = cdk.Stack.of(bucket).resolve(bucket.cors_configuration) or {}
    return any("*" in rule.get("allowedOrigins", []) for rule in cors.get("corsRules", []))


@jsii.implements(cdk.IAspect)
class SecurityAspect:
    """
    Validates security requirements for deployed resources.

    Checks:
    - Secrets whose value is written into the template (not generated)
    - S3 buckets whose CORS rules accept any origin
    """

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, secretsmanager.CfnSecret) and node.secret_string is not None:
            cdk.Annotations.of(node).add_warning_v2(
                "crm:materialized-secret",
                "Secret value is composed at deploy time from other secret material; "
                "prefer injecting individual fields into the workload",
            )

        if isinstance(node, s3.Bucket) and allows_any_origin(node.node.default_child):
            cdk.Annotations.of(node).add_info(
                "Bucket CORS allows any origin; restrict it to the application domain"
            )


def add_validation_aspects(
    scope: cdk.App,
    enforce_deletion_protection: bool = True,
    report_single_task: bool = True,
    enable_security_checks: bool = True,
) -> None:
    """
    Add validation aspects to all stacks in the CDK app.

    Args:
        scope: The CDK App to add aspects to
        enforce_deletion_protection: Whether to check for deletion protection
        report_single_task: Whether to flag single-task services
        enable_security_checks: Whether to run security-related validations
    """
    cdk.Aspects.of(scope).add(
        ProductionReadinessAspect(
            enforce_deletion_protection=enforce_deletion_protection,
            report_single_task=report_single_task,
        )
    )

    if enable_security_checks:
        cdk.Aspects.of(scope).add(SecurityAspect())
