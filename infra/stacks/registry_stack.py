"""
Registry stack - AWS Service Catalog AppRegistry application.

Groups every CRM stack under one application (myApplications) for cost
tracking, with project and technical metadata as attribute groups.
"""

from aws_cdk import Aws, Stack
from aws_cdk import aws_servicecatalogappregistry as appregistry
from constructs import Construct

APPLICATION_VERSION = "1.0.0"


class RegistryStack(Stack):
    """Registers the given stacks with an AppRegistry application."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        export_prefix: str,
        environment: str,
        owner: str,
        stacks: list[Stack],
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        application_name = f"{export_prefix}-CRM"
        description = f"{export_prefix} CRM - Cost-optimized deployment for small teams"

        self.application = appregistry.CfnApplication(
            self,
            "Application",
            name=application_name,
            description=description,
        )

        project_attributes = appregistry.CfnAttributeGroup(
            self,
            "ProjectAttributes",
            name=f"{application_name}-ProjectInfo",
            description=f"Project and business metadata for {export_prefix} CRM",
            attributes={
                "version": APPLICATION_VERSION,
                "environment": environment,
                "owner": owner,
                "team": "Engineering",
                "project": f"{export_prefix} CRM",
                "costCenter": "Operations",
            },
        )

        technical_attributes = appregistry.CfnAttributeGroup(
            self,
            "TechnicalAttributes",
            name=f"{application_name}-TechnicalInfo",
            description=f"Technical architecture metadata for {export_prefix} CRM",
            attributes={
                "architecture": "serverless",
                "components": {
                    "compute": "ECS Fargate",
                    "database": "Aurora Serverless v2",
                    "cache": "ElastiCache Redis",
                    "storage": "S3",
                    "loadBalancer": "Application Load Balancer",
                    "monitoring": "CloudWatch",
                },
                "region": Aws.REGION,
                "managedBy": "AWS CDK",
            },
        )

        for association_id, attribute_group in (
            ("ProjectAttributesAssociation", project_attributes),
            ("TechnicalAttributesAssociation", technical_attributes),
        ):
            appregistry.CfnAttributeGroupAssociation(
                self,
                association_id,
                application=self.application.attr_id,
                attribute_group=attribute_group.attr_id,
            )

        for stack in stacks:
            appregistry.CfnResourceAssociation(
                self,
                f"{stack.node.id}Association",
                application=self.application.attr_id,
                resource=stack.stack_name,
                resource_type="CFN_STACK",
            )
            # The association needs the stack to exist first
            self.add_dependency(stack)
