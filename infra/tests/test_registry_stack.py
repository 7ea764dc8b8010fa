"""
Tests for the AppRegistry stack.
"""

import pytest
from aws_cdk.assertions import Template

from stacks.composition import Deployment


@pytest.fixture(scope="module")
def template(no_domain_deployment: Deployment) -> Template:
    return Template.from_stack(no_domain_deployment.registry)


class TestRegistry:
    """Tests for the application registry."""

    def test_application(self, template: Template) -> None:
        """Should register a single application named after the prefix."""
        template.resource_count_is("AWS::ServiceCatalogAppRegistry::Application", 1)
        template.has_resource_properties(
            "AWS::ServiceCatalogAppRegistry::Application", {"Name": "Twenty-CRM"}
        )

    def test_attribute_groups_associated(self, template: Template) -> None:
        """Should attach project and technical attribute groups."""
        template.resource_count_is("AWS::ServiceCatalogAppRegistry::AttributeGroup", 2)
        template.resource_count_is(
            "AWS::ServiceCatalogAppRegistry::AttributeGroupAssociation", 2
        )

    @pytest.mark.parametrize(
        "stack_name",
        ["TwentyNetwork", "TwentyStorage", "TwentyDatabase", "TwentyCompute", "TwentyMonitoring"],
    )
    def test_every_stack_associated(self, template: Template, stack_name: str) -> None:
        """Should associate each CRM stack with the application."""
        template.has_resource_properties(
            "AWS::ServiceCatalogAppRegistry::ResourceAssociation",
            {"Resource": stack_name, "ResourceType": "CFN_STACK"},
        )

    def test_deployed_after_other_stacks(self, no_domain_deployment: Deployment) -> None:
        """Should depend on every stack it associates."""
        dependencies = {stack.node.id for stack in no_domain_deployment.registry.dependencies}

        assert {stack.node.id for stack in no_domain_deployment.stacks[:-1]} <= dependencies
