"""
Shared fixtures for infrastructure tests.

Each fixture composes a full app from one configuration. Synthesis is slow,
so the common deployments are module scoped.
"""

import os
from typing import Any

import aws_cdk as cdk
import pytest

from stacks.composition import Deployment, compose
from stacks.config import ENV_PREFIX, DeploymentConfig

CERTIFICATE_ARN = "arn:aws:acm:us-east-1:123456789012:certificate/abcd-1234"


@pytest.fixture(scope="session", autouse=True)
def isolated_crm_environment():
    """Keep CRM_* variables from the developer's shell out of every test."""
    with pytest.MonkeyPatch.context() as mp:
        for key in list(os.environ):
            if key.upper().startswith(ENV_PREFIX):
                mp.delenv(key)
        yield


def build_deployment(validate: bool = True, **overrides: Any) -> Deployment:
    """Compose every stack into a fresh app."""
    app = cdk.App()
    return compose(app, DeploymentConfig(**overrides), validate=validate)


def resolve_join(value: Any) -> str:
    """
    Flatten a CloudFormation string expression for pattern matching.

    Literals are kept, Ref becomes ``ref(<LogicalId>)`` and Fn::GetAtt becomes
    ``getatt(<LogicalId>.<Attribute>)``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if "Ref" in value:
        return f"ref({value['Ref']})"
    if "Fn::GetAtt" in value:
        logical_id, attribute = value["Fn::GetAtt"]
        return f"getatt({logical_id}.{attribute})"
    if "Fn::Join" in value:
        delimiter, parts = value["Fn::Join"]
        return delimiter.join(resolve_join(part) for part in parts)
    raise ValueError(f"Unsupported expression: {value!r}")


@pytest.fixture(scope="module")
def no_domain_deployment() -> Deployment:
    return build_deployment()


@pytest.fixture(scope="module")
def domain_deployment() -> Deployment:
    return build_deployment(
        domain_name="crm.example.com",
        certificate_arn=CERTIFICATE_ARN,
        hosted_zone_id="Z0123456789ABC",
        hosted_zone_name="example.com",
        aurora_min_capacity=0.5,
        aurora_max_capacity=1,
        alert_email="ops@example.com",
    )
