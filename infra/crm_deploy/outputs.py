"""
CloudFormation stack outputs lookup.

Uses boto3 describe_stacks so `crm-infra outputs` can print the
application URL and resource names after a deploy.
"""

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .logging import get_logger

logger = get_logger(__name__)


class StackOutputsError(Exception):
    """Exception raised when stack outputs cannot be read."""

    pass


def get_cloudformation_client(profile: str | None = None, region: str | None = None) -> Any:
    """
    Get a CloudFormation client.

    Credentials come from the named profile, the environment, or the
    instance role, in the usual boto3 order.
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    return session.client("cloudformation")


def fetch_stack_outputs(
    stack_name: str,
    *,
    profile: str | None = None,
    region: str | None = None,
    client: Any = None,
) -> dict[str, str]:
    """
    Read the outputs of a deployed stack.

    Args:
        stack_name: CloudFormation stack name, e.g. "TwentyCompute"
        profile: AWS profile to use when no client is given
        region: AWS region to use when no client is given
        client: Pre-built CloudFormation client

    Returns:
        Mapping of output key to output value

    Raises:
        StackOutputsError: If the stack does not exist or AWS rejects the call
    """
    try:
        cfn = client or get_cloudformation_client(profile=profile, region=region)
        response = cfn.describe_stacks(StackName=stack_name)
    except ClientError as e:
        error_message = e.response.get("Error", {}).get("Message", str(e))
        logger.error("stack_outputs_failed", stack=stack_name, error=error_message)
        raise StackOutputsError(f"Failed to describe {stack_name}: {error_message}") from e
    except BotoCoreError as e:
        logger.error("stack_outputs_failed", stack=stack_name, error=str(e))
        raise StackOutputsError(f"Failed to describe {stack_name}: {e}") from e

    stacks = response.get("Stacks", [])
    if not stacks:
        raise StackOutputsError(f"Stack {stack_name} not found")

    outputs = {
        output["OutputKey"]: output.get("OutputValue", "")
        for output in stacks[0].get("Outputs", [])
    }
    logger.info("stack_outputs_fetched", stack=stack_name, count=len(outputs))
    return outputs
