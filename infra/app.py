#!/usr/bin/env python3
"""
AWS CDK app entry point for Twenty CRM infrastructure.

Deploys DEPLOYMENT_DEFAULTS from stacks/config.py unless overridden by CRM_*
environment variables or, above those, the ``deployment`` context key
(cdk.json or ``-c deployment='{...}'``).
"""

import os

import aws_cdk as cdk

from crm_deploy.logging import configure_logging, get_logger
from stacks.composition import compose
from stacks.config import DEPLOYMENT_DEFAULTS, load_deployment_config

configure_logging(
    json_format=os.environ.get("CRM_JSON_LOGS", "").lower() == "true",
    log_level=os.environ.get("CRM_LOG_LEVEL", "INFO"),
)
logger = get_logger("app")

app = cdk.App()

config = load_deployment_config(app.node.try_get_context("deployment"), DEPLOYMENT_DEFAULTS)

# Environment configuration
env = cdk.Environment(
    account=app.node.try_get_context("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
    region=app.node.try_get_context("region") or os.environ.get("CDK_DEFAULT_REGION"),
)

logger.info(
    "deployment_config_loaded",
    resource_prefix=config.resource_prefix,
    environment=config.environment,
    domain=type(config.domain).__name__,
    account=env.account,
    region=env.region,
)

compose(app, config, env=env)

app.synth()
