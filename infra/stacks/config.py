"""
Deployment configuration for the Twenty CRM stacks.

The configuration is built once per synthesis and passed explicitly to every
stack. Values come from (highest precedence first):

- the ``deployment`` CDK context key (cdk.json or
  ``cdk synth -c deployment='{"domain_name": "..."}'``)
- environment variables prefixed with ``CRM_`` (e.g. ``CRM_ALERT_EMAIL``)
- ``DEPLOYMENT_DEFAULTS``, the values app.py deploys with
- the field defaults below

Usage:
    from stacks.config import DEPLOYMENT_DEFAULTS, load_deployment_config

    config = load_deployment_config(app.node.try_get_context("deployment"), DEPLOYMENT_DEFAULTS)
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Valid Fargate task sizes: cpu units -> (min memory, max memory, step) in MiB
FARGATE_TASK_SIZES: dict[int, tuple[int, int, int]] = {
    256: (1024, 2048, 1024),
    512: (1024, 4096, 1024),
    1024: (2048, 8192, 1024),
    2048: (4096, 16384, 1024),
    4096: (8192, 30720, 1024),
    8192: (16384, 61440, 4096),
    16384: (32768, 122880, 8192),
}


@dataclass(frozen=True)
class HostedZoneRef:
    """Existing Route 53 hosted zone the application record is created in."""

    zone_id: str
    zone_name: str


@dataclass(frozen=True)
class NoDomain:
    """Application is served over plain HTTP on the load balancer DNS name."""


@dataclass(frozen=True)
class CustomDomain:
    """Application is served over HTTPS on a custom domain."""

    domain_name: str
    certificate_arn: str
    hosted_zone: HostedZoneRef | None = None


DomainConfig = NoDomain | CustomDomain


def is_valid_fargate_size(cpu: int, memory: int) -> bool:
    """Check a cpu/memory pair against the Fargate task size table."""
    if cpu not in FARGATE_TASK_SIZES:
        return False
    low, high, step = FARGATE_TASK_SIZES[cpu]
    if cpu == 256 and memory == 512:
        return True
    return low <= memory <= high and (memory - low) % step == 0


ENV_PREFIX = "CRM_"

# What app.py deploys when nothing else is configured
DEPLOYMENT_DEFAULTS: dict[str, Any] = {
    "resource_prefix": "twenty",
    "environment": "production",
    "aurora_min_capacity": 0.5,
    "aurora_max_capacity": 1,
    "database_deletion_protection": False,
    "server_cpu": 512,
    "server_memory": 1024,
    "worker_cpu": 256,
    "worker_memory": 1024,
    "use_fargate_spot": True,
    "container_image": "twentycrm/twenty:latest",
}


class DeploymentConfig(BaseSettings):
    """Immutable deployment parameters shared by every stack."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, frozen=True, extra="forbid")

    # Naming
    resource_prefix: str = Field(default="twenty", pattern=r"^[a-z][a-z0-9-]{1,30}$")
    environment: str = "production"

    # Domain configuration
    domain_name: str | None = None
    hosted_zone_id: str | None = None
    hosted_zone_name: str | None = None
    certificate_arn: str | None = None

    # Database configuration (Aurora capacity units)
    aurora_min_capacity: float = Field(default=0.5, ge=0, le=256)
    aurora_max_capacity: float = Field(default=1, ge=1, le=256)
    database_deletion_protection: bool = False

    # Compute configuration (Fargate cpu units / MiB)
    server_cpu: int = 512
    server_memory: int = 1024
    worker_cpu: int = 256
    worker_memory: int = 1024
    use_fargate_spot: bool = True
    container_image: str = "twentycrm/twenty:latest"

    # Network configuration
    max_azs: int = Field(default=2, ge=2, le=6)
    nat_gateways: int = Field(default=1, ge=1)

    # CloudWatch alerts
    alert_email: str | None = None

    @field_validator("aurora_min_capacity", "aurora_max_capacity")
    @classmethod
    def _half_acu_steps(cls, value: float) -> float:
        if (value * 2) != int(value * 2):
            raise ValueError("Aurora capacity must be a multiple of 0.5 ACU")
        return value

    @field_validator("alert_email")
    @classmethod
    def _valid_email(cls, value: str | None) -> str | None:
        if value is not None and not EMAIL_PATTERN.match(value):
            raise ValueError(f"Invalid alert email address: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "DeploymentConfig":
        if self.aurora_min_capacity > self.aurora_max_capacity:
            raise ValueError("aurora_min_capacity must not exceed aurora_max_capacity")

        if self.nat_gateways > self.max_azs:
            raise ValueError("nat_gateways must not exceed max_azs")

        for kind in ("server", "worker"):
            cpu = getattr(self, f"{kind}_cpu")
            memory = getattr(self, f"{kind}_memory")
            if not is_valid_fargate_size(cpu, memory):
                raise ValueError(f"{kind}: {cpu} cpu / {memory} MiB is not a valid Fargate size")

        # Only {no domain} and {domain + certificate [+ zone]} are representable
        if bool(self.domain_name) != bool(self.certificate_arn):
            raise ValueError("domain_name and certificate_arn must be set together")

        if bool(self.hosted_zone_id) != bool(self.hosted_zone_name):
            raise ValueError("hosted_zone_id and hosted_zone_name must be set together")

        if self.hosted_zone_id and not self.domain_name:
            raise ValueError("hosted_zone_id requires domain_name")

        return self

    @property
    def domain(self) -> DomainConfig:
        """Domain variant the compute stack wires listeners for."""
        if not self.domain_name or not self.certificate_arn:
            return NoDomain()

        hosted_zone = None
        if self.hosted_zone_id and self.hosted_zone_name:
            hosted_zone = HostedZoneRef(zone_id=self.hosted_zone_id, zone_name=self.hosted_zone_name)

        return CustomDomain(
            domain_name=self.domain_name,
            certificate_arn=self.certificate_arn,
            hosted_zone=hosted_zone,
        )

    @property
    def display_prefix(self) -> str:
        """Prefix in title case, used for stack ids and export names."""
        return self.resource_prefix.title().replace("-", "")


def load_deployment_config(
    context: dict[str, Any] | str | None = None,
    defaults: dict[str, Any] | None = None,
) -> DeploymentConfig:
    """
    Build the deployment configuration.

    Args:
        context: Value of the ``deployment`` CDK context key. Either a mapping
                 (from cdk.json) or a JSON object string (from ``-c``).
        defaults: Values used where neither the context nor a ``CRM_*``
                  environment variable sets the field.

    Raises:
        ValueError: If the context is not a JSON object.
        pydantic.ValidationError: If the merged values are invalid.
    """
    if isinstance(context, str):
        context = json.loads(context) if context.strip() else {}
    if context is not None and not isinstance(context, dict):
        raise ValueError(f"deployment context must be an object, got {type(context).__name__}")

    # Keyword values outrank the environment, so set ones are left out here
    environment = {key.lower() for key in os.environ}
    values = {
        key: value
        for key, value in (defaults or {}).items()
        if f"{ENV_PREFIX}{key}".lower() not in environment
    }
    values.update(context or {})
    return DeploymentConfig(**values)
