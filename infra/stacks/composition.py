"""
Composition root - builds every CRM stack from one DeploymentConfig.

Stacks are created leaves first and only receive the outputs records they
consume:

    network ─┬─> database ─┬─> compute ──> monitoring
    storage ─┴─────────────┘
"""

from dataclasses import dataclass

import aws_cdk as cdk

from .compute_stack import ComputeStack
from .config import DeploymentConfig
from .database_stack import DatabaseStack
from .monitoring_stack import MonitoringStack
from .network_stack import NetworkStack
from .registry_stack import RegistryStack
from .storage_stack import StorageStack
from .validation import add_validation_aspects

STACK_SUFFIXES = ("Network", "Storage", "Database", "Compute", "Monitoring", "Registry")


@dataclass(frozen=True)
class Deployment:
    network: NetworkStack
    storage: StorageStack
    database: DatabaseStack
    compute: ComputeStack
    monitoring: MonitoringStack
    registry: RegistryStack

    @property
    def stacks(self) -> list[cdk.Stack]:
        return [
            self.network,
            self.storage,
            self.database,
            self.compute,
            self.monitoring,
            self.registry,
        ]


def stack_ids(config: DeploymentConfig) -> dict[str, str]:
    """Stack ids keyed by lowercase role, e.g. {"compute": "TwentyCompute"}."""
    return {suffix.lower(): f"{config.display_prefix}{suffix}" for suffix in STACK_SUFFIXES}


def compose(
    app: cdk.App,
    config: DeploymentConfig,
    env: cdk.Environment | None = None,
    validate: bool = True,
) -> Deployment:
    """Create all stacks in dependency order and apply app-wide tags."""
    ids = stack_ids(config)
    prefix = config.resource_prefix
    export_prefix = config.display_prefix
    description = f"{export_prefix} CRM - Cost-optimized deployment for small teams"

    network = NetworkStack(
        app,
        ids["network"],
        resource_prefix=prefix,
        max_azs=config.max_azs,
        nat_gateways=config.nat_gateways,
        env=env,
        description=f"{description} (network)",
    )

    storage = StorageStack(
        app,
        ids["storage"],
        resource_prefix=prefix,
        export_prefix=export_prefix,
        env=env,
        description=f"{description} (storage)",
    )

    database = DatabaseStack(
        app,
        ids["database"],
        network=network.outputs,
        resource_prefix=prefix,
        export_prefix=export_prefix,
        min_capacity=config.aurora_min_capacity,
        max_capacity=config.aurora_max_capacity,
        deletion_protection=config.database_deletion_protection,
        env=env,
        description=f"{description} (database)",
    )

    compute = ComputeStack(
        app,
        ids["compute"],
        config=config,
        network=network.outputs,
        database=database.outputs,
        storage=storage.outputs,
        env=env,
        description=f"{description} (compute)",
    )

    monitoring = MonitoringStack(
        app,
        ids["monitoring"],
        resource_prefix=prefix,
        export_prefix=export_prefix,
        database=database.outputs,
        compute=compute.outputs,
        storage=storage.outputs,
        alert_email=config.alert_email,
        env=env,
        description=f"{description} (monitoring)",
    )

    registry = RegistryStack(
        app,
        ids["registry"],
        export_prefix=export_prefix,
        environment=config.environment,
        owner=config.alert_email or "admin",
        stacks=[network, storage, database, compute, monitoring],
        env=env,
        description=f"{description} (application registry)",
    )

    cdk.Tags.of(app).add("Application", export_prefix)
    cdk.Tags.of(app).add("Project", export_prefix)
    cdk.Tags.of(app).add("Environment", config.environment)
    cdk.Tags.of(app).add("ManagedBy", "CDK")

    if validate:
        add_validation_aspects(
            app,
            enforce_deletion_protection=config.environment == "production",
        )

    return Deployment(
        network=network,
        storage=storage,
        database=database,
        compute=compute,
        monitoring=monitoring,
        registry=registry,
    )
