"""CDK Stacks for Twenty CRM infrastructure."""

from .composition import Deployment, compose, stack_ids
from .compute_stack import ComputeStack
from .config import DeploymentConfig, load_deployment_config
from .database_stack import DatabaseStack
from .monitoring_stack import MonitoringStack
from .network_stack import NetworkStack
from .registry_stack import RegistryStack
from .storage_stack import StorageStack

__all__ = [
    "ComputeStack",
    "DatabaseStack",
    "Deployment",
    "DeploymentConfig",
    "MonitoringStack",
    "NetworkStack",
    "RegistryStack",
    "StorageStack",
    "compose",
    "load_deployment_config",
    "stack_ids",
]
