"""
Deployment core.

Builds a NixOS or home-manager configuration and activates it, with the
deployer, build host and target host as independent roles:

    HostTopology → root check → ArtifactBuilder → ArtifactTransfer
        → SpecialisationResolver → ActivationExecutor

Public API:
    - Orchestrator, DeployRequest, RunReport: Run the whole pipeline
    - HostExecutor: Protocol for "run this on that host"
    - LocalExecutor, SSHExecutor, ExecutorFactory: Implementations
    - HostRef, HostTopology, parse_host: Host parsing
    - BuildTarget, resolve_build_target: Installables
    - StageResult, Artifact: Result types
    - DeploymentError and subclasses: Stage failures
"""

from .base import HostExecutor, StageResult
from .builder import Artifact, ArtifactBuilder
from .transfer import ArtifactTransfer, TransferReport
from .specialisation import SpecialisationResolver, TargetSnapshot, resolve_specialisation
from .activation import ActivationExecutor
from .executors import ExecutorFactory, LocalExecutor, SSHExecutor
from .hosts import HostRef, HostTopology, parse_host
from .installable import BuildTarget, resolve_build_target
from .orchestrator import DeployRequest, Orchestrator, RunReport
from .exceptions import (
    DeploymentError,
    ConfigResolutionError,
    RootCheckViolation,
    BuildFailure,
    TransferFailure,
    ActivationFailure,
    StageCancelled,
)

__all__ = [
    # Protocol and types
    "HostExecutor",
    "StageResult",
    "Artifact",
    "TransferReport",
    "TargetSnapshot",
    "HostRef",
    "HostTopology",
    "BuildTarget",
    "DeployRequest",
    "RunReport",

    # Stages
    "ArtifactBuilder",
    "ArtifactTransfer",
    "SpecialisationResolver",
    "ActivationExecutor",
    "Orchestrator",

    # Helpers
    "parse_host",
    "resolve_build_target",
    "resolve_specialisation",

    # Implementations
    "ExecutorFactory",
    "LocalExecutor",
    "SSHExecutor",

    # Exceptions
    "DeploymentError",
    "ConfigResolutionError",
    "RootCheckViolation",
    "BuildFailure",
    "TransferFailure",
    "ActivationFailure",
    "StageCancelled",
]
