"""
Host capability protocol and stage result type.

Every pipeline stage talks to machines only through ``HostExecutor``: "run
this command on this host" and a few read-only helpers built on it. Two
implementations exist (``LocalExecutor`` and ``SSHExecutor``), so no stage
branches on whether a host is local or remote.

Stages report back with ``StageResult`` values instead of raising, which keeps
the orchestrator's transition table explicit.
"""

from dataclasses import dataclass
from typing import Protocol, Optional, Dict, List, Any, runtime_checkable

from nixdeploy.core.protocols import ProcessResult
from .exceptions import DeploymentError


@dataclass
class StageResult:
    """
    Tagged outcome of one pipeline stage.

    Attributes:
        stage: Stage name (see exceptions.STAGE_*)
        success: Whether the stage succeeded
        value: Stage output on success (HostTopology, Artifact, ...)
        error: Failure cause on failure, carrying the verbatim diagnostic

    Exactly one of value/error is meaningful, selected by ``success``.
    ``value`` may legitimately be None on success (e.g. base specialisation).
    """
    stage: str
    success: bool
    value: Any = None
    error: Optional[DeploymentError] = None

    @classmethod
    def ok(cls, stage: str, value: Any = None) -> 'StageResult':
        return cls(stage=stage, success=True, value=value)

    @classmethod
    def failed(cls, error: DeploymentError) -> 'StageResult':
        return cls(stage=error.stage, success=False, error=error)


@runtime_checkable
class HostExecutor(Protocol):
    """
    Interface for running commands on one host.

    Implementations:
        - LocalExecutor: direct process invocation on the deployer
        - SSHExecutor: the same commands over ssh to user@address

    Attributes:
        host: The HostRef this executor serves
    """

    host: Any

    def run(
        self,
        argv: List[str],
        stream: bool = False,
        elevate: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        """
        Run argv on the host and wait for it.

        Args:
            argv: Command and arguments (never shell-interpreted locally)
            stream: Echo output to the operator's terminal while it runs
            elevate: Run with root privileges (sudo unless already root)
            env: Extra environment variables for the command

        Returns:
            ProcessResult; a nonzero returncode is not raised

        Raises:
            KeyboardInterrupt: After the command has been terminated
        """
        ...

    def is_reachable(self) -> bool:
        """Whether the host accepts commands (always True locally)."""
        ...

    def read_file(self, path: str) -> Optional[str]:
        """File contents on the host, or None if unreadable."""
        ...

    def is_dir(self, path: str) -> bool:
        """Whether path is a directory on the host."""
        ...

    def list_dir(self, path: str) -> List[str]:
        """Entry names of a directory on the host ([] if absent)."""
        ...

    def hostname(self) -> str:
        """The host's own hostname."""
        ...
