"""
ArtifactTransfer - make sure the artifact's closure exists on the target.

    same machine     → nothing to do
    already present  → nothing to do (``nix path-info`` on the destination)
    local → remote   → nix-copy-closure --to <target> <path>
    remote → local   → nix-copy-closure --from <build> <path>
    remote → remote  → nix copy --from ssh://<build> --to ssh://<target> <path>
                       (run on <build> as nix-copy-closure --to <target> when the ports differ)

Copies are incremental by construction: the store only receives paths it
does not already have.
"""

from dataclasses import dataclass
from typing import Callable, List

from nixdeploy.core.protocols import Logger
from .base import HostExecutor, StageResult
from .builder import Artifact, nix_sshopts
from .exceptions import TransferFailure, STAGE_TRANSFERRING
from .executors import SSH_CONNECTION_FAILED, ssh_setup_hint
from .hosts import HostRef


@dataclass
class TransferReport:
    """
    What the transfer stage did.

    Attributes:
        artifact: The artifact, now present on the destination
        destination: Host that now holds the closure
        copied: False when nothing moved (same host or already present)
        reason: Why nothing moved, or the copy method used
    """
    artifact: Artifact
    destination: HostRef
    copied: bool
    reason: str


class ArtifactTransfer:
    """
    Copies closures between hosts.

    Args:
        executor_for: Returns the HostExecutor for a HostRef
        logger: Logging abstraction
    """

    def __init__(self, executor_for: Callable[[HostRef], HostExecutor], logger: Logger):
        self.executor_for = executor_for
        self.log = logger

    def transfer(
        self,
        artifact: Artifact,
        source: HostRef,
        destination: HostRef,
        deployer: HostRef,
    ) -> StageResult:
        """
        Ensure artifact is in destination's store.

        Args:
            artifact: The built closure
            source: Host whose store has it (the build host)
            destination: Host that needs it
            deployer: Local host, runs the copy commands

        Returns:
            StageResult with a TransferReport, or a TransferFailure
        """
        if source.same_machine(destination):
            self.log.debug(f"{artifact.path} built on the destination, no copy needed")
            return StageResult.ok(
                STAGE_TRANSFERRING,
                TransferReport(artifact, destination, copied=False, reason="same host"),
            )

        dest = self.executor_for(destination)
        if not dest.is_reachable():
            return StageResult.failed(TransferFailure(
                f"Cannot connect to {destination.destination}",
                ssh_setup_hint(destination),
            ))

        if dest.run(["nix", "path-info", artifact.path]).ok:
            self.log.info(f"{artifact.path} already present on {self._name(destination)}")
            return StageResult.ok(
                STAGE_TRANSFERRING,
                TransferReport(artifact, destination, copied=False, reason="already present"),
            )

        runner, cmd, env = self._copy_command(artifact.path, source, destination, deployer)
        self.log.info(f"Copying closure to {self._name(destination)}")
        result = self.executor_for(runner).run(cmd, stream=True, env=env)
        if not result.ok:
            diagnostic = result.diagnostic()
            if result.returncode == SSH_CONNECTION_FAILED:
                diagnostic += "\n\n" + ssh_setup_hint(destination if not destination.is_local else source)
            return StageResult.failed(TransferFailure(
                f"Copying {artifact.path} to {self._name(destination)} failed",
                diagnostic,
            ))

        return StageResult.ok(
            STAGE_TRANSFERRING,
            TransferReport(artifact, destination, copied=True, reason=cmd[0]),
        )

    @staticmethod
    def _name(host: HostRef) -> str:
        return "the deployer" if host.is_local else host.destination

    @staticmethod
    def _copy_command(path: str, source: HostRef, destination: HostRef, deployer: HostRef):
        """Host that runs the copy, plus the command and environment it runs."""
        if source.is_local:
            return deployer, ["nix-copy-closure", "--to", destination.destination, path], nix_sshopts(destination)
        if destination.is_local:
            return deployer, ["nix-copy-closure", "--from", source.destination, path], nix_sshopts(source)
        if source.port != destination.port:
            # NIX_SSHOPTS applies to both stores of a nix copy, so the build host pushes
            return source, ["nix-copy-closure", "--to", destination.destination, path], nix_sshopts(destination)
        cmd: List[str] = [
            "nix", "copy",
            "--from", source.store_uri,
            "--to", destination.store_uri,
            path,
        ]
        return deployer, cmd, nix_sshopts(source)
