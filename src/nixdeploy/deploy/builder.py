"""
ArtifactBuilder - build the system closure on the chosen build host.

Local build:
    nix build <installable> --out-link <out> --print-out-paths [extra]

Remote build (nixos-rebuild --build-host style):
    1. nix eval --raw <installable>.drvPath        (on the deployer)
    2. nix-copy-closure --to <build-host> <drv>     (ship the derivation)
    3. ssh <build-host> nix build '<drv>^*' --print-out-paths --no-link

The store is content addressed, so an unchanged configuration comes back as
the same store path without recompiling; that case is handled exactly like a
fresh build.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from nixdeploy.core.protocols import Logger, ProcessResult
from .base import HostExecutor, StageResult
from .exceptions import BuildFailure, STAGE_BUILDING
from .executors import SSH_CONNECTION_FAILED, ssh_setup_hint
from .hosts import HostRef, DEFAULT_SSH_PORT
from .installable import BuildTarget

STORE_DIR = "/nix/store/"


@dataclass(frozen=True)
class Artifact:
    """
    A built closure, identified by its store path.

    Equal paths are bit-identical closures, so equality compares the path only.

    Attributes:
        path: /nix/store/... output path
        built_on: Host whose store holds the build output
        out_link: Local GC-root symlink pointing at path, if one was created
    """
    path: str
    built_on: Optional[HostRef] = field(default=None, compare=False)
    out_link: Optional[str] = field(default=None, compare=False)


def nix_sshopts(host: HostRef) -> Optional[Dict[str, str]]:
    """Environment telling nix-copy-closure / nix copy about a custom port."""
    if host.is_local or host.port == DEFAULT_SSH_PORT:
        return None
    return {"NIX_SSHOPTS": f"-p {host.port}"}


def parse_out_path(stdout: str) -> Optional[str]:
    """Last store path printed by ``nix build --print-out-paths``."""
    paths = [line.strip() for line in stdout.splitlines() if line.strip().startswith(STORE_DIR)]
    return paths[-1] if paths else None


class ArtifactBuilder:
    """
    Builds a BuildTarget on a local or remote host.

    Args:
        executor_for: Returns the HostExecutor for a HostRef
        logger: Logging abstraction
    """

    def __init__(self, executor_for: Callable[[HostRef], HostExecutor], logger: Logger):
        self.executor_for = executor_for
        self.log = logger

    def build(
        self,
        target: BuildTarget,
        build_host: HostRef,
        deployer: HostRef,
        out_link: Optional[str] = None,
        extra_args: Optional[List[str]] = None,
    ) -> StageResult:
        """
        Build target on build_host.

        Args:
            target: Fully resolved installable (toplevel attribute included)
            build_host: Where to build
            deployer: The local host (evaluates for remote builds)
            out_link: Result symlink for local builds (None = no link)
            extra_args: Passed through to nix

        Returns:
            StageResult with an Artifact, or a BuildFailure
        """
        extra_args = list(extra_args or [])
        try:
            if build_host.is_local:
                artifact = self._build_local(target, build_host, out_link, extra_args)
            else:
                artifact = self._build_remote(target, build_host, deployer, extra_args)
        except BuildFailure as e:
            return StageResult.failed(e)

        self.log.info(f"Built {artifact.path}")
        return StageResult.ok(STAGE_BUILDING, artifact)

    def _build_local(
        self,
        target: BuildTarget,
        host: HostRef,
        out_link: Optional[str],
        extra_args: List[str],
    ) -> Artifact:
        self.log.info(f"Building {target}")
        link_args = ["--out-link", out_link] if out_link else ["--no-link"]
        cmd = ["nix", "build"] + target.to_args() + link_args + ["--print-out-paths"] + extra_args
        result = self.executor_for(host).run(cmd, stream=True)
        path = self._out_path_or_fail(result, f"Build of {target} failed")
        return Artifact(path=path, built_on=host, out_link=out_link)

    def _build_remote(
        self,
        target: BuildTarget,
        host: HostRef,
        deployer: HostRef,
        extra_args: List[str],
    ) -> Artifact:
        local = self.executor_for(deployer)
        remote = self.executor_for(host)

        # Step 1: Evaluate the derivation locally
        self.log.info(f"Evaluating {target}")
        eval_cmd = ["nix", "eval", "--raw"] + target.with_attribute("drvPath").to_args() + extra_args
        result = local.run(eval_cmd)
        if not result.ok:
            raise BuildFailure(f"Evaluation of {target} failed", result.diagnostic())
        drv = result.stdout.strip()
        if not drv.startswith(STORE_DIR):
            raise BuildFailure(f"Evaluation of {target} returned no derivation", result.stdout)

        # Step 2: Ship the derivation closure to the build host
        self.log.info(f"Copying derivation to {host.destination}")
        copy = local.run(["nix-copy-closure", "--to", host.destination, drv], env=nix_sshopts(host))
        if not copy.ok:
            raise BuildFailure(
                f"Could not copy {drv} to build host {host.destination}",
                self._with_ssh_hint(copy, host),
            )

        # Step 3: Build there
        self.log.info(f"Building on {host.destination}")
        cmd = ["nix", "build", f"{drv}^*", "--print-out-paths", "--no-link"] + extra_args
        result = remote.run(cmd, stream=True)
        if result.returncode == SSH_CONNECTION_FAILED:
            raise BuildFailure(
                f"Lost connection to build host {host.destination}",
                self._with_ssh_hint(result, host),
            )
        path = self._out_path_or_fail(result, f"Build of {drv} on {host.destination} failed")
        return Artifact(path=path, built_on=host)

    def _out_path_or_fail(self, result: ProcessResult, message: str) -> str:
        if not result.ok:
            raise BuildFailure(message, result.diagnostic())
        path = parse_out_path(result.stdout)
        if path is None:
            raise BuildFailure(f"{message}: nix build printed no output path", result.stdout)
        return path

    @staticmethod
    def _with_ssh_hint(result: ProcessResult, host: HostRef) -> str:
        if result.returncode == SSH_CONNECTION_FAILED:
            return f"{result.diagnostic()}\n\n{ssh_setup_hint(host)}"
        return result.diagnostic()

    def link_result(self, artifact: Artifact, deployer: HostRef, out_link: str) -> StageResult:
        """
        Create a local result symlink for an artifact already in the local store.

        Used after a remote build once the closure was copied back.
        """
        result = self.executor_for(deployer).run(["nix", "build", "--out-link", out_link, artifact.path])
        if not result.ok:
            return StageResult.failed(BuildFailure(f"Could not link {artifact.path} to {out_link}", result.diagnostic()))
        return StageResult.ok(STAGE_BUILDING, Artifact(artifact.path, built_on=deployer, out_link=out_link))
