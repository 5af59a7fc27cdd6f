"""
Orchestrator - compose the stages into one deployment run.

State machine:

    resolving → guarding → building → transferring → resolving-specialisation → activating → done
         └──────────┴──────────┴────────────┴──────────────────┴──────────────────┴──→ failed

Each arrow fires only when the stage before it succeeded. A failure (or an
operator interrupt) moves straight to ``failed`` carrying the stage and cause;
nothing is retried and nothing already done is undone. In build mode the
run ends after ``transferring``, which only brings a remotely built artifact
back to the deployer.
"""

import json
import tempfile
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from nixdeploy.core.protocols import EnvironmentProvider, Logger
from .activation import (
    ActivationExecutor,
    MODE_BUILD,
    PROFILE_HOME,
    PROFILE_NIXOS,
    HOME_MODES,
    NIXOS_MODES,
)
from .base import HostExecutor, StageResult
from .builder import Artifact, ArtifactBuilder
from .exceptions import (
    BuildFailure,
    ConfigResolutionError,
    DeploymentError,
    StageCancelled,
    STAGE_ACTIVATING,
    STAGE_BUILDING,
    STAGE_GUARDING,
    STAGE_RESOLVING,
    STAGE_SPECIALISATION,
    STAGE_TRANSFERRING,
)
from .hosts import HostRef, HostTopology
from .installable import BuildTarget, toplevel_for_home, toplevel_for_nixos
from .safety import check_not_root
from .specialisation import SYSTEM_MARKER, SpecialisationResolver, user_marker_path
from .transfer import ArtifactTransfer, TransferReport

STATE_DONE = "done"
STATE_FAILED = "failed"

TRANSITIONS = {
    STAGE_RESOLVING: STAGE_GUARDING,
    STAGE_GUARDING: STAGE_BUILDING,
    STAGE_BUILDING: STAGE_TRANSFERRING,
    STAGE_TRANSFERRING: STAGE_SPECIALISATION,
    STAGE_SPECIALISATION: STAGE_ACTIVATING,
    STAGE_ACTIVATING: STATE_DONE,
}

BUILD_ONLY_TRANSITIONS = dict(TRANSITIONS, **{STAGE_TRANSFERRING: STATE_DONE})

DEFAULT_BUILD_OUT_LINK = "result"


def next_state(state: str, result: StageResult, mode: str) -> str:
    """Transition for a finished stage."""
    if not result.success:
        return STATE_FAILED
    table = BUILD_ONLY_TRANSITIONS if mode == MODE_BUILD else TRANSITIONS
    return table[state]


@dataclass
class DeployRequest:
    """
    Everything one run needs, as given by the operator.

    Attributes:
        target: Installable as given (toplevel attribute not yet appended)
        mode: Activation mode (build, switch, boot, test, dry-activate)
        build_host: Raw --build-host value
        target_host: Raw --target-host value
        bypass_root_check: Allow running as root
        hostname: nixosConfigurations name override
        configuration: homeConfigurations name override
        specialisation: Explicit specialisation
        no_specialisation: Ignore specialisations
        out_link: Result link path (build mode defaults to ./result)
        extra_args: Passed through to nix
        install_bootloader: NIXOS_INSTALL_BOOTLOADER=1 for switch/boot
        backup_extension: HOME_MANAGER_BACKUP_EXT for home-manager activation
        profile_kind: nixos or home
        confirm: Called before activation when --ask is set; False aborts
    """
    target: BuildTarget
    mode: str
    build_host: Optional[str] = None
    target_host: Optional[str] = None
    bypass_root_check: bool = False
    hostname: Optional[str] = None
    configuration: Optional[str] = None
    specialisation: Optional[str] = None
    no_specialisation: bool = False
    out_link: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)
    install_bootloader: bool = False
    backup_extension: Optional[str] = None
    profile_kind: str = PROFILE_NIXOS
    confirm: Optional[Callable[[], bool]] = None


@dataclass
class RunReport:
    """
    Record of one run, owned by the orchestrator and discarded at exit.

    Attributes:
        mode: Requested mode
        state: Final state (done or failed)
        visited: States entered, in order
        results: StageResult per finished stage
        topology: Resolved hosts
        artifact: Built artifact, if building succeeded
        transfer: What the transfer stage did
        specialisation: Activated specialisation (None = base)
        activated: False when activation was skipped (build mode, --ask declined)
    """
    mode: str
    state: str = STAGE_RESOLVING
    visited: List[str] = field(default_factory=list)
    results: Dict[str, StageResult] = field(default_factory=dict)
    topology: Optional[HostTopology] = None
    artifact: Optional[Artifact] = None
    transfer: Optional[TransferReport] = None
    specialisation: Optional[str] = None
    activated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == STATE_DONE

    @property
    def failure(self) -> Optional[StageResult]:
        for result in self.results.values():
            if not result.success:
                return result
        return None

    @property
    def exit_code(self) -> int:
        failure = self.failure
        return failure.error.exit_code if failure else 0

    def completed_stages(self) -> List[str]:
        return [stage for stage, result in self.results.items() if result.success]


class Orchestrator:
    """
    Drives one deployment through the stage state machine.

    Args:
        executor_for: Returns the HostExecutor for a HostRef
        env_provider: Process identity (root check, user, home, hostname)
        logger: Logging abstraction
    """

    def __init__(
        self,
        executor_for: Callable[[HostRef], HostExecutor],
        env_provider: EnvironmentProvider,
        logger: Logger,
    ):
        self.executor_for = executor_for
        self.env = env_provider
        self.log = logger
        self.builder = ArtifactBuilder(executor_for, logger)
        self.transfer = ArtifactTransfer(executor_for, logger)
        self.resolver = SpecialisationResolver(executor_for, logger)
        self.activator = ActivationExecutor(executor_for, logger)
        self._handlers = {
            STAGE_RESOLVING: self._resolve,
            STAGE_GUARDING: self._guard,
            STAGE_BUILDING: self._build,
            STAGE_TRANSFERRING: self._transfer,
            STAGE_SPECIALISATION: self._resolve_specialisation,
            STAGE_ACTIVATING: self._activate,
        }

    def run(self, request: DeployRequest) -> RunReport:
        """
        Run the pipeline for request.

        Returns:
            RunReport; report.state is done or failed. Operator interrupts
            end the run as failed with a StageCancelled cause.
        """
        report = RunReport(mode=request.mode)
        with tempfile.TemporaryDirectory(prefix="nixdeploy-") as scratch:
            state = STAGE_RESOLVING
            while state not in (STATE_DONE, STATE_FAILED):
                report.visited.append(state)
                try:
                    result = self._handlers[state](request, report, scratch)
                except KeyboardInterrupt:
                    result = StageResult.failed(StageCancelled(state))
                report.results[state] = result
                state = next_state(state, result, request.mode)
            report.state = state
            report.visited.append(state)

        if not report.succeeded:
            self._report_failure(report)
        return report

    # Stage handlers

    def _resolve(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        allowed = NIXOS_MODES if request.profile_kind == PROFILE_NIXOS else HOME_MODES
        if request.mode not in allowed:
            return StageResult.failed(ConfigResolutionError(
                f"Unknown mode '{request.mode}' for {request.profile_kind} (expected one of {', '.join(allowed)})"
            ))
        try:
            topology = HostTopology.resolve(request.build_host, request.target_host)
        except ConfigResolutionError as e:
            return StageResult.failed(e)
        if request.profile_kind == PROFILE_HOME and not topology.target.is_local:
            return StageResult.failed(ConfigResolutionError(
                "home-manager configurations can only be activated locally"
            ))
        report.topology = topology
        self.log.info(topology.describe())
        return StageResult.ok(STAGE_RESOLVING, topology)

    def _guard(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        return check_not_root(self.env, request.bypass_root_check)

    def _build(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        topology = report.topology
        try:
            toplevel = self._toplevel(request, topology)
        except (OSError, ConfigResolutionError) as e:
            return StageResult.failed(BuildFailure(f"Could not select a configuration to build: {e}"))

        out_link = None
        if topology.build.is_local:
            out_link = self._out_link(request, scratch)
        result = self.builder.build(
            toplevel,
            topology.build,
            topology.deployer,
            out_link=out_link,
            extra_args=request.extra_args,
        )
        if result.success:
            report.artifact = result.value
        return result

    def _transfer(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        topology = report.topology
        # Build mode never touches the target; a remote build comes back to the deployer
        destination = topology.deployer if request.mode == MODE_BUILD else topology.target
        result = self.transfer.transfer(report.artifact, topology.build, destination, topology.deployer)
        if not result.success:
            return result
        report.transfer = result.value

        if topology.builds_remotely and destination.is_local:
            linked = self.builder.link_result(report.artifact, topology.deployer, self._out_link(request, scratch))
            if not linked.success:
                return StageResult.failed(linked.error)
            report.artifact = linked.value
        return result

    def _resolve_specialisation(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        marker = SYSTEM_MARKER
        if request.profile_kind == PROFILE_HOME:
            marker = user_marker_path(self.env.get_home())
        result = self.resolver.resolve(
            report.topology.target,
            report.artifact,
            marker_path=marker,
            explicit=request.specialisation,
            ignore=request.no_specialisation,
        )
        report.specialisation = result.value
        return result

    def _activate(self, request: DeployRequest, report: RunReport, scratch: str) -> StageResult:
        if request.confirm is not None and not request.confirm():
            self.log.info("Not activating")
            return StageResult.ok(STAGE_ACTIVATING, None)

        result = self.activator.activate(
            report.artifact,
            report.specialisation,
            request.mode,
            report.topology.target,
            profile_kind=request.profile_kind,
            install_bootloader=request.install_bootloader,
            backup_extension=request.backup_extension,
        )
        report.activated = result.success
        return result

    # Helpers

    def _out_link(self, request: DeployRequest, scratch: str) -> str:
        if request.out_link:
            return request.out_link
        if request.mode == MODE_BUILD:
            return DEFAULT_BUILD_OUT_LINK
        return f"{scratch}/result"

    def _toplevel(self, request: DeployRequest, topology: HostTopology) -> BuildTarget:
        """Append the toplevel attribute, picking the configuration name if needed."""
        if request.profile_kind == PROFILE_HOME:
            return toplevel_for_home(request.target, self._home_configuration(request, topology))

        hostname = request.hostname
        if request.target.is_flake and not request.target.attribute and not hostname:
            hostname = self.executor_for(topology.target).hostname()
            self.log.debug(f"Selecting nixosConfigurations.{hostname}")
        return toplevel_for_nixos(request.target, hostname)

    def _home_configuration(self, request: DeployRequest, topology: HostTopology) -> Optional[str]:
        """``user@hostname`` if the flake defines it, else ``user``."""
        if request.configuration or not request.target.is_flake or request.target.attribute:
            return request.configuration

        user = self.env.get_user()
        qualified = f"{user}@{self.env.get_hostname()}"
        names_cmd = [
            "nix", "eval", "--json",
            f"{request.target.source}#homeConfigurations",
            "--apply", "builtins.attrNames",
        ]
        result = self.executor_for(topology.deployer).run(names_cmd)
        if result.ok:
            try:
                if qualified in json.loads(result.stdout):
                    return qualified
            except ValueError:
                self.log.debug(f"Unexpected homeConfigurations listing: {result.stdout!r}")
        return user

    def _report_failure(self, report: RunReport) -> None:
        failure = report.failure
        error: DeploymentError = failure.error
        self.log.error(f"{error} [stage: {failure.stage}]")
        if error.diagnostic:
            self.log.error(error.diagnostic)
        done = report.completed_stages()
        if report.artifact is not None and STAGE_BUILDING in done:
            self.log.info(
                f"Completed before the failure: {', '.join(done)}. "
                f"{report.artifact.path} is built and will be reused on re-run."
            )

