"""
ActivationExecutor - apply a built artifact on the target host.

NixOS modes:
    test          switch-to-configuration test          (activate, not boot default)
    switch        set system profile + ... switch       (activate and persist)
    boot          set system profile + ... boot         (persist only)
    dry-activate  switch-to-configuration dry-activate  (preview)

home-manager:
    switch        <profile>/activate  (HOME_MANAGER_BACKUP_EXT set by --backup-extension)

``build`` never reaches this module; the orchestrator stops before it.
Failures are reported verbatim and never rolled back: re-running switch with
an earlier artifact is the rollback.
"""

import posixpath
from typing import Callable, Optional

from nixdeploy.core.protocols import Logger
from .base import HostExecutor, StageResult
from .builder import Artifact
from .exceptions import ActivationFailure, STAGE_ACTIVATING
from .hosts import HostRef
from .specialisation import SPECIALISATION_DIR

MODE_BUILD = "build"
MODE_TEST = "test"
MODE_SWITCH = "switch"
MODE_BOOT = "boot"
MODE_DRY_ACTIVATE = "dry-activate"

NIXOS_MODES = (MODE_BUILD, MODE_SWITCH, MODE_BOOT, MODE_TEST, MODE_DRY_ACTIVATE)
HOME_MODES = (MODE_BUILD, MODE_SWITCH)

# Modes that make the artifact the boot default
PERSISTING_MODES = (MODE_SWITCH, MODE_BOOT)

PROFILE_NIXOS = "nixos"
PROFILE_HOME = "home"

SYSTEM_PROFILE = "/nix/var/nix/profiles/system"


def entry_point(artifact: Artifact, specialisation: Optional[str]) -> str:
    """Profile directory whose activation script should run."""
    if specialisation:
        return posixpath.join(artifact.path, SPECIALISATION_DIR, specialisation)
    return artifact.path


class ActivationExecutor:
    """
    Runs the activation entry point on the target.

    Args:
        executor_for: Returns the HostExecutor for a HostRef
        logger: Logging abstraction
    """

    def __init__(self, executor_for: Callable[[HostRef], HostExecutor], logger: Logger):
        self.executor_for = executor_for
        self.log = logger

    def activate(
        self,
        artifact: Artifact,
        specialisation: Optional[str],
        mode: str,
        target: HostRef,
        profile_kind: str = PROFILE_NIXOS,
        install_bootloader: bool = False,
        backup_extension: Optional[str] = None,
    ) -> StageResult:
        """
        Activate artifact on target in the given mode.

        Args:
            artifact: Closure already present on target
            specialisation: Resolved specialisation name, None for base
            mode: One of the activation modes (not build)
            target: Host to activate on
            profile_kind: nixos or home
            install_bootloader: Reinstall the bootloader (switch/boot only)
            backup_extension: Extension home-manager backs up clashing files with

        Returns:
            StageResult with the activated profile path, or an ActivationFailure

        Raises:
            ValueError: If mode is not an activation mode for profile_kind
        """
        allowed = NIXOS_MODES if profile_kind == PROFILE_NIXOS else HOME_MODES
        if mode == MODE_BUILD or mode not in allowed:
            raise ValueError(f"'{mode}' is not an activation mode for {profile_kind}")

        executor = self.executor_for(target)
        profile = self._select_profile(executor, artifact, specialisation)

        if profile_kind == PROFILE_HOME:
            env = None
            if backup_extension:
                self.log.info(f"Using {backup_extension} as the backup extension")
                env = {"HOME_MANAGER_BACKUP_EXT": backup_extension}
            return self._run(executor, [posixpath.join(profile, "activate")], target, elevate=False, env=env)

        if mode in PERSISTING_MODES:
            result = executor.run(["nix-env", "--profile", SYSTEM_PROFILE, "--set", artifact.path], elevate=True)
            if not result.ok:
                return StageResult.failed(ActivationFailure(
                    f"Could not set {SYSTEM_PROFILE} to {artifact.path}",
                    result.diagnostic(),
                ))

        env = None
        if install_bootloader and mode in PERSISTING_MODES:
            env = {"NIXOS_INSTALL_BOOTLOADER": "1"}

        switch = posixpath.join(profile, "bin", "switch-to-configuration")
        return self._run(executor, [switch, mode], target, elevate=True, env=env)

    def _select_profile(self, executor: HostExecutor, artifact: Artifact, specialisation: Optional[str]) -> str:
        if not specialisation:
            return artifact.path
        candidate = entry_point(artifact, specialisation)
        if executor.is_dir(candidate):
            return candidate
        self.log.warning(f"{artifact.path} has no specialisation '{specialisation}', activating the base configuration")
        return artifact.path

    def _run(self, executor: HostExecutor, argv, target: HostRef, elevate: bool, env=None) -> StageResult:
        where = "locally" if target.is_local else f"on {target.destination}"
        self.log.info(f"Activating configuration {where}")
        result = executor.run(argv, stream=True, elevate=elevate, env=env)
        if not result.ok:
            return StageResult.failed(ActivationFailure(
                f"Activation failed {where} (exit code {result.returncode})",
                (result.stdout + result.stderr).strip(),
            ))
        return StageResult.ok(STAGE_ACTIVATING, argv[0])
