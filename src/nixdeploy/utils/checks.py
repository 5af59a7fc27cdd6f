"""Preflight checks run before a deployment.

Skipped entirely when NIXDEPLOY_NO_CHECKS is set.
"""
import re
from typing import Optional, Tuple

from nixdeploy.core import Logger, ProcessExecutor, ToolLocator
from nixdeploy.deploy.exceptions import ConfigResolutionError
from nixdeploy.deploy.installable import BuildTarget

MIN_NIX_VERSION = (2, 24, 14)
MIN_LIX_VERSION = (2, 91, 1)

_VERSION_RE = re.compile(r'(\d+)\.(\d+)\.(\d+)')


def parse_nix_version(output: str) -> Tuple[bool, Optional[Tuple[int, int, int]]]:
    """Parse ``nix --version`` output.

    Returns:
        (is_lix, version); version is None when no x.y.z is present
    """
    is_lix = 'lix' in output.lower()
    match = _VERSION_RE.search(output)
    if not match:
        return is_lix, None
    return is_lix, tuple(int(part) for part in match.groups())


class PreflightChecker:
    """Warns about old Nix versions and verifies flake support.

    Args:
        process_executor: Runs nix locally
        tool_locator: Finds the nix binary
        logger: Logging abstraction
    """

    def __init__(self, process_executor: ProcessExecutor, tool_locator: ToolLocator, logger: Logger):
        self.process = process_executor
        self.tools = tool_locator
        self.log = logger

    def check_nix_version(self) -> None:
        """Warn (never fail) when nix is older than the supported minimum."""
        result = self.process.run(['nix', '--version'])
        if not result.ok:
            self.log.warning(f"Could not determine the Nix version: {result.diagnostic()}")
            return

        is_lix, version = parse_nix_version(result.stdout)
        if version is None:
            self.log.warning(f"Unrecognised Nix version string: {result.stdout.strip()}")
            return

        minimum = MIN_LIX_VERSION if is_lix else MIN_NIX_VERSION
        name = 'Lix' if is_lix else 'Nix'
        if version < minimum:
            self.log.warning(
                f"{name} {'.'.join(map(str, version))} is older than the supported "
                f"{'.'.join(map(str, minimum))}; some features may not work"
            )
        else:
            self.log.debug(f"{name} version {'.'.join(map(str, version))}")

    def check_flakes_enabled(self) -> None:
        """Raises ConfigResolutionError if the nix-command/flakes features are off."""
        result = self.process.run(['nix', 'eval', '--expr', 'builtins.getFlake'])
        if not result.ok:
            raise ConfigResolutionError(
                "Nix flakes are not enabled\n\n"
                "Add to /etc/nix/nix.conf or ~/.config/nix/nix.conf:\n"
                "  experimental-features = nix-command flakes",
                result.diagnostic(),
            )

    def run(self, target: BuildTarget) -> None:
        """Run all checks relevant to target.

        Raises:
            ConfigResolutionError: If nix is missing or flakes are required but disabled
        """
        if not self.tools.has_tool('nix'):
            raise ConfigResolutionError("nix not found in PATH")
        self.check_nix_version()
        if target.is_flake:
            self.check_flakes_enabled()
