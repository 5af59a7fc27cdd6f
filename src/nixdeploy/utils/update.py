"""Flake lock updates before building."""
from typing import Optional, Sequence

from nixdeploy.core import Logger, ProcessExecutor
from nixdeploy.deploy.exceptions import ConfigResolutionError
from nixdeploy.deploy.installable import BuildTarget


def update_command(flake_ref: str, inputs: Optional[Sequence[str]] = None) -> list:
    return ['nix', 'flake', 'update', *(inputs or ()), '--flake', flake_ref]


def update_flake_inputs(
    target: BuildTarget,
    inputs: Optional[Sequence[str]],
    process_executor: ProcessExecutor,
    logger: Logger,
) -> bool:
    """Update all inputs of target's flake, or only the named ones.

    Returns:
        True if the lock file was updated, False if target is not a flake

    Raises:
        ConfigResolutionError: If nix flake update fails
    """
    if not target.is_flake:
        logger.warning(f"{target} is not a flake, skipping update")
        return False

    what = ', '.join(inputs) if inputs else 'all inputs'
    logger.info(f"Updating {what} of {target.source}")
    result = process_executor.run(update_command(target.source, inputs), stream=True)
    if not result.ok:
        raise ConfigResolutionError(
            f"Failed to update flake inputs of {target.source}",
            result.diagnostic(),
        )
    return True
