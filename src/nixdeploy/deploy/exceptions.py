"""
Deployment exceptions.

One exception class per pipeline stage. Each carries the stage it belongs to
and the process exit code the CLI reports for it, so a failed run can be
mapped to an exit status without inspecting message text.
"""

# Stage names, shared with the orchestrator's state table
STAGE_RESOLVING = "resolving"
STAGE_GUARDING = "guarding"
STAGE_BUILDING = "building"
STAGE_TRANSFERRING = "transferring"
STAGE_SPECIALISATION = "resolving-specialisation"
STAGE_ACTIVATING = "activating"


class DeploymentError(Exception):
    """Base class for every stage failure.

    Attributes:
        stage: Pipeline stage that failed
        exit_code: Exit status reported by the CLI
        diagnostic: Underlying tool output, verbatim (may be empty)
    """
    stage = STAGE_RESOLVING
    exit_code = 1

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class ConfigResolutionError(DeploymentError):
    """
    Raised for malformed targets, host strings, flags or config files.

    Examples:
        - "user@" as --target-host
        - Port outside 1-65535
        - No installable given and none in the environment
    """
    stage = STAGE_RESOLVING
    exit_code = 2


class RootCheckViolation(DeploymentError):
    """Raised when running as root without --bypass-root-check."""
    stage = STAGE_GUARDING
    exit_code = 3


class BuildFailure(DeploymentError):
    """
    Raised when evaluation or build fails.

    Examples:
        - nix eval error in the configuration
        - nix build exits nonzero on the build host
        - Build host unreachable
    """
    stage = STAGE_BUILDING
    exit_code = 4


class TransferFailure(DeploymentError):
    """Raised when the closure cannot be copied to the target host."""
    stage = STAGE_TRANSFERRING
    exit_code = 5


class ActivationFailure(DeploymentError):
    """Raised when the activation script (or profile update) exits nonzero."""
    stage = STAGE_ACTIVATING
    exit_code = 6


class StageCancelled(DeploymentError):
    """Recorded when the operator interrupts the currently running stage."""
    exit_code = 130

    def __init__(self, stage: str):
        super().__init__(f"Interrupted during {stage}")
        self.stage = stage
