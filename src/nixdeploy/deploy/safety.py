"""Root check run before any build or network action."""

from nixdeploy.core.protocols import EnvironmentProvider
from .base import StageResult
from .exceptions import RootCheckViolation, STAGE_GUARDING


def check_not_root(env_provider: EnvironmentProvider, bypass: bool) -> StageResult:
    """Refuse to run as root unless the operator bypassed the check.

    Artifacts built by root end up root-owned (result links, evaluation
    cache), and nixdeploy elevates with sudo itself where it has to.
    """
    if env_provider.get_euid() == 0 and not bypass:
        return StageResult.failed(RootCheckViolation(
            "Don't run nixdeploy as root. It calls sudo internally where needed.\n"
            "Pass --bypass-root-check (or set NIXDEPLOY_BYPASS_ROOT_CHECK=1) "
            "if you really mean it."
        ))
    return StageResult.ok(STAGE_GUARDING)
